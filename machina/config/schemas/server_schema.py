"""Server configuration schema for REST API server."""
from typing import List
from pydantic import BaseModel, Field, ConfigDict


class CORSConfig(BaseModel):
    """CORS configuration."""

    enabled: bool = Field(True, description="Enable CORS")
    origins: List[str] = Field(["*"], description="Allowed origins")
    methods: List[str] = Field(["GET", "POST", "PUT", "DELETE", "OPTIONS"], description="Allowed methods")
    headers: List[str] = Field(["*"], description="Allowed headers")
    credentials: bool = Field(False, description="Allow credentials")


class ServerConfig(BaseModel):
    """REST API server configuration."""
    model_config = ConfigDict(extra="forbid")

    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(8000, description="Server port")
    log_level: str = Field("info", description="Server log level")
    access_log: bool = Field(True, description="Enable access logging")

    # Documentation
    docs_enabled: bool = Field(True, description="Enable API documentation")
    docs_url: str = Field("/docs", description="Swagger UI URL")
    redoc_url: str = Field("/redoc", description="ReDoc URL")
    openapi_url: str = Field("/openapi.json", description="OpenAPI schema URL")

    cors: CORSConfig = Field(default_factory=CORSConfig, description="CORS configuration")
    trusted_hosts: List[str] = Field(["*"], description="Trusted host headers")

    # Server-sent events
    sse_keepalive_seconds: float = Field(15.0, description="Interval between SSE keep-alive comments")
