"""Provider credential models.

Credentials are a tagged union keyed on ``type``. Each provider validates its
own shape, so adding a provider means adding one model here and one adapter.
"""
import re
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from machina.domain.core.exceptions import InvalidCredentialsError

_NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")


def sanitize_token(value: str) -> str:
    """Trim a pasted API token and drop any non-printable or non-ASCII characters."""
    token = _NON_PRINTABLE.sub("", value.strip())
    if len(token) < 10:
        raise ValueError("Invalid API token format")
    return token


class _Credentials(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def secret_dict(self) -> Dict[str, Any]:
        """Plain dictionary including secret values, for encryption only."""
        data = {}
        for key, value in self.model_dump().items():
            data[key] = value.get_secret_value() if isinstance(value, SecretStr) else value
        return data


class DigitalOceanCredentials(_Credentials):
    type: Literal["digitalocean"] = "digitalocean"
    api_token: SecretStr

    @field_validator("api_token", mode="before")
    @classmethod
    def clean_token(cls, v: Any) -> str:
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if not isinstance(v, str):
            raise ValueError("api_token must be a string")
        return sanitize_token(v)


class AWSCredentials(_Credentials):
    type: Literal["aws"] = "aws"
    access_key_id: str = Field(..., min_length=1)
    secret_access_key: SecretStr
    session_token: Optional[SecretStr] = None
    region: str = "us-east-1"


class GCPCredentials(_Credentials):
    type: Literal["gcp"] = "gcp"
    project_id: str = Field(..., min_length=1)
    service_account_json: SecretStr


class HetznerCredentials(_Credentials):
    type: Literal["hetzner"] = "hetzner"
    api_token: SecretStr

    @field_validator("api_token", mode="before")
    @classmethod
    def clean_token(cls, v: Any) -> str:
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if not isinstance(v, str):
            raise ValueError("api_token must be a string")
        return sanitize_token(v)


class BareMetalCredentials(_Credentials):
    type: Literal["baremetal"] = "baremetal"
    host: str = Field(..., min_length=1)
    username: str = "root"
    port: int = 22
    ssh_key_id: Optional[str] = None


ProviderCredentials = Annotated[
    Union[
        DigitalOceanCredentials,
        AWSCredentials,
        GCPCredentials,
        HetznerCredentials,
        BareMetalCredentials,
    ],
    Field(discriminator="type"),
]

_credentials_adapter = TypeAdapter(ProviderCredentials)


def parse_credentials(data: Dict[str, Any], provider_type: Optional[str] = None):
    """
    Validate raw credentials into the matching model.

    Args:
        data: Raw credential fields. ``type`` defaults to ``provider_type``.
        provider_type: Expected provider type, if known

    Raises:
        InvalidCredentialsError: If the shape is wrong or the type mismatches
    """
    payload = dict(data or {})
    if provider_type is not None:
        payload.setdefault("type", provider_type)
        if payload["type"] != provider_type:
            raise InvalidCredentialsError(
                f"Credentials of type '{payload['type']}' do not match provider '{provider_type}'"
            )
    try:
        return _credentials_adapter.validate_python(payload)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise InvalidCredentialsError(
            f"Invalid credentials for {payload.get('type', 'unknown provider')}",
            {"fields": fields}
        )
