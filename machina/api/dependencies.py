"""FastAPI dependencies."""
from typing import Optional

from fastapi import Header, Request

from machina.bootstrap import Application


def get_application(request: Request) -> Application:
    """The application instance attached to the FastAPI app."""
    return request.app.state.application


def get_actor(x_user_id: Optional[str] = Header(None)) -> str:
    """Acting user id from the ``X-User-Id`` header."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else "system"
