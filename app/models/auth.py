"""Outbound authentication methods for tool calls."""

from dataclasses import dataclass
from typing import Union

from app.models.tool import AuthConfig

DEFAULT_API_KEY_HEADER = "X-API-Key"


@dataclass(frozen=True)
class NoAuth:
    pass


@dataclass(frozen=True)
class ApiKeyAuth:
    key: str
    header_name: str = DEFAULT_API_KEY_HEADER


@dataclass(frozen=True)
class BearerAuth:
    token: str


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str


AuthMethod = Union[NoAuth, ApiKeyAuth, BearerAuth, BasicAuth]


def auth_method_from_config(auth_type: str, auth_config: AuthConfig) -> AuthMethod:
    """
    Build the auth variant for a tool's ``auth_type``.

    Raises:
        ValueError: If the auth type is unknown or its credentials are missing
    """
    if auth_type == "none":
        return NoAuth()
    if auth_type == "api_key":
        if not auth_config.api_key:
            raise ValueError("api_key auth requires auth_config.api_key")
        return ApiKeyAuth(
            key=auth_config.api_key,
            header_name=auth_config.header_name or DEFAULT_API_KEY_HEADER,
        )
    if auth_type == "bearer":
        if not auth_config.bearer_token:
            raise ValueError("bearer auth requires auth_config.bearer_token")
        return BearerAuth(token=auth_config.bearer_token)
    if auth_type == "basic":
        if not auth_config.username or not auth_config.password:
            raise ValueError("basic auth requires auth_config.username and auth_config.password")
        return BasicAuth(username=auth_config.username, password=auth_config.password)
    raise ValueError(f"Unknown auth type: {auth_type}")
