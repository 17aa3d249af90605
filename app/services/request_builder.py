"""Builds the outbound HTTP request for a tool call."""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode, quote

from app.infra.config import config
from app.infra.error_handler import InternalToolError
from app.infra.secrets import get_secret, is_secret_ref
from app.models.auth import (
    AuthMethod,
    NoAuth,
    ApiKeyAuth,
    BearerAuth,
    BasicAuth,
    auth_method_from_config,
)
from app.models.tool import ToolDefinition

logger = logging.getLogger(__name__)


@dataclass
class PreparedToolRequest:
    """A fully-resolved request, ready for the HTTP client.

    ``url`` is absolute, or a path that the dispatcher resolves against
    INTERNAL_API_BASE_URL.
    """
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_query_value(item) for item in value)
    return str(value)


def build_query_string(parameters: Dict[str, Any]) -> str:
    pairs: List[Tuple[str, str]] = [
        (name, _query_value(value)) for name, value in parameters.items() if value is not None
    ]
    return urlencode(pairs, quote_via=quote)


def append_query(endpoint: str, query: str) -> str:
    if not query:
        return endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{query}"


def _resolve_credential(value: str) -> str:
    resolved = get_secret(value)
    if not resolved:
        # Never include the credential itself in the message
        kind = value.split("://", 1)[0] if is_secret_ref(value) else "literal"
        raise InternalToolError(f"Tool credential could not be resolved ({kind} reference)")
    return resolved


def apply_auth(headers: Dict[str, str], auth: AuthMethod) -> None:
    """Inject the auth header for one auth variant."""
    if isinstance(auth, NoAuth):
        return
    elif isinstance(auth, ApiKeyAuth):
        headers[auth.header_name] = _resolve_credential(auth.key)
    elif isinstance(auth, BearerAuth):
        headers["Authorization"] = f"Bearer {_resolve_credential(auth.token)}"
    elif isinstance(auth, BasicAuth):
        username = _resolve_credential(auth.username)
        password = _resolve_credential(auth.password)
        encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        headers["Authorization"] = f"Basic {encoded}"
    else:
        raise TypeError(f"Unsupported auth method: {type(auth).__name__}")


def build_tool_request(tool: ToolDefinition, parameters: Dict[str, Any]) -> PreparedToolRequest:
    """
    Translate a tool call into an HTTP request.

    GET sends parameters in the query string, POST/PUT send them as a JSON
    body (only when there are any), DELETE sends neither. Headers are the
    defaults, then the tool's static headers, then the auth header.

    Raises:
        InternalToolError: If the tool's auth configuration or credentials are unusable
    """
    tool_config = tool.config
    method = tool_config.method
    url = tool_config.endpoint
    body = None

    if method == "GET":
        url = append_query(url, build_query_string(parameters))
    elif method in ("POST", "PUT") and parameters:
        body = dict(parameters)

    headers = {
        "Content-Type": "application/json",
        "User-Agent": config.USER_AGENT,
    }
    headers.update(tool_config.headers)

    try:
        auth = auth_method_from_config(tool_config.auth_type, tool_config.auth_config)
    except ValueError as e:
        raise InternalToolError(f"Invalid auth configuration for tool {tool.name}: {e}")
    apply_auth(headers, auth)

    return PreparedToolRequest(url=url, method=method, headers=headers, body=body)
