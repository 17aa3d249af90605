"""Helpers shared by API routers."""

from typing import Any, Dict, Optional

from fastapi import HTTPException

from app.api.models import ToolResponse
from app.infra.secrets import is_secret_ref
from app.infra.validation import validate_tenant_id, validate_tool_name
from app.models.tool import ToolDefinition

MASK = "********"
CREDENTIAL_FIELDS = ("api_key", "bearer_token", "password")


def mask_credential(value: Optional[str]) -> Optional[str]:
    """Secret references are safe to show; literal credentials are masked."""
    if value is None or is_secret_ref(value):
        return value
    return MASK


def to_tool_response(tool: ToolDefinition) -> ToolResponse:
    payload: Dict[str, Any] = tool.model_dump(mode="json")
    auth_config = payload["config"].get("auth_config") or {}
    for key in CREDENTIAL_FIELDS:
        if key in auth_config:
            auth_config[key] = mask_credential(auth_config[key])
    return ToolResponse.model_validate(payload)


def require_valid_tenant(tenant_id: str) -> None:
    try:
        validate_tenant_id(tenant_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def require_valid_tool_name(name: str) -> None:
    try:
        validate_tool_name(name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
