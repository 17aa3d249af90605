"""Input validation for path and header values."""

import re

# Tenant ids are slugs (e.g. "acme_realty") or UUIDs
TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]{0,63}$")
TOOL_NAME_PATTERN = re.compile(r"^[a-z0-9_]{1,50}$")


def validate_tenant_id(tenant_id: str) -> None:
    """
    Validate tenant_id format.

    Raises:
        ValueError: If validation fails
    """
    if not tenant_id:
        raise ValueError("tenant_id cannot be empty")
    if not TENANT_ID_PATTERN.match(tenant_id):
        raise ValueError(f"Invalid tenant_id format: {tenant_id[:64]}")


def validate_tool_name(name: str) -> None:
    """
    Raises:
        ValueError: If the name cannot be a registered tool name
    """
    if not TOOL_NAME_PATTERN.match(name or ""):
        raise ValueError(f"Invalid tool name: {(name or '')[:64]}")
