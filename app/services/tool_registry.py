"""Tool registry: validated CRUD over tool definitions plus schema export."""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.infra.config import config
from app.infra.error_handler import ToolConflictError, ToolNotFoundError, ToolValidationError
from app.models.tool import ToolDefinition
from app.services.tool_store import ToolStore
from app.services.tool_validator import validate_tool_definition

logger = logging.getLogger(__name__)

# Fields the registry owns; callers cannot set them
SERVER_MANAGED_FIELDS = ("id", "created_at", "updated_at", "created_by", "updated_by")
IMMUTABLE_FIELDS = ("name", "tenant_id")


@dataclass
class SchemaExport:
    tools: List[Dict[str, Any]]
    etag: str


def _to_model(definition: Dict[str, Any]) -> ToolDefinition:
    try:
        return ToolDefinition.model_validate(definition)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise ToolValidationError(errors)


def _validated(definition: Dict[str, Any]) -> ToolDefinition:
    result = validate_tool_definition(definition)
    if not result.is_valid:
        raise ToolValidationError(result.errors)
    return _to_model(definition)


class ToolRegistry:
    """Registers, updates and exports a tenant's tools.

    Every write re-runs the full validator and invalidates the tenant's
    cached schema export.
    """

    def __init__(
        self,
        store: ToolStore,
        cache_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.cache_ttl_seconds = (
            config.SCHEMA_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._clock = clock
        self._schema_cache: Dict[str, Tuple[float, SchemaExport]] = {}

    def invalidate(self, tenant_id: str) -> None:
        self._schema_cache.pop(tenant_id, None)

    async def register_tool(
        self,
        tenant_id: str,
        definition: Dict[str, Any],
        created_by: Optional[str] = None,
    ) -> ToolDefinition:
        """
        Validate and store a new tool.

        Raises:
            ToolValidationError: If the definition is invalid
            ToolConflictError: If the tenant already has a tool with this name
        """
        candidate = {k: v for k, v in definition.items() if k not in SERVER_MANAGED_FIELDS}
        candidate["tenant_id"] = tenant_id
        tool = _validated(candidate)

        if await self.store.get_tool(tenant_id, tool.name) is not None:
            raise ToolConflictError(tool.name)

        tool = tool.model_copy(update={"created_by": created_by, "updated_by": created_by})
        stored = await self.store.insert_tool(tool)
        self.invalidate(tenant_id)
        logger.info(
            f"Registered tool {stored.name}",
            extra={"tenant_id": tenant_id, "tool_name": stored.name, "created_by": created_by},
        )
        return stored

    async def update_tool(
        self,
        tenant_id: str,
        name: str,
        changes: Dict[str, Any],
        updated_by: Optional[str] = None,
    ) -> ToolDefinition:
        """
        Apply a partial update. Top-level fields replace the stored value.

        Raises:
            ToolNotFoundError: If the tool does not exist
            ToolValidationError: If the merged definition is invalid
        """
        existing = await self.store.get_tool(tenant_id, name)
        if existing is None:
            raise ToolNotFoundError(name)

        immutable_changes = [
            key for key in IMMUTABLE_FIELDS
            if key in changes and changes[key] != getattr(existing, key)
        ]
        if immutable_changes:
            raise ToolValidationError([f"{key} cannot be changed" for key in immutable_changes])

        merged = existing.model_dump(mode="json", exclude=set(SERVER_MANAGED_FIELDS))
        merged.update({k: v for k, v in changes.items() if k not in SERVER_MANAGED_FIELDS})
        tool = _validated(merged)
        tool = tool.model_copy(update={"updated_by": updated_by})

        stored = await self.store.update_tool(tool)
        self.invalidate(tenant_id)
        logger.info(
            f"Updated tool {name}",
            extra={"tenant_id": tenant_id, "tool_name": name, "updated_by": updated_by},
        )
        return stored

    async def set_tool_status(
        self,
        tenant_id: str,
        name: str,
        is_active: bool,
        updated_by: Optional[str] = None,
    ) -> ToolDefinition:
        """Activate or deactivate a tool. Activation re-validates the definition."""
        existing = await self.store.get_tool(tenant_id, name)
        if existing is None:
            raise ToolNotFoundError(name)

        if is_active and not existing.is_active:
            _validated(existing.model_dump(mode="json", exclude=set(SERVER_MANAGED_FIELDS)))

        stored = await self.store.update_tool(
            existing.model_copy(update={"is_active": is_active, "updated_by": updated_by})
        )
        self.invalidate(tenant_id)
        logger.info(
            f"Tool {name} {'activated' if is_active else 'deactivated'}",
            extra={"tenant_id": tenant_id, "tool_name": name, "updated_by": updated_by},
        )
        return stored

    async def deactivate_tool(self, tenant_id: str, name: str, updated_by: Optional[str] = None) -> ToolDefinition:
        """Soft delete: the tool stays stored but is invisible to dispatch and export."""
        return await self.set_tool_status(tenant_id, name, False, updated_by)

    async def get_tool(self, tenant_id: str, name: str) -> ToolDefinition:
        tool = await self.store.get_tool(tenant_id, name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    async def find_tool(self, tenant_id: str, name: str) -> Optional[ToolDefinition]:
        return await self.store.find_tool(tenant_id, name)

    async def list_tools(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[ToolDefinition], int]:
        return await self.store.list_tools(tenant_id, category, is_active, limit, offset)

    async def export_schema(self, tenant_id: str) -> SchemaExport:
        """Active tools in function-calling format, cached per tenant."""
        cached = self._schema_cache.get(tenant_id)
        now = self._clock()
        if cached is not None and cached[0] > now:
            return cached[1]

        tools, _ = await self.store.list_tools(tenant_id, is_active=True)
        schemas = [tool.to_function_schema() for tool in tools]
        digest = hashlib.sha256(json.dumps(schemas, sort_keys=True).encode("utf-8")).hexdigest()
        export = SchemaExport(tools=schemas, etag=digest[:32])

        if self.cache_ttl_seconds > 0:
            self._schema_cache[tenant_id] = (now + self.cache_ttl_seconds, export)
        return export
