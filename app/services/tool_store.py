"""Storage for tool definitions.

``SqlToolStore`` keeps definitions in Postgres (JSONB columns, row-level
security through ``get_db_session``). ``InMemoryToolStore`` backs tests and
single-process deployments with TOOL_STORE_BACKEND=memory.
"""

import json
import uuid
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from app.infra.config import config
from app.infra.database import get_db_session
from app.infra.error_handler import ToolConflictError, ToolNotFoundError
from app.models.execution import utcnow
from app.models.tool import ToolDefinition

logger = logging.getLogger(__name__)


class ToolStore(ABC):

    @abstractmethod
    async def find_tool(self, tenant_id: str, name: str) -> Optional[ToolDefinition]:
        """Return the active tool ``name`` for the tenant, or None."""

    @abstractmethod
    async def get_tool(self, tenant_id: str, name: str) -> Optional[ToolDefinition]:
        """Return the tool regardless of its active flag."""

    @abstractmethod
    async def list_tools(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[ToolDefinition], int]:
        """Return (page of tools ordered by name, total matching)."""

    @abstractmethod
    async def insert_tool(self, tool: ToolDefinition) -> ToolDefinition:
        """Raises ToolConflictError if the name is taken within the tenant."""

    @abstractmethod
    async def update_tool(self, tool: ToolDefinition) -> ToolDefinition:
        """Replace a stored tool, matched by tenant and name."""


class InMemoryToolStore(ToolStore):

    def __init__(self):
        self._tools: Dict[Tuple[str, str], ToolDefinition] = {}

    async def find_tool(self, tenant_id: str, name: str) -> Optional[ToolDefinition]:
        tool = self._tools.get((tenant_id, name))
        if tool is None or not tool.is_active:
            return None
        return tool.model_copy(deep=True)

    async def get_tool(self, tenant_id: str, name: str) -> Optional[ToolDefinition]:
        tool = self._tools.get((tenant_id, name))
        return tool.model_copy(deep=True) if tool else None

    async def list_tools(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[ToolDefinition], int]:
        matching = [
            tool for (tool_tenant, _), tool in sorted(self._tools.items())
            if tool_tenant == tenant_id
            and (category is None or tool.category == category)
            and (is_active is None or tool.is_active == is_active)
        ]
        end = None if limit is None else offset + limit
        return [tool.model_copy(deep=True) for tool in matching[offset:end]], len(matching)

    async def insert_tool(self, tool: ToolDefinition) -> ToolDefinition:
        key = (tool.tenant_id, tool.name)
        if key in self._tools:
            raise ToolConflictError(tool.name)
        now = utcnow()
        stored = tool.model_copy(update={
            "id": tool.id or str(uuid.uuid4()),
            "created_at": now,
            "updated_at": now,
        }, deep=True)
        self._tools[key] = stored
        return stored.model_copy(deep=True)

    async def update_tool(self, tool: ToolDefinition) -> ToolDefinition:
        key = (tool.tenant_id, tool.name)
        existing = self._tools.get(key)
        if existing is None:
            raise ToolNotFoundError(tool.name)
        stored = tool.model_copy(update={
            "id": existing.id,
            "created_at": existing.created_at,
            "created_by": existing.created_by,
            "updated_at": utcnow(),
        }, deep=True)
        self._tools[key] = stored
        return stored.model_copy(deep=True)


_TOOL_COLUMNS = """
    id, tenant_id, name, display_name, description, category,
    config, parameters, response_mapping, security, is_active,
    created_by, updated_by, created_at, updated_at
"""


def _jsonb(value: Any) -> Any:
    # psycopg2 decodes JSONB to Python objects; other drivers hand back text
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_tool(row: Any) -> ToolDefinition:
    return ToolDefinition.model_validate({
        "id": str(row.id),
        "tenant_id": row.tenant_id,
        "name": row.name,
        "display_name": row.display_name,
        "description": row.description,
        "category": row.category,
        "config": _jsonb(row.config),
        "parameters": _jsonb(row.parameters),
        "response_mapping": _jsonb(row.response_mapping),
        "security": _jsonb(row.security) or {},
        "is_active": row.is_active,
        "created_by": row.created_by,
        "updated_by": row.updated_by,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })


def _tool_params(tool: ToolDefinition) -> Dict[str, Any]:
    return {
        "tenant_id": tool.tenant_id,
        "name": tool.name,
        "display_name": tool.display_name,
        "description": tool.description,
        "category": tool.category,
        "config": json.dumps(tool.config.model_dump()),
        "parameters": json.dumps(tool.parameters.model_dump(exclude_none=True)),
        "response_mapping": (
            json.dumps(tool.response_mapping.model_dump()) if tool.response_mapping else None
        ),
        "security": json.dumps(tool.security.model_dump(exclude_none=True)),
        "is_active": tool.is_active,
        "created_by": tool.created_by,
        "updated_by": tool.updated_by,
    }


class SqlToolStore(ToolStore):
    """Tool definitions in the ``tool_definitions`` table."""

    async def find_tool(self, tenant_id: str, name: str) -> Optional[ToolDefinition]:
        with get_db_session(tenant_id) as session:
            row = session.execute(
                text(f"""
                    SELECT {_TOOL_COLUMNS}
                    FROM tool_definitions
                    WHERE tenant_id = :tenant_id AND name = :name AND is_active = TRUE
                """),
                {"tenant_id": tenant_id, "name": name}
            ).fetchone()
        return _row_to_tool(row) if row else None

    async def get_tool(self, tenant_id: str, name: str) -> Optional[ToolDefinition]:
        with get_db_session(tenant_id) as session:
            row = session.execute(
                text(f"""
                    SELECT {_TOOL_COLUMNS}
                    FROM tool_definitions
                    WHERE tenant_id = :tenant_id AND name = :name
                """),
                {"tenant_id": tenant_id, "name": name}
            ).fetchone()
        return _row_to_tool(row) if row else None

    async def list_tools(
        self,
        tenant_id: str,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[ToolDefinition], int]:
        filters = ["tenant_id = :tenant_id"]
        params: Dict[str, Any] = {"tenant_id": tenant_id, "offset": offset}

        if category is not None:
            filters.append("category = :category")
            params["category"] = category
        if is_active is not None:
            filters.append("is_active = :is_active")
            params["is_active"] = is_active

        where = " AND ".join(filters)
        page = "OFFSET :offset"
        if limit is not None:
            page = "LIMIT :limit OFFSET :offset"
            params["limit"] = limit

        with get_db_session(tenant_id) as session:
            total = session.execute(
                text(f"SELECT COUNT(*) FROM tool_definitions WHERE {where}"),
                params
            ).scalar()
            rows = session.execute(
                text(f"""
                    SELECT {_TOOL_COLUMNS}
                    FROM tool_definitions
                    WHERE {where}
                    ORDER BY name
                    {page}
                """),
                params
            ).fetchall()

        return [_row_to_tool(row) for row in rows], int(total or 0)

    async def insert_tool(self, tool: ToolDefinition) -> ToolDefinition:
        try:
            with get_db_session(tool.tenant_id) as session:
                row = session.execute(
                    text(f"""
                        INSERT INTO tool_definitions (
                            tenant_id, name, display_name, description, category,
                            config, parameters, response_mapping, security, is_active,
                            created_by, updated_by
                        ) VALUES (
                            :tenant_id, :name, :display_name, :description, :category,
                            CAST(:config AS jsonb), CAST(:parameters AS jsonb),
                            CAST(:response_mapping AS jsonb), CAST(:security AS jsonb), :is_active,
                            :created_by, :updated_by
                        )
                        RETURNING {_TOOL_COLUMNS}
                    """),
                    _tool_params(tool)
                ).fetchone()
        except IntegrityError:
            raise ToolConflictError(tool.name)
        return _row_to_tool(row)

    async def update_tool(self, tool: ToolDefinition) -> ToolDefinition:
        with get_db_session(tool.tenant_id) as session:
            row = session.execute(
                text(f"""
                    UPDATE tool_definitions
                    SET display_name = :display_name,
                        description = :description,
                        category = :category,
                        config = CAST(:config AS jsonb),
                        parameters = CAST(:parameters AS jsonb),
                        response_mapping = CAST(:response_mapping AS jsonb),
                        security = CAST(:security AS jsonb),
                        is_active = :is_active,
                        updated_by = :updated_by,
                        updated_at = now()
                    WHERE tenant_id = :tenant_id AND name = :name
                    RETURNING {_TOOL_COLUMNS}
                """),
                _tool_params(tool)
            ).fetchone()
        if row is None:
            raise ToolNotFoundError(tool.name)
        return _row_to_tool(row)


def build_tool_store() -> ToolStore:
    """Create the store selected by TOOL_STORE_BACKEND."""
    if config.TOOL_STORE_BACKEND == "memory":
        logger.info("Using in-memory tool store")
        return InMemoryToolStore()
    return SqlToolStore()
