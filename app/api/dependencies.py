"""Service singletons wired into FastAPI routes.

Routes receive services through ``Depends`` so tests can swap them with
``app.dependency_overrides``.
"""

from typing import Optional

from app.infra.config import config
from app.infra.rate_limiter import RateLimiter, build_rate_limiter
from app.logging.execution_log import ExecutionLogStore, build_execution_log
from app.services.tool_dispatcher import ToolDispatcher
from app.services.tool_registry import ToolRegistry
from app.services.tool_store import ToolStore, build_tool_store

_tool_store: Optional[ToolStore] = None
_execution_log: Optional[ExecutionLogStore] = None
_rate_limiter: Optional[RateLimiter] = None
_tool_registry: Optional[ToolRegistry] = None
_tool_dispatcher: Optional[ToolDispatcher] = None


def get_tool_store() -> ToolStore:
    global _tool_store
    if _tool_store is None:
        _tool_store = build_tool_store()
    return _tool_store


def get_execution_log() -> ExecutionLogStore:
    global _execution_log
    if _execution_log is None:
        _execution_log = build_execution_log()
    return _execution_log


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = build_rate_limiter()
    return _rate_limiter


def get_tool_registry() -> ToolRegistry:
    global _tool_registry
    if _tool_registry is None:
        _tool_registry = ToolRegistry(get_tool_store(), cache_ttl_seconds=config.SCHEMA_CACHE_TTL_SECONDS)
    return _tool_registry


def get_tool_dispatcher() -> ToolDispatcher:
    global _tool_dispatcher
    if _tool_dispatcher is None:
        _tool_dispatcher = ToolDispatcher(
            store=get_tool_store(),
            execution_log=get_execution_log(),
            rate_limiter=get_rate_limiter(),
        )
    return _tool_dispatcher


async def shutdown_services() -> None:
    """Stop background work and release connections."""
    global _rate_limiter, _tool_dispatcher
    if _rate_limiter is not None:
        await _rate_limiter.close()
    _rate_limiter = None
    _tool_dispatcher = None
