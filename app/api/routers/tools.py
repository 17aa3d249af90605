"""Tools API router: registry CRUD, validation, execution, schema export and analytics."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Response

from app.api.dependencies import get_execution_log, get_tool_dispatcher, get_tool_registry
from app.api.models import (
    BatchCallResult,
    BatchExecuteRequest,
    BatchExecuteResponse,
    EndpointValidationResponse,
    ExecuteToolRequest,
    ExecutionLogResponse,
    SchemaExportResponse,
    ToolAnalyticsResponse,
    ToolListResponse,
    ToolResponse,
    ToolStatusRequest,
    ToolValidationResponse,
    ValidateEndpointRequest,
)
from app.api.utils import require_valid_tenant, require_valid_tool_name, to_tool_response
from app.logging.execution_log import ExecutionLogStore
from app.models.execution import ToolExecutionResult
from app.services.tool_dispatcher import ToolDispatcher
from app.services.tool_registry import ToolRegistry
from app.services.tool_validator import (
    validate_endpoint_reachability,
    validate_openai_compatibility,
    validate_parameter_schema,
    validate_tool_definition,
)

router = APIRouter()

EXAMPLE_TOOL = {
    "name": "get_property_price",
    "display_name": "Property price",
    "description": "Look up the listed price of a property by SKU",
    "category": "real_estate",
    "config": {
        "endpoint": "https://api.inmobiliaria.com/v1/price",
        "method": "GET",
        "auth_type": "api_key",
        "auth_config": {"api_key": "vault://secret/tools/inmobiliaria/api_key"},
        "timeout_ms": 5000,
    },
    "parameters": {
        "type": "object",
        "properties": {"sku": {"type": "string", "description": "Property SKU"}},
        "required": ["sku"],
    },
    "response_mapping": {"success_path": "data"},
    "security": {"rate_limit": {"requests": 60, "window": "1m"}},
}


# ============================================================================
# Validation (no tenant state)
# ============================================================================

@router.post("/tools/validate", tags=["Tool Validation"], response_model=ToolValidationResponse)
async def validate_tool(definition: Dict[str, Any] = Body(..., examples=[{**EXAMPLE_TOOL, "tenant_id": "acme"}])):
    """
    Validate a complete tool definition without storing it.

    Every violation is reported; the response is 200 whether or not the
    definition is valid.
    """
    result = validate_tool_definition(definition)
    return ToolValidationResponse(is_valid=result.is_valid, errors=result.errors)


@router.post("/tools/validate-schema", tags=["Tool Validation"], response_model=ToolValidationResponse)
async def validate_schema(schema: Dict[str, Any] = Body(..., examples=[EXAMPLE_TOOL["parameters"]])):
    """Validate a parameter schema block on its own."""
    result = validate_parameter_schema(schema)
    return ToolValidationResponse(is_valid=result.is_valid, errors=result.errors)


@router.post("/tools/validate-openai", tags=["Tool Validation"], response_model=ToolValidationResponse)
async def validate_openai(definition: Dict[str, Any] = Body(...)):
    """Validate a definition against LLM function-calling limits."""
    result = validate_openai_compatibility(definition)
    return ToolValidationResponse(is_valid=result.is_valid, errors=result.errors)


@router.post("/tools/validate-endpoint", tags=["Tool Validation"], response_model=EndpointValidationResponse)
async def validate_endpoint(request: ValidateEndpointRequest):
    """
    Probe an endpoint. Any HTTP response counts as reachable.

    Absolute URLs must be on the platform domain allow-list before a
    connection is attempted.
    """
    result = await validate_endpoint_reachability(request.endpoint, request.method, request.timeout_ms)
    return EndpointValidationResponse(**result.to_dict())


# ============================================================================
# Tenant-scoped collection routes (declared before /tools/{name})
# ============================================================================

@router.get("/tenants/{tenant_id}/tools/schema", tags=["Tools"], response_model=SchemaExportResponse)
async def export_tool_schema(
    tenant_id: str,
    response: Response,
    if_none_match: Optional[str] = Header(default=None),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """
    Export the tenant's active tools in LLM function-calling format.

    Supports conditional requests: send the returned ETag in If-None-Match to
    get 304 when nothing changed.
    """
    require_valid_tenant(tenant_id)
    export = await registry.export_schema(tenant_id)
    etag = f'"{export.etag}"'

    if if_none_match and if_none_match.strip() == etag:
        return Response(status_code=304, headers={"ETag": etag})

    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = f"private, max-age={registry.cache_ttl_seconds}"
    return SchemaExportResponse(tools=export.tools, count=len(export.tools))


@router.get("/tenants/{tenant_id}/tools/analytics", tags=["Tools"], response_model=ToolAnalyticsResponse)
async def tool_analytics(
    tenant_id: str,
    tool_name: Optional[str] = Query(None, description="Restrict to one tool"),
    start: Optional[datetime] = Query(None, description="Start of period (ISO 8601)"),
    end: Optional[datetime] = Query(None, description="End of period (ISO 8601)"),
    execution_log: ExecutionLogStore = Depends(get_execution_log),
):
    """Per-tool execution counts, success/failure split, average latency and last use."""
    require_valid_tenant(tenant_id)
    stats = await execution_log.stats(tenant_id, tool_name=tool_name, start=start, end=end)
    return ToolAnalyticsResponse(tenant_id=tenant_id, start=start, end=end, tools=stats)


@router.post("/tenants/{tenant_id}/tools/execute", tags=["Tool Execution"], response_model=ToolExecutionResult)
async def execute_tool(
    tenant_id: str,
    request: ExecuteToolRequest,
    response: Response,
    dispatcher: ToolDispatcher = Depends(get_tool_dispatcher),
):
    """
    Execute a registered tool.

    Always answers 200: the outcome (including rate limiting, timeouts and
    upstream errors) is described by ``success``, ``error_type`` and
    ``status_code`` in the body. Rate-limited calls also carry Retry-After.
    """
    require_valid_tenant(tenant_id)
    result = await dispatcher.execute(request.tool_name, request.parameters, tenant_id, request.executed_by)
    if result.retry_after_seconds is not None:
        response.headers["Retry-After"] = str(result.retry_after_seconds)
    return result


@router.post("/tenants/{tenant_id}/tools/batch-execute", tags=["Tool Execution"], response_model=BatchExecuteResponse)
async def batch_execute_tools(
    tenant_id: str,
    request: BatchExecuteRequest,
    dispatcher: ToolDispatcher = Depends(get_tool_dispatcher),
):
    """Execute several tools concurrently. Results keep the request order."""
    require_valid_tenant(tenant_id)
    results = await dispatcher.execute_batch(request.calls, tenant_id, request.executed_by)
    succeeded = sum(1 for result in results if result.success)
    return BatchExecuteResponse(
        results=[
            BatchCallResult(tool_name=call.tool_name, result=result)
            for call, result in zip(request.calls, results)
        ],
        succeeded=succeeded,
        failed=len(results) - succeeded,
    )


@router.post("/tenants/{tenant_id}/tools", tags=["Tools"], response_model=ToolResponse, status_code=201)
async def create_tool(
    tenant_id: str,
    definition: Dict[str, Any] = Body(..., examples=[EXAMPLE_TOOL]),
    x_user_id: Optional[str] = Header(default=None),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """
    Register a tool for a tenant.

    Returns 400 with every validation error, or 409 if the name is taken.
    Credentials in the response are masked unless they are secret references.
    """
    require_valid_tenant(tenant_id)
    tool = await registry.register_tool(tenant_id, definition, created_by=x_user_id)
    return to_tool_response(tool)


@router.get("/tenants/{tenant_id}/tools", tags=["Tools"], response_model=ToolListResponse)
async def list_tools(
    tenant_id: str,
    category: Optional[str] = Query(None, description="Filter by category"),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of results"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """List a tenant's tools, ordered by name."""
    require_valid_tenant(tenant_id)
    tools, total = await registry.list_tools(tenant_id, category, is_active, limit, offset)
    return ToolListResponse(tools=[to_tool_response(tool) for tool in tools], count=len(tools), total=total)


# ============================================================================
# Single tool routes
# ============================================================================

@router.get("/tenants/{tenant_id}/tools/{name}", tags=["Tools"], response_model=ToolResponse)
async def get_tool(
    tenant_id: str,
    name: str,
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """Get one tool, active or not."""
    require_valid_tenant(tenant_id)
    require_valid_tool_name(name)
    return to_tool_response(await registry.get_tool(tenant_id, name))


@router.put("/tenants/{tenant_id}/tools/{name}", tags=["Tools"], response_model=ToolResponse)
async def update_tool(
    tenant_id: str,
    name: str,
    changes: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(default=None),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """
    Update a tool. Provided top-level fields replace the stored ones and the
    merged definition is validated again.
    """
    require_valid_tenant(tenant_id)
    require_valid_tool_name(name)
    tool = await registry.update_tool(tenant_id, name, changes, updated_by=x_user_id)
    return to_tool_response(tool)


@router.patch("/tenants/{tenant_id}/tools/{name}/status", tags=["Tools"], response_model=ToolResponse)
async def set_tool_status(
    tenant_id: str,
    name: str,
    request: ToolStatusRequest,
    x_user_id: Optional[str] = Header(default=None),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """Activate or deactivate a tool."""
    require_valid_tenant(tenant_id)
    require_valid_tool_name(name)
    tool = await registry.set_tool_status(tenant_id, name, request.is_active, updated_by=x_user_id)
    return to_tool_response(tool)


@router.delete("/tenants/{tenant_id}/tools/{name}", tags=["Tools"])
async def delete_tool(
    tenant_id: str,
    name: str,
    x_user_id: Optional[str] = Header(default=None),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """Soft delete: the tool is deactivated, its execution history is kept."""
    require_valid_tenant(tenant_id)
    require_valid_tool_name(name)
    await registry.deactivate_tool(tenant_id, name, updated_by=x_user_id)
    return {"status": "deactivated", "name": name}


@router.get("/tenants/{tenant_id}/tools/{name}/logs", tags=["Tools"], response_model=ExecutionLogResponse)
async def tool_logs(
    tenant_id: str,
    name: str,
    start: Optional[datetime] = Query(None, description="Start of period (ISO 8601)"),
    end: Optional[datetime] = Query(None, description="End of period (ISO 8601)"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of results"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    execution_log: ExecutionLogStore = Depends(get_execution_log),
):
    """Execution history for one tool, newest first."""
    require_valid_tenant(tenant_id)
    require_valid_tool_name(name)
    logs, total = await execution_log.query(
        tenant_id, tool_name=name, start=start, end=end, limit=limit, offset=offset
    )
    return ExecutionLogResponse(tool_name=name, logs=logs, total=total, limit=limit, offset=offset)
