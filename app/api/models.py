"""Request/response models for the tools API."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from app.models.execution import ToolCall, ToolExecutionRecord, ToolExecutionResult, ToolUsageStats

MAX_BATCH_CALLS = 20


# ============================================================================
# Tool registry
# ============================================================================

class ToolResponse(BaseModel):
    """A stored tool with credentials masked."""
    id: Optional[str] = None
    tenant_id: str
    name: str
    display_name: str
    description: str
    category: str
    config: Dict[str, Any]
    parameters: Dict[str, Any]
    response_mapping: Optional[Dict[str, Any]] = None
    security: Dict[str, Any]
    is_active: bool
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ToolListResponse(BaseModel):
    tools: List[ToolResponse]
    count: int
    total: int


class ToolStatusRequest(BaseModel):
    is_active: bool = Field(..., description="False soft-deletes the tool")


# ============================================================================
# Validation
# ============================================================================

class ToolValidationResponse(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class ValidateEndpointRequest(BaseModel):
    endpoint: str = Field(..., description="Absolute URL or internal path")
    method: str = Field(default="GET", description="GET | POST | PUT | DELETE")
    timeout_ms: int = Field(default=5000, ge=1000, le=30000)


class EndpointValidationResponse(BaseModel):
    is_valid: bool
    status: Optional[int] = None
    errors: List[str] = Field(default_factory=list)
    response_time_ms: int = 0


# ============================================================================
# Execution
# ============================================================================

class ExecuteToolRequest(BaseModel):
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    executed_by: Optional[str] = Field(default=None, description="Free-form caller identity recorded in the log")


class BatchExecuteRequest(BaseModel):
    calls: List[ToolCall] = Field(..., min_length=1, max_length=MAX_BATCH_CALLS)
    executed_by: Optional[str] = None


class BatchCallResult(BaseModel):
    tool_name: str
    result: ToolExecutionResult


class BatchExecuteResponse(BaseModel):
    results: List[BatchCallResult]
    succeeded: int
    failed: int


# ============================================================================
# Schema export, analytics and logs
# ============================================================================

class SchemaExportResponse(BaseModel):
    tools: List[Dict[str, Any]]
    count: int


class ToolAnalyticsResponse(BaseModel):
    tenant_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    tools: List[ToolUsageStats]


class ExecutionLogResponse(BaseModel):
    tool_name: str
    logs: List[ToolExecutionRecord]
    total: int
    limit: int
    offset: int
