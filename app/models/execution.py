"""Tool execution result and log models."""

import uuid
from datetime import datetime, timezone
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ToolExecutionResult(BaseModel):
    """Outcome of a single dispatch, returned to the agent."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = Field(default=None, description="ErrorCategory value when success is false")
    status_code: Optional[int] = None
    execution_time_ms: int = 0
    retry_after_seconds: Optional[int] = None


class ToolExecutionRecord(BaseModel):
    """Append-only log entry, one per dispatch attempt."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tool_id: Optional[str] = None
    tool_name: str
    tenant_id: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    response: ToolExecutionResult
    executed_by: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class ToolUsageStats(BaseModel):
    """Per-tool aggregate over the execution log."""
    tool_name: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time_ms: float = 0.0
    last_executed: Optional[datetime] = None


class ToolCall(BaseModel):
    """One call in a batch."""
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
