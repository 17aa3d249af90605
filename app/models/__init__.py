from .tool import (
    AuthConfig,
    ToolConfig,
    ParameterProperty,
    ToolParameters,
    ResponseMapping,
    RateLimitPolicy,
    ToolSecurity,
    ToolDefinition,
)
from .auth import NoAuth, ApiKeyAuth, BearerAuth, BasicAuth, AuthMethod
from .execution import ToolCall, ToolExecutionResult, ToolExecutionRecord, ToolUsageStats

__all__ = [
    "AuthConfig",
    "ToolConfig",
    "ParameterProperty",
    "ToolParameters",
    "ResponseMapping",
    "RateLimitPolicy",
    "ToolSecurity",
    "ToolDefinition",
    "NoAuth",
    "ApiKeyAuth",
    "BearerAuth",
    "BasicAuth",
    "AuthMethod",
    "ToolCall",
    "ToolExecutionResult",
    "ToolExecutionRecord",
    "ToolUsageStats",
]
