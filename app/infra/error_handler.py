"""Tool error taxonomy.

Every failure the engine can report maps onto one ``ToolError`` subclass. The
dispatcher turns these into structured ``ToolExecutionResult`` objects; the
registry API turns them into HTTP responses.
"""

from typing import Any, List, Optional
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of tool errors. Values are persisted in execution logs."""
    VALIDATION = "validation"  # Definition or argument validation failed
    NOT_FOUND = "not_found"  # Unknown or inactive tool
    CONFLICT = "conflict"  # Duplicate tool name within a tenant
    SECURITY = "security_violation"  # Domain, parameter name or timeout policy
    RATE_LIMIT = "rate_limited"  # Fixed-window quota exhausted
    TIMEOUT = "timeout"  # Deadline elapsed or caller cancelled
    UPSTREAM = "upstream_error"  # Downstream API answered non-2xx or failed at transport level
    MAPPING = "mapping_error"  # Transform expression failed
    INTERNAL = "internal"  # Anything else


class ToolError(Exception):
    """Base exception for tool engine errors."""
    category: ErrorCategory = ErrorCategory.INTERNAL
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ToolValidationError(ToolError):
    """A tool definition (or call arguments) failed validation."""
    category = ErrorCategory.VALIDATION
    status_code = 400

    def __init__(self, errors: List[str], message: str = "Tool validation failed"):
        self.errors = list(errors)
        super().__init__(message)


class ToolNotFoundError(ToolError):
    category = ErrorCategory.NOT_FOUND
    status_code = 404

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' not found or inactive")


class ToolConflictError(ToolError):
    category = ErrorCategory.CONFLICT
    status_code = 409

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' already exists for this tenant")


class SecurityViolationError(ToolError):
    category = ErrorCategory.SECURITY
    status_code = 403


class RateLimitedError(ToolError):
    category = ErrorCategory.RATE_LIMIT
    status_code = 429

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limit exceeded. Retry after {retry_after_seconds} seconds")


class ToolTimeoutError(ToolError):
    category = ErrorCategory.TIMEOUT
    status_code = 408

    def __init__(self, message: str = "Request timeout"):
        super().__init__(message)


class UpstreamError(ToolError):
    """Downstream API returned a non-2xx status (or the transport failed)."""
    category = ErrorCategory.UPSTREAM
    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        self.body = body
        super().__init__(message, status_code=status_code)


class MappingError(ToolError):
    category = ErrorCategory.MAPPING
    status_code = 500


class InternalToolError(ToolError):
    category = ErrorCategory.INTERNAL
    status_code = 500
