"""Tool dispatcher: turns an agent's tool call into an HTTP request and a structured result.

A dispatch walks a fixed sequence of states::

    VALIDATING -> POLICY_CHECKING -> RATE_LIMITING -> BUILDING -> SENDING -> MAPPING -> LOGGING

Any state may end the dispatch as FAILED. Whatever the outcome, exactly one
execution record is written and a ``ToolExecutionResult`` is returned; tool
errors are never raised to the caller. The only exception that escapes is
``asyncio.CancelledError`` when the caller cancels, after the cancellation
has been logged.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from app.infra.config import config
from app.infra.error_handler import (
    ToolError,
    ToolNotFoundError,
    ToolValidationError,
    SecurityViolationError,
    RateLimitedError,
    ToolTimeoutError,
    UpstreamError,
    InternalToolError,
)
from app.infra.metrics import (
    tool_calls_total,
    tool_call_duration,
    tool_rate_limited_total,
    tool_policy_violations_total,
)
from app.infra.rate_limiter import RateLimiter
from app.logging.execution_log import ExecutionLogStore
from app.models.execution import ToolCall, ToolExecutionRecord, ToolExecutionResult
from app.models.tool import ToolDefinition
from app.services.fuzzy_filter import apply_fuzzy_filter, extract_query
from app.services.request_builder import PreparedToolRequest, build_tool_request
from app.services.response_mapper import apply_response_mapping
from app.services.security_policy import enforce_tool_policy
from app.services.tool_store import ToolStore
from app.services.tool_validator import validate_call_arguments

logger = logging.getLogger(__name__)


class DispatchState(str, Enum):
    VALIDATING = "validating"
    POLICY_CHECKING = "policy_checking"
    RATE_LIMITING = "rate_limiting"
    BUILDING = "building"
    SENDING = "sending"
    MAPPING = "mapping"
    LOGGING = "logging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def decode_body(response: httpx.Response) -> Any:
    """JSON when the upstream says so, otherwise text. Empty bodies become None."""
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", "").lower():
        try:
            return response.json()
        except ValueError:
            logger.debug("Upstream declared JSON but body did not parse; keeping text")
    return response.text


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def failure_result(error: ToolError, execution_time_ms: int) -> ToolExecutionResult:
    data = None
    if isinstance(error, UpstreamError):
        data = error.body
    elif isinstance(error, ToolValidationError):
        data = {"errors": error.errors}

    return ToolExecutionResult(
        success=False,
        data=data,
        error=error.message,
        error_type=error.category.value,
        status_code=error.status_code,
        execution_time_ms=execution_time_ms,
        retry_after_seconds=getattr(error, "retry_after_seconds", None),
    )


class ToolDispatcher:
    """Executes registered tools for a tenant."""

    def __init__(
        self,
        store: ToolStore,
        execution_log: ExecutionLogStore,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: Optional[str] = None,
        query_argument_names: Optional[List[str]] = None,
        default_timeout_ms: Optional[int] = None,
    ):
        self.store = store
        self.execution_log = execution_log
        self.rate_limiter = rate_limiter or RateLimiter()
        self._transport = transport
        self.base_url = config.INTERNAL_API_BASE_URL if base_url is None else base_url
        self.query_argument_names = (
            config.FUZZY_QUERY_ARGUMENTS if query_argument_names is None else query_argument_names
        )
        self.default_timeout_ms = default_timeout_ms or config.DEFAULT_TOOL_TIMEOUT_MS

    async def _send(self, request: PreparedToolRequest, timeout_ms: Optional[int]) -> httpx.Response:
        """
        Send under a cancellable deadline.

        Raises:
            ToolTimeoutError: If the deadline elapses
            UpstreamError: On transport failures
        """
        timeout_seconds = (timeout_ms or self.default_timeout_ms) / 1000
        async with httpx.AsyncClient(base_url=self.base_url, transport=self._transport, timeout=None) as client:
            try:
                return await asyncio.wait_for(
                    client.request(
                        request.method,
                        request.url,
                        headers=request.headers,
                        json=request.body,
                    ),
                    timeout=timeout_seconds,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                raise ToolTimeoutError(f"Request timeout after {int(timeout_seconds * 1000)}ms")
            except httpx.HTTPError as e:
                raise UpstreamError(f"Request failed: {e}", status_code=502)

    async def _run(
        self,
        tool_name: str,
        parameters: Dict[str, Any],
        tenant_id: str,
        trace: Dict[str, Any],
    ) -> ToolExecutionResult:
        start = trace["start"]

        trace["state"] = DispatchState.VALIDATING
        tool: Optional[ToolDefinition] = await self.store.find_tool(tenant_id, tool_name)
        if tool is None:
            raise ToolNotFoundError(tool_name)
        trace["tool"] = tool

        arguments, argument_errors = validate_call_arguments(tool, parameters)
        if argument_errors:
            raise ToolValidationError(argument_errors, message="Invalid tool arguments")

        trace["state"] = DispatchState.POLICY_CHECKING
        enforce_tool_policy(tool)

        trace["state"] = DispatchState.RATE_LIMITING
        decision = await self.rate_limiter.check(tenant_id, tool.name, tool.security.rate_limit)
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after_seconds)

        trace["state"] = DispatchState.BUILDING
        request = build_tool_request(tool, arguments)

        trace["state"] = DispatchState.SENDING
        response = await self._send(request, tool.config.timeout_ms)

        trace["state"] = DispatchState.MAPPING
        body = decode_body(response)
        succeeded = response.is_success
        data = apply_response_mapping(tool.response_mapping, body, succeeded, tool.name)

        if not succeeded:
            raise UpstreamError(
                f"Upstream returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=data,
            )

        query = extract_query(arguments, self.query_argument_names)
        if query:
            data = apply_fuzzy_filter(data, query)

        return ToolExecutionResult(
            success=True,
            data=data,
            status_code=response.status_code,
            execution_time_ms=_elapsed_ms(start),
        )

    async def execute(
        self,
        tool_name: str,
        parameters: Optional[Dict[str, Any]],
        tenant_id: str,
        executed_by: Optional[str] = None,
    ) -> ToolExecutionResult:
        """
        Execute a tool call.

        Returns:
            ToolExecutionResult. Failures are reported in the result, not raised.
        """
        parameters = parameters or {}
        trace: Dict[str, Any] = {"start": time.monotonic(), "state": DispatchState.VALIDATING, "tool": None}

        try:
            result = await self._run(tool_name, parameters, tenant_id, trace)
        except ToolError as e:
            result = failure_result(e, _elapsed_ms(trace["start"]))
        except asyncio.CancelledError:
            result = failure_result(ToolTimeoutError("Request cancelled"), _elapsed_ms(trace["start"]))
            await self._finish(tool_name, parameters, tenant_id, executed_by, trace, result)
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error executing tool {tool_name}: {e}",
                exc_info=True,
                extra={"tenant_id": tenant_id, "tool_name": tool_name, "state": trace["state"].value},
            )
            result = failure_result(InternalToolError("Internal error while executing tool"), _elapsed_ms(trace["start"]))

        await self._finish(tool_name, parameters, tenant_id, executed_by, trace, result)
        return result

    async def _finish(
        self,
        tool_name: str,
        parameters: Dict[str, Any],
        tenant_id: str,
        executed_by: Optional[str],
        trace: Dict[str, Any],
        result: ToolExecutionResult,
    ) -> None:
        failed_in = trace["state"]
        trace["state"] = DispatchState.LOGGING
        tool: Optional[ToolDefinition] = trace["tool"]

        status = "success" if result.success else result.error_type
        tool_calls_total.labels(tool_name=tool_name, status=status).inc()
        tool_call_duration.labels(tool_name=tool_name).observe(result.execution_time_ms / 1000)
        if result.error_type == RateLimitedError.category.value:
            tool_rate_limited_total.labels(tool_name=tool_name).inc()
        elif result.error_type == SecurityViolationError.category.value:
            tool_policy_violations_total.labels(tool_name=tool_name).inc()

        record = ToolExecutionRecord(
            tool_id=tool.id if tool else None,
            tool_name=tool_name,
            tenant_id=tenant_id,
            parameters=parameters if isinstance(parameters, dict) else {},
            response=result,
            executed_by=executed_by,
        )
        try:
            await self.execution_log.append(record)
        except Exception as e:
            # A broken log store must not change the call's outcome
            logger.warning(f"Failed to write execution log for tool {tool_name}: {e}")

        trace["state"] = DispatchState.SUCCEEDED if result.success else DispatchState.FAILED
        log_extra = {
            "tenant_id": tenant_id,
            "tool_name": tool_name,
            "status_code": result.status_code,
            "execution_time_ms": result.execution_time_ms,
            "error_type": result.error_type,
        }
        if result.success:
            logger.info(f"Tool {tool_name} succeeded", extra=log_extra)
        else:
            logger.info(
                f"Tool {tool_name} failed during {failed_in.value}: {result.error}",
                extra=log_extra,
            )

    async def execute_batch(
        self,
        calls: List[ToolCall],
        tenant_id: str,
        executed_by: Optional[str] = None,
    ) -> List[ToolExecutionResult]:
        """Run calls concurrently; results keep the order of ``calls``."""
        return list(await asyncio.gather(*[
            self.execute(call.tool_name, call.parameters, tenant_id, executed_by)
            for call in calls
        ]))
