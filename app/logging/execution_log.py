"""Append-only execution log for tool dispatches."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text

from app.infra.config import config
from app.infra.database import get_db_session
from app.models.execution import ToolExecutionRecord, ToolExecutionResult, ToolUsageStats

logger = logging.getLogger(__name__)

MAX_LOGGED_ERROR_LENGTH = 500


def sanitize_record(record: ToolExecutionRecord) -> ToolExecutionRecord:
    """Truncate long upstream error messages before they are stored."""
    error = record.response.error
    if error and len(error) > MAX_LOGGED_ERROR_LENGTH:
        response = record.response.model_copy(update={"error": error[:MAX_LOGGED_ERROR_LENGTH] + "..."})
        return record.model_copy(update={"response": response})
    return record


class ExecutionLogStore(ABC):

    @abstractmethod
    async def append(self, record: ToolExecutionRecord) -> None:
        """Store one record. Records are never updated or deleted."""

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        tool_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ToolExecutionRecord], int]:
        """Return (page of records, newest first, total matching)."""

    @abstractmethod
    async def stats(
        self,
        tenant_id: str,
        tool_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ToolUsageStats]:
        """Aggregate per tool, busiest first."""


class InMemoryExecutionLogStore(ExecutionLogStore):

    def __init__(self):
        self._records: List[ToolExecutionRecord] = []

    def _matching(self, tenant_id, tool_name, start, end) -> List[ToolExecutionRecord]:
        return [
            record for record in self._records
            if record.tenant_id == tenant_id
            and (tool_name is None or record.tool_name == tool_name)
            and (start is None or record.timestamp >= start)
            and (end is None or record.timestamp <= end)
        ]

    async def append(self, record: ToolExecutionRecord) -> None:
        self._records.append(sanitize_record(record))

    async def query(
        self,
        tenant_id: str,
        tool_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ToolExecutionRecord], int]:
        matching = self._matching(tenant_id, tool_name, start, end)
        matching.sort(key=lambda record: record.timestamp, reverse=True)
        return matching[offset:offset + limit], len(matching)

    async def stats(
        self,
        tenant_id: str,
        tool_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ToolUsageStats]:
        grouped: Dict[str, List[ToolExecutionRecord]] = {}
        for record in self._matching(tenant_id, tool_name, start, end):
            grouped.setdefault(record.tool_name, []).append(record)

        stats = []
        for name, records in grouped.items():
            successful = sum(1 for record in records if record.response.success)
            stats.append(ToolUsageStats(
                tool_name=name,
                total_executions=len(records),
                successful_executions=successful,
                failed_executions=len(records) - successful,
                average_execution_time_ms=(
                    sum(record.response.execution_time_ms for record in records) / len(records)
                ),
                last_executed=max(record.timestamp for record in records),
            ))
        stats.sort(key=lambda item: item.total_executions, reverse=True)
        return stats


def _time_filters(
    tenant_id: str,
    tool_name: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime],
) -> Tuple[str, Dict[str, Any]]:
    filters = ["tenant_id = :tenant_id"]
    params: Dict[str, Any] = {"tenant_id": tenant_id}
    if tool_name is not None:
        filters.append("tool_name = :tool_name")
        params["tool_name"] = tool_name
    if start is not None:
        filters.append("executed_at >= :start")
        params["start"] = start
    if end is not None:
        filters.append("executed_at <= :end")
        params["end"] = end
    return " AND ".join(filters), params


class SqlExecutionLogStore(ExecutionLogStore):
    """Execution records in the ``tool_executions`` table."""

    async def append(self, record: ToolExecutionRecord) -> None:
        record = sanitize_record(record)
        response = record.response
        with get_db_session(record.tenant_id) as session:
            session.execute(
                text("""
                    INSERT INTO tool_executions (
                        id, tenant_id, tool_id, tool_name, parameters, response,
                        success, status_code, execution_time_ms, error_type,
                        executed_by, executed_at
                    ) VALUES (
                        :id, :tenant_id, :tool_id, :tool_name,
                        CAST(:parameters AS jsonb), CAST(:response AS jsonb),
                        :success, :status_code, :execution_time_ms, :error_type,
                        :executed_by, :executed_at
                    )
                """),
                {
                    "id": record.id,
                    "tenant_id": record.tenant_id,
                    "tool_id": record.tool_id,
                    "tool_name": record.tool_name,
                    "parameters": json.dumps(record.parameters, default=str),
                    "response": json.dumps(response.model_dump(), default=str),
                    "success": response.success,
                    "status_code": response.status_code,
                    "execution_time_ms": response.execution_time_ms,
                    "error_type": response.error_type,
                    "executed_by": record.executed_by,
                    "executed_at": record.timestamp,
                }
            )

    async def query(
        self,
        tenant_id: str,
        tool_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ToolExecutionRecord], int]:
        where, params = _time_filters(tenant_id, tool_name, start, end)
        with get_db_session(tenant_id) as session:
            total = session.execute(
                text(f"SELECT COUNT(*) FROM tool_executions WHERE {where}"),
                params
            ).scalar()
            rows = session.execute(
                text(f"""
                    SELECT id, tenant_id, tool_id, tool_name, parameters, response,
                           executed_by, executed_at
                    FROM tool_executions
                    WHERE {where}
                    ORDER BY executed_at DESC
                    LIMIT :limit OFFSET :offset
                """),
                {**params, "limit": limit, "offset": offset}
            ).fetchall()

        records = []
        for row in rows:
            parameters = row.parameters
            response = row.response
            records.append(ToolExecutionRecord(
                id=str(row.id),
                tool_id=str(row.tool_id) if row.tool_id else None,
                tool_name=row.tool_name,
                tenant_id=row.tenant_id,
                parameters=json.loads(parameters) if isinstance(parameters, str) else (parameters or {}),
                response=ToolExecutionResult.model_validate(
                    json.loads(response) if isinstance(response, str) else response
                ),
                executed_by=row.executed_by,
                timestamp=row.executed_at,
            ))
        return records, int(total or 0)

    async def stats(
        self,
        tenant_id: str,
        tool_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ToolUsageStats]:
        where, params = _time_filters(tenant_id, tool_name, start, end)
        with get_db_session(tenant_id) as session:
            rows = session.execute(
                text(f"""
                    SELECT tool_name,
                           COUNT(*) AS total_executions,
                           COUNT(*) FILTER (WHERE success) AS successful_executions,
                           COUNT(*) FILTER (WHERE NOT success) AS failed_executions,
                           AVG(execution_time_ms) AS average_execution_time_ms,
                           MAX(executed_at) AS last_executed
                    FROM tool_executions
                    WHERE {where}
                    GROUP BY tool_name
                    ORDER BY total_executions DESC
                """),
                params
            ).fetchall()

        return [
            ToolUsageStats(
                tool_name=row.tool_name,
                total_executions=row.total_executions,
                successful_executions=row.successful_executions,
                failed_executions=row.failed_executions,
                average_execution_time_ms=float(row.average_execution_time_ms or 0),
                last_executed=row.last_executed,
            )
            for row in rows
        ]


def build_execution_log() -> ExecutionLogStore:
    """Create the log store matching TOOL_STORE_BACKEND."""
    if config.TOOL_STORE_BACKEND == "memory":
        return InMemoryExecutionLogStore()
    return SqlExecutionLogStore()
