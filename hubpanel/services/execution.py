"""
Ad-hoc query execution with timing and history
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..database.errors import InvalidRequestError, QueryError
from ..database.models import QueryResult
from .base import BaseService


@dataclass
class ExecutionOutcome:
    """Result of one ad-hoc statement"""
    success: bool
    duration_ms: float
    result: Optional[QueryResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {'error': self.error, 'duration': self.duration_ms}
        data = self.result.to_dict()
        data['duration'] = self.duration_ms
        return data


class QueryExecutor(BaseService):
    """Handle query execution and monitoring"""

    def __init__(self, registry, activity=None, max_history: int = 100):
        super().__init__(registry, activity)
        self.execution_history: List[Dict[str, Any]] = []
        self.max_history = max_history

    async def execute_query(self, database: str, sql: str, user: str = "unknown") -> ExecutionOutcome:
        """Run one statement; engine rejections become a failed outcome, not an exception"""
        if not database or not sql or not sql.strip():
            raise InvalidRequestError("Missing required fields: database, sql")

        driver = await self.registry.resolve(database)
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()

        try:
            result = await driver.query(sql)
        except QueryError as e:
            duration = round((time.perf_counter() - start) * 1000, 2)
            outcome = ExecutionOutcome(success=False, duration_ms=duration, error=e.message)
            self._add_to_history(database, sql, started_at, outcome)
            await self._log(user, database, "QUERY", f"Query failed ({duration}ms): {e.message}", sql)
            return outcome

        duration = round((time.perf_counter() - start) * 1000, 2)
        outcome = ExecutionOutcome(success=True, duration_ms=duration, result=result)
        self._add_to_history(database, sql, started_at, outcome)
        await self._log(user, database, "QUERY", f"Query executed successfully in {duration}ms", sql)
        return outcome

    def _create_result_summary(self, outcome: ExecutionOutcome) -> str:
        """Create a summary of the execution result"""
        if not outcome.success:
            return "Execution failed"
        if outcome.result.fields:
            return f"Retrieved {len(outcome.result.rows)} rows"
        if outcome.result.rowcount >= 0:
            return f"Affected {outcome.result.rowcount} rows"
        return "Operation completed"

    def _add_to_history(self, database: str, sql: str, started_at: datetime,
                        outcome: ExecutionOutcome) -> None:
        self.execution_history.append({
            'timestamp': started_at.isoformat(),
            'database': database,
            'sql': sql,
            'execution_time': outcome.duration_ms,
            'success': outcome.success,
            'error': outcome.error,
            'result_summary': self._create_result_summary(outcome),
        })

        # Keep only recent history
        if len(self.execution_history) > self.max_history:
            self.execution_history = self.execution_history[-self.max_history:]

    def get_execution_stats(self) -> Dict[str, Any]:
        """Get execution statistics; times are in milliseconds"""
        total = len(self.execution_history)
        successful = sum(1 for record in self.execution_history if record['success'])
        total_time = sum(record['execution_time'] for record in self.execution_history)

        return {
            'total_executions': total,
            'successful_executions': successful,
            'failed_executions': total - successful,
            'average_execution_time': total_time / total if total else 0,
            'total_execution_time': total_time,
            'success_rate': (successful / total * 100) if total else 0,
        }

    def get_recent_executions(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Get recent execution records, newest last"""
        return self.execution_history[-limit:] if limit > 0 else []

    def clear_history(self) -> None:
        self.execution_history.clear()
