"""Execution telemetry buffer and pull-based template metrics"""

from typing import Dict, Iterable, List, Optional

import structlog

from promptops.events.bus import EventBus
from promptops.models.events import EventType
from promptops.models.execution import ExecutionRecord, TemplateMetrics
from promptops.storage.repository import InMemoryRepository, Namespace, Repository

logger = structlog.get_logger(__name__)


class ExecutionRecorder:
    """
    Keeps the most recent executions per template (oldest dropped first)

    Metrics are recomputed from the buffer on every call; the buffer is
    bounded so this stays cheap.
    """

    def __init__(
        self,
        repository: Optional[Repository] = None,
        bus: Optional[EventBus] = None,
        max_executions: int = 1000,
        enabled: bool = True,
    ):
        self.repository = repository if repository is not None else InMemoryRepository()
        self.bus = bus if bus is not None else EventBus()
        self.max_executions = max_executions
        self.enabled = enabled
        self.executions: Dict[str, List[ExecutionRecord]] = {}

    async def load(self, template_ids: Optional[Iterable[str]] = None):
        """Restore buffers from the repository; failures are logged and skipped"""
        try:
            keys = list(template_ids) if template_ids is not None else await self.repository.list_keys(
                Namespace.EXECUTIONS
            )
        except Exception as e:
            logger.warning("Failed to list stored executions", error=str(e))
            return

        for template_id in keys:
            try:
                stored = await self.repository.get(Namespace.EXECUTIONS, template_id)
                if stored:
                    records = [ExecutionRecord.model_validate(item) for item in stored]
                    self.executions[template_id] = records[-self.max_executions:]
            except Exception as e:
                logger.warning("Failed to load executions", template_id=template_id, error=str(e))

    async def record_execution(self, execution: ExecutionRecord):
        """Append an execution and persist the template's buffer"""
        if not self.enabled:
            return

        template_id = execution.template_id
        buffer = self.executions.get(template_id, []) + [execution]
        if len(buffer) > self.max_executions:
            buffer = buffer[-self.max_executions:]

        try:
            await self.repository.set(
                Namespace.EXECUTIONS,
                template_id,
                [record.model_dump(mode="json") for record in buffer],
            )
        except Exception as e:
            self.bus.emit(
                EventType.ERROR,
                template_id=template_id,
                operation="record_execution",
                error=str(e),
            )
            raise

        self.executions[template_id] = buffer
        self.bus.emit(
            EventType.EXECUTION_RECORDED,
            template_id=template_id,
            version=execution.version,
            success=execution.success,
            response_time=execution.response_time,
        )

    def get_executions(self, template_id: str) -> List[ExecutionRecord]:
        return list(self.executions.get(template_id, []))

    def get_template_metrics(self, template_id: str) -> Optional[TemplateMetrics]:
        """Summary over the current buffer, or None when nothing was recorded"""
        executions = self.executions.get(template_id, [])
        if not executions:
            return None

        successful = [e for e in executions if e.success]
        total = len(executions)

        def successful_mean(values: List[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        scored = [e.quality_score for e in executions if e.quality_score is not None]

        return TemplateMetrics(
            total_executions=total,
            success_rate=len(successful) / total,
            avg_response_time=successful_mean([e.response_time for e in successful]),
            avg_token_usage=successful_mean([e.token_usage.total for e in successful]),
            avg_cost=successful_mean([e.cost for e in successful]),
            last_executed=max(e.executed_at for e in executions),
            quality_score=sum(scored) / len(scored) if scored else None,
        )

    def usage_count(self, template_id: str) -> int:
        return len(self.executions.get(template_id, []))

    def performance_score(self, template_id: str) -> float:
        """Higher success rate and lower response time score better"""
        metrics = self.get_template_metrics(template_id)
        if not metrics:
            return 0.0

        response_time_score = max(0.0, 1000 - metrics.avg_response_time) / 1000
        return (metrics.success_rate + response_time_score) / 2

    def clear(self):
        self.executions.clear()
