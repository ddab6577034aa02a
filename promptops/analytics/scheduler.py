"""Periodic snapshot rollups"""

import asyncio
from typing import Dict, Iterable, Optional

import structlog

from promptops.analytics.performance import NOMINAL_SECONDS, PerformanceAnalytics
from promptops.models.analytics import SnapshotInterval

logger = structlog.get_logger(__name__)

ROLLUP_INTERVALS = {
    "hourly": SnapshotInterval.HOUR,
    "daily": SnapshotInterval.DAY,
    "weekly": SnapshotInterval.WEEK,
    "monthly": SnapshotInterval.MONTH,
}


class AggregationScheduler:
    """One background task per configured rollup interval"""

    def __init__(
        self,
        analytics: PerformanceAnalytics,
        intervals: Iterable[str] = ("hourly", "daily"),
        periods: Optional[Dict[str, float]] = None,
    ):
        self.analytics = analytics
        self.intervals = [name for name in ROLLUP_INTERVALS if name in set(intervals)]
        self.periods = {name: float(NOMINAL_SECONDS[ROLLUP_INTERVALS[name]]) for name in ROLLUP_INTERVALS}
        self.periods.update(periods or {})
        self.tasks: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return bool(self.tasks)

    def start(self):
        """Start rollup loops; must be called from a running event loop"""
        for name in self.intervals:
            if name not in self.tasks:
                self.tasks[name] = asyncio.create_task(self._run(name), name=f"rollup-{name}")

        logger.info("Aggregation scheduler started", intervals=self.intervals)

    async def stop(self):
        tasks = list(self.tasks.values())
        self.tasks.clear()

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if tasks:
            logger.info("Aggregation scheduler stopped")

    async def run_once(self):
        """Roll up every configured interval once, finest first"""
        created = []
        for name in self.intervals:
            created.extend(await self.analytics.perform_aggregation(ROLLUP_INTERVALS[name]))
        return created

    async def _run(self, name: str):
        interval = ROLLUP_INTERVALS[name]
        while True:
            try:
                await self.analytics.perform_aggregation(interval)
            except Exception:
                logger.exception("Snapshot aggregation failed", interval=interval.value)

            await asyncio.sleep(self.periods[name])
