"""
Performance Analytics - Time-bucketed metrics, trends and anomalies

This module turns execution telemetry into:
- Minute snapshots, updated incrementally on every execution
- Hour/day/week/month rollups built from finer snapshots
- Least-squares trends with optional one-step forecasts
- Z-score anomaly flags against the recent execution baseline
- Rule-based recommendations and period-over-period reports
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from promptops.analytics.recorder import ExecutionRecorder
from promptops.analytics.statistics import describe, linear_regression, percentiles, weighted_mean
from promptops.core.config import Settings
from promptops.events.bus import EventBus
from promptops.models.analytics import (
    AnomalySeverity,
    Forecast,
    MetricComparison,
    MetricPoint,
    PerformanceAnomaly,
    PerformanceComparison,
    PerformanceRecommendation,
    PerformanceReport,
    PerformanceSnapshot,
    PerformanceTrend,
    ProviderMetrics,
    RecommendationPriority,
    RecommendationType,
    ReportPeriod,
    SnapshotInterval,
    SnapshotMetrics,
    TrendDirection,
)
from promptops.models.events import EventType
from promptops.models.execution import ExecutionRecord, TemplateMetrics

logger = structlog.get_logger(__name__)

SOURCE_INTERVALS = {
    SnapshotInterval.HOUR: SnapshotInterval.MINUTE,
    SnapshotInterval.DAY: SnapshotInterval.HOUR,
    SnapshotInterval.WEEK: SnapshotInterval.DAY,
    SnapshotInterval.MONTH: SnapshotInterval.DAY,
}

NOMINAL_SECONDS = {
    SnapshotInterval.MINUTE: 60,
    SnapshotInterval.HOUR: 60 * 60,
    SnapshotInterval.DAY: 24 * 60 * 60,
    SnapshotInterval.WEEK: 7 * 24 * 60 * 60,
    SnapshotInterval.MONTH: 30 * 24 * 60 * 60,
}

TREND_METRICS = ("success_rate", "avg_response_time", "avg_cost", "avg_quality_score")
LOWER_IS_BETTER = {"avg_response_time", "avg_cost", "avg_token_usage"}
TREND_SLOPE_THRESHOLD = 0.01
RECENT_WINDOW = 100

SnapshotKey = Tuple[SnapshotInterval, datetime]


@dataclass
class CustomMetricDefinition:
    """User metric computed over the most recent executions"""
    name: str
    description: str
    calculator: Callable[[List[ExecutionRecord]], float]
    unit: str = ""
    higher_is_better: bool = True


def interval_start(timestamp: datetime, interval: SnapshotInterval) -> datetime:
    """Start of the window containing `timestamp` (weeks start on Monday)"""
    minute = timestamp.replace(second=0, microsecond=0)
    if interval is SnapshotInterval.MINUTE:
        return minute
    hour = minute.replace(minute=0)
    if interval is SnapshotInterval.HOUR:
        return hour
    day = hour.replace(hour=0)
    if interval is SnapshotInterval.DAY:
        return day
    if interval is SnapshotInterval.WEEK:
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def interval_end(start: datetime, interval: SnapshotInterval) -> datetime:
    """Exclusive end of the window beginning at `start`"""
    if interval is SnapshotInterval.MONTH:
        if start.month == 12:
            return start.replace(year=start.year + 1, month=1)
        return start.replace(month=start.month + 1)
    return start + timedelta(seconds=NOMINAL_SECONDS[interval])


class PerformanceAnalytics:
    """Per-template performance analytics over the execution recorder's buffer"""

    def __init__(
        self,
        recorder: Optional[ExecutionRecorder] = None,
        bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
        custom_metrics: Optional[Sequence[CustomMetricDefinition]] = None,
    ):
        self.bus = bus if bus is not None else EventBus()
        self.recorder = recorder if recorder is not None else ExecutionRecorder(bus=self.bus)
        self.settings = settings or Settings()
        self.clock = clock
        self.snapshots: Dict[str, Dict[SnapshotKey, PerformanceSnapshot]] = {}
        self.anomaly_history: Dict[str, List[PerformanceAnomaly]] = {}
        self.custom_metrics: Dict[str, CustomMetricDefinition] = {
            metric.name: metric for metric in (custom_metrics or [])
        }

    async def record_execution(self, execution: ExecutionRecord) -> List[PerformanceAnomaly]:
        """
        Record an execution and run real-time analysis

        The anomaly baseline is the buffer as it was before this execution.

        Returns:
            Anomalies flagged for this execution
        """
        template_id = execution.template_id
        baseline = self.recorder.get_executions(template_id)

        await self.recorder.record_execution(execution)

        if not self.settings.enable_real_time_analytics:
            return []

        anomalies = self.detect_anomalies(template_id, execution, baseline)
        if anomalies:
            self.bus.emit(
                EventType.ANOMALIES_DETECTED,
                template_id=template_id,
                anomalies=[anomaly.model_dump(mode="json") for anomaly in anomalies],
            )
            logger.warning(
                "Anomalies detected",
                template_id=template_id,
                metrics=[anomaly.metric for anomaly in anomalies],
            )

        self._update_minute_snapshot(execution)
        return anomalies

    def detect_anomalies(
        self,
        template_id: str,
        execution: ExecutionRecord,
        baseline: Optional[List[ExecutionRecord]] = None,
    ) -> List[PerformanceAnomaly]:
        """Flag metrics deviating from the recent baseline by more than the threshold"""
        if not self.settings.enable_anomaly_detection:
            return []

        if baseline is None:
            baseline = [e for e in self.recorder.get_executions(template_id) if e is not execution]

        if len(baseline) < self.settings.anomaly_min_samples:
            return []

        window = baseline[-self.settings.anomaly_window:]
        checks = [
            ("response_time", execution.response_time, [e.response_time for e in window]),
            ("token_usage", float(execution.token_usage.total), [float(e.token_usage.total) for e in window]),
            ("cost", execution.cost, [e.cost for e in window]),
        ]
        if execution.quality_score is not None:
            checks.append((
                "quality_score",
                execution.quality_score,
                [e.quality_score for e in window if e.quality_score is not None],
            ))

        anomalies = []
        for metric, value, history in checks:
            stats = describe(history)
            if stats.std_dev == 0:
                continue

            deviation = abs(value - stats.mean) / stats.std_dev
            if deviation <= self.settings.anomaly_threshold_std_dev:
                continue

            if deviation > 5:
                severity = AnomalySeverity.HIGH
            elif deviation > 4:
                severity = AnomalySeverity.MEDIUM
            else:
                severity = AnomalySeverity.LOW

            anomalies.append(PerformanceAnomaly(
                timestamp=execution.executed_at,
                template_id=template_id,
                metric=metric,
                expected_value=stats.mean,
                actual_value=value,
                deviation_std_dev=deviation,
                severity=severity,
                possible_causes=self._possible_causes(metric, value - stats.mean),
            ))

        if anomalies:
            self._store_anomalies(template_id, anomalies)

        return anomalies

    def register_custom_metric(self, metric: CustomMetricDefinition):
        self.custom_metrics[metric.name] = metric
        self.bus.emit(EventType.METRIC_REGISTERED, metric_name=metric.name, unit=metric.unit)

    async def perform_aggregation(
        self,
        interval: SnapshotInterval,
        now: Optional[datetime] = None,
        window_start: Optional[datetime] = None,
    ) -> List[PerformanceSnapshot]:
        """
        Roll finer snapshots up into one snapshot per template and window.

        Without `window_start`, every completed window that has children but
        no snapshot yet is rolled up, so a late or skipped run catches up.
        Windows older than the retention cutoff are left alone. A window that
        already has a snapshot is never touched.
        """
        if interval is SnapshotInterval.MINUTE:
            raise ValueError("Minute snapshots are updated in real time, not rolled up")

        now = now or self.clock()
        source = SOURCE_INTERVALS[interval]
        current = interval_start(now, interval)
        cutoff = now - timedelta(days=self.settings.metrics_retention_days)

        created = []
        for template_id, snapshots in self.snapshots.items():
            if window_start is not None:
                windows = [interval_start(window_start, interval)]
            else:
                windows = sorted({
                    interval_start(timestamp, interval)
                    for child_interval, timestamp in snapshots
                    if child_interval is source and timestamp < current
                })
                windows = [start for start in windows if start > cutoff]

            for start in windows:
                key = (interval, start)
                if key in snapshots:
                    continue

                end = interval_end(start, interval)
                children = [
                    snapshot for (child_interval, timestamp), snapshot in snapshots.items()
                    if child_interval is source and start <= timestamp < end
                ]
                if not children:
                    continue

                aggregated = self._aggregate_snapshots(template_id, children, start, end, interval)
                snapshots[key] = aggregated
                created.append(aggregated)

                self.bus.emit(
                    EventType.SNAPSHOT_AGGREGATED,
                    template_id=template_id,
                    interval=interval.value,
                    timestamp=start.isoformat(),
                    source_count=len(children),
                )

        if created:
            logger.info(
                "Snapshots aggregated",
                interval=interval.value,
                windows=sorted({snapshot.timestamp.isoformat() for snapshot in created}),
                snapshots=len(created),
            )
        return created

    def generate_report(
        self,
        template_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        interval: SnapshotInterval = SnapshotInterval.MINUTE,
    ) -> PerformanceReport:
        """Summary, trends, anomalies, recommendations and previous-period comparison"""
        end = end_time or self.clock()
        start = start_time or end - timedelta(days=7)

        snapshots = self.get_snapshots_in_range(template_id, start, end, interval)
        summary = self.calculate_summary_metrics(snapshots)
        trends = self.analyze_trends(snapshots, interval) if self.settings.enable_trend_analysis else []
        anomalies = self.get_anomalies(template_id, start, end)
        recommendations = self.generate_recommendations(summary, trends, anomalies)

        previous_period = None
        period_length = end - start
        previous = [
            snapshot for snapshot in self.get_snapshots(template_id, interval)
            if start - period_length <= snapshot.timestamp < start
        ]
        if previous:
            previous_period = self.compare_metrics(
                "Previous Period",
                summary,
                self.calculate_summary_metrics(previous),
            )

        return PerformanceReport(
            template_id=template_id,
            period=ReportPeriod(start=start, end=end),
            summary=summary,
            trends=trends,
            anomalies=anomalies,
            recommendations=recommendations,
            previous_period=previous_period,
        )

    def get_metric_history(
        self,
        template_id: str,
        metric_name: str,
        interval: SnapshotInterval,
        periods: int = 30,
    ) -> List[MetricPoint]:
        """Latest `periods` values of a metric, oldest first"""
        snapshots = self.get_snapshots(template_id, interval)[-periods:] if periods > 0 else []
        return [
            MetricPoint(timestamp=snapshot.timestamp, value=self._metric_value(snapshot, metric_name))
            for snapshot in snapshots
        ]

    def get_snapshots(
        self,
        template_id: str,
        interval: Optional[SnapshotInterval] = None,
    ) -> List[PerformanceSnapshot]:
        """Snapshots oldest first; callers get copies"""
        snapshots = [
            snapshot for (snapshot_interval, _), snapshot in self.snapshots.get(template_id, {}).items()
            if interval is None or snapshot_interval is interval
        ]
        return [snapshot.model_copy(deep=True) for snapshot in sorted(snapshots, key=lambda s: s.timestamp)]

    def get_snapshots_in_range(
        self,
        template_id: str,
        start: datetime,
        end: datetime,
        interval: SnapshotInterval = SnapshotInterval.MINUTE,
    ) -> List[PerformanceSnapshot]:
        return [s for s in self.get_snapshots(template_id, interval) if start <= s.timestamp <= end]

    def get_anomalies(
        self,
        template_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[PerformanceAnomaly]:
        return [
            anomaly for anomaly in self.anomaly_history.get(template_id, [])
            if (start is None or anomaly.timestamp >= start) and (end is None or anomaly.timestamp <= end)
        ]

    def calculate_summary_metrics(self, snapshots: List[PerformanceSnapshot]) -> TemplateMetrics:
        """Count-weighted summary over snapshots"""
        total = sum(s.metrics.execution_count for s in snapshots)
        if not snapshots or total == 0:
            return TemplateMetrics()

        weights = [s.metrics.execution_count for s in snapshots]
        scored = [s for s in snapshots if s.metrics.avg_quality_score is not None]

        return TemplateMetrics(
            total_executions=total,
            success_rate=weighted_mean([s.metrics.success_rate for s in snapshots], weights),
            avg_response_time=weighted_mean([s.metrics.avg_response_time for s in snapshots], weights),
            avg_token_usage=weighted_mean([s.metrics.avg_token_usage for s in snapshots], weights),
            avg_cost=weighted_mean([s.metrics.avg_cost for s in snapshots], weights),
            last_executed=max(s.timestamp for s in snapshots),
            quality_score=weighted_mean(
                [s.metrics.avg_quality_score for s in scored],
                [s.metrics.quality_count for s in scored],
            ) if scored else None,
        )

    def analyze_trends(
        self,
        snapshots: List[PerformanceSnapshot],
        interval: SnapshotInterval = SnapshotInterval.MINUTE,
    ) -> List[PerformanceTrend]:
        """
        Regress each tracked metric against time measured in periods.

        Direction follows the raw slope. `is_improvement` reads the slope
        against the metric, so rising latency or cost is not an improvement.
        """
        if len(snapshots) < 3:
            return []

        ordered = sorted(snapshots, key=lambda s: s.timestamp)
        origin = ordered[0].timestamp
        period_seconds = NOMINAL_SECONDS[interval]

        trends = []
        for metric in TREND_METRICS:
            points = [
                ((s.timestamp - origin).total_seconds() / period_seconds, getattr(s.metrics, metric))
                for s in ordered
                if getattr(s.metrics, metric) is not None
            ]
            if len(points) < 3:
                continue

            regression = linear_regression([x for x, _ in points], [y for _, y in points])
            if regression is None:
                continue

            if regression.slope > TREND_SLOPE_THRESHOLD:
                direction = TrendDirection.IMPROVING
            elif regression.slope < -TREND_SLOPE_THRESHOLD:
                direction = TrendDirection.DECLINING
            else:
                direction = TrendDirection.STABLE

            forecast = None
            if regression.forecast:
                value, low, high = regression.forecast
                forecast = Forecast(next_period_value=value, confidence_interval=(low, high))

            trends.append(PerformanceTrend(
                metric=metric,
                direction=direction,
                slope=regression.slope,
                is_improvement=regression.slope < 0 if metric in LOWER_IS_BETTER else regression.slope > 0,
                change_percent=regression.change_percent,
                confidence=regression.r2,
                forecast=forecast,
            ))

        return trends

    def generate_recommendations(
        self,
        summary: TemplateMetrics,
        trends: List[PerformanceTrend],
        anomalies: List[PerformanceAnomaly],
    ) -> List[PerformanceRecommendation]:
        settings = self.settings
        recommendations = []

        if summary.total_executions > 0 and summary.avg_response_time > settings.latency_threshold_ms:
            recommendations.append(PerformanceRecommendation(
                type=RecommendationType.OPTIMIZATION,
                priority=RecommendationPriority.HIGH,
                title="High Response Time Detected",
                description=(
                    f"Average response time is {round(summary.avg_response_time)}ms, "
                    "which may impact user experience."
                ),
                impact="Reducing response time by 50% could improve user satisfaction and reduce abandonment.",
                suggested_action="Consider using a faster model, optimizing prompts, or implementing caching.",
                related_metrics=["avg_response_time", "success_rate"],
            ))

        cost_trend = next((t for t in trends if t.metric == "avg_cost"), None)
        if (
            cost_trend
            and cost_trend.slope > 0
            and cost_trend.change_percent > settings.cost_increase_threshold_percent
        ):
            recommendations.append(PerformanceRecommendation(
                type=RecommendationType.WARNING,
                priority=RecommendationPriority.MEDIUM,
                title="Rising Costs Detected",
                description=f"Average cost per execution has increased by {round(cost_trend.change_percent)}%.",
                impact="Continued cost increases could impact budget and ROI.",
                suggested_action="Review token usage patterns and consider prompt optimization.",
                related_metrics=["avg_cost", "avg_token_usage"],
            ))

        if summary.total_executions > 0 and summary.success_rate < settings.min_success_rate:
            recommendations.append(PerformanceRecommendation(
                type=RecommendationType.WARNING,
                priority=RecommendationPriority.HIGH,
                title="Low Success Rate",
                description=f"Success rate is {round(summary.success_rate * 100)}%, indicating reliability issues.",
                impact="Low success rates lead to poor user experience and increased support costs.",
                suggested_action="Analyze error patterns and implement better error handling.",
                related_metrics=["success_rate", "error_rate"],
            ))

        cutoff = self.clock() - timedelta(hours=24)
        recent = [anomaly for anomaly in anomalies if anomaly.timestamp > cutoff]
        if len(recent) > settings.anomaly_burst_threshold:
            recommendations.append(PerformanceRecommendation(
                type=RecommendationType.WARNING,
                priority=RecommendationPriority.MEDIUM,
                title="Frequent Anomalies Detected",
                description=f"{len(recent)} anomalies detected in the last 24 hours.",
                impact="Frequent anomalies indicate instability that could affect reliability.",
                suggested_action="Review anomaly patterns and implement stability improvements.",
                related_metrics=list(dict.fromkeys(anomaly.metric for anomaly in recent)),
            ))

        if summary.quality_score is not None and summary.quality_score < settings.min_quality_score:
            recommendations.append(PerformanceRecommendation(
                type=RecommendationType.OPTIMIZATION,
                priority=RecommendationPriority.MEDIUM,
                title="Quality Improvement Opportunity",
                description=f"Average quality score is {round(summary.quality_score * 100)}%.",
                impact="Higher quality scores correlate with better user satisfaction.",
                suggested_action="Review low-scoring executions and refine prompts.",
                related_metrics=["quality_score"],
            ))

        return recommendations

    def compare_metrics(
        self,
        label: str,
        current: TemplateMetrics,
        comparison: TemplateMetrics,
    ) -> PerformanceComparison:
        metrics: Dict[str, MetricComparison] = {}

        def add_metric(name: str, current_value: float, comparison_value: float, lower_is_better: bool = False):
            change_percent = (
                (current_value - comparison_value) / comparison_value * 100
                if comparison_value != 0
                else 0.0
            )
            metrics[name] = MetricComparison(
                current=current_value,
                comparison=comparison_value,
                change_percent=change_percent,
                is_improvement=change_percent < 0 if lower_is_better else change_percent > 0,
            )

        add_metric("success_rate", current.success_rate, comparison.success_rate)
        add_metric("avg_response_time", current.avg_response_time, comparison.avg_response_time, True)
        add_metric("avg_cost", current.avg_cost, comparison.avg_cost, True)
        add_metric("avg_token_usage", current.avg_token_usage, comparison.avg_token_usage, True)

        if current.quality_score is not None and comparison.quality_score is not None:
            add_metric("quality_score", current.quality_score, comparison.quality_score)

        return PerformanceComparison(label=label, metrics=metrics)

    async def close(self):
        self.snapshots.clear()
        self.anomaly_history.clear()
        self.custom_metrics.clear()

    def _update_minute_snapshot(self, execution: ExecutionRecord):
        template_id = execution.template_id
        bucket = interval_start(execution.executed_at, SnapshotInterval.MINUTE)
        snapshots = self.snapshots.setdefault(template_id, {})

        key = (SnapshotInterval.MINUTE, bucket)
        snapshot = snapshots.get(key)
        if snapshot is None:
            snapshot = PerformanceSnapshot(
                template_id=template_id,
                interval=SnapshotInterval.MINUTE,
                timestamp=bucket,
            )
            snapshots[key] = snapshot

        m = snapshot.metrics
        count = m.execution_count
        m.execution_count += 1
        n = m.execution_count

        m.success_rate = (m.success_rate * count + (1 if execution.success else 0)) / n
        m.error_rate = 1 - m.success_rate
        m.avg_response_time = (m.avg_response_time * count + execution.response_time) / n
        m.avg_token_usage = (m.avg_token_usage * count + execution.token_usage.total) / n
        m.total_cost += execution.cost
        m.avg_cost = m.total_cost / n

        if execution.quality_score is not None:
            scored = m.quality_count
            m.quality_count += 1
            m.avg_quality_score = ((m.avg_quality_score or 0.0) * scored + execution.quality_score) / m.quality_count

        provider = snapshot.providers.setdefault(execution.provider, ProviderMetrics())
        p_count = provider.execution_count
        provider.execution_count += 1
        provider.avg_response_time = (provider.avg_response_time * p_count + execution.response_time) / provider.execution_count
        provider.error_rate = (provider.error_rate * p_count + (0 if execution.success else 1)) / provider.execution_count
        provider.avg_cost = (provider.avg_cost * p_count + execution.cost) / provider.execution_count

        window_end = interval_end(bucket, SnapshotInterval.MINUTE)
        buffered = self.recorder.get_executions(template_id)
        in_window = [e.response_time for e in buffered if bucket <= e.executed_at < window_end]
        if len(in_window) == n:
            m.p50_response_time, m.p95_response_time, m.p99_response_time = percentiles(in_window)
        else:
            m.p50_response_time = m.p95_response_time = m.p99_response_time = m.avg_response_time

        recent = buffered[-RECENT_WINDOW:]
        if recent:
            for name, definition in self.custom_metrics.items():
                try:
                    m.custom_metrics[name] = float(definition.calculator(recent))
                except Exception as e:
                    logger.warning("Custom metric failed", metric=name, template_id=template_id, error=str(e))

        self._prune_old_snapshots(template_id)

    def _aggregate_snapshots(
        self,
        template_id: str,
        children: List[PerformanceSnapshot],
        window_start: datetime,
        window_end: datetime,
        interval: SnapshotInterval,
    ) -> PerformanceSnapshot:
        aggregated = PerformanceSnapshot(template_id=template_id, interval=interval, timestamp=window_start)
        m = aggregated.metrics
        weights = [child.metrics.execution_count for child in children]

        m.execution_count = sum(weights)
        m.total_cost = sum(child.metrics.total_cost for child in children)
        m.avg_cost = m.total_cost / m.execution_count if m.execution_count else 0.0
        m.success_rate = weighted_mean([c.metrics.success_rate for c in children], weights)
        m.error_rate = weighted_mean([c.metrics.error_rate for c in children], weights)
        m.avg_response_time = weighted_mean([c.metrics.avg_response_time for c in children], weights)
        m.avg_token_usage = weighted_mean([c.metrics.avg_token_usage for c in children], weights)

        scored = [c for c in children if c.metrics.avg_quality_score is not None]
        if scored:
            m.quality_count = sum(c.metrics.quality_count for c in scored)
            m.avg_quality_score = weighted_mean(
                [c.metrics.avg_quality_score for c in scored],
                [c.metrics.quality_count for c in scored],
            )

        buffered = [
            e.response_time for e in self.recorder.get_executions(template_id)
            if window_start <= e.executed_at < window_end
        ]
        if buffered and len(buffered) == m.execution_count:
            m.p50_response_time, m.p95_response_time, m.p99_response_time = percentiles(buffered)
        else:
            m.p50_response_time = weighted_mean([c.metrics.p50_response_time for c in children], weights)
            m.p95_response_time = weighted_mean([c.metrics.p95_response_time for c in children], weights)
            m.p99_response_time = weighted_mean([c.metrics.p99_response_time for c in children], weights)

        custom_names = {name for child in children for name in child.metrics.custom_metrics}
        for name in custom_names:
            having = [c for c in children if name in c.metrics.custom_metrics]
            m.custom_metrics[name] = weighted_mean(
                [c.metrics.custom_metrics[name] for c in having],
                [c.metrics.execution_count for c in having],
            )

        providers: Dict[str, List[ProviderMetrics]] = {}
        for child in children:
            for provider, metrics in child.providers.items():
                providers.setdefault(provider, []).append(metrics)

        for provider, entries in providers.items():
            counts = [entry.execution_count for entry in entries]
            aggregated.providers[provider] = ProviderMetrics(
                execution_count=sum(counts),
                avg_response_time=weighted_mean([e.avg_response_time for e in entries], counts),
                error_rate=weighted_mean([e.error_rate for e in entries], counts),
                avg_cost=weighted_mean([e.avg_cost for e in entries], counts),
            )

        return aggregated

    def _metric_value(self, snapshot: PerformanceSnapshot, metric_name: str) -> float:
        if metric_name in SnapshotMetrics.model_fields:
            value = getattr(snapshot.metrics, metric_name)
            return float(value) if isinstance(value, (int, float)) else 0.0
        return snapshot.metrics.custom_metrics.get(metric_name, 0.0)

    def _possible_causes(self, metric: str, delta: float) -> List[str]:
        if metric == "response_time" and delta > 0:
            return ["Provider API slowdown", "Increased prompt complexity", "Network latency"]
        if metric == "token_usage" and delta > 0:
            return ["Longer input prompts", "More verbose responses", "Changed model behavior"]
        if metric == "cost" and delta > 0:
            return ["Increased token usage", "Using more expensive model", "Provider pricing changes"]
        if metric == "quality_score" and delta < 0:
            return ["Prompt degradation", "Model performance issues", "Changed evaluation criteria"]
        return []

    def _store_anomalies(self, template_id: str, anomalies: List[PerformanceAnomaly]):
        cutoff = self.clock() - timedelta(days=self.settings.anomaly_retention_days)
        history = self.anomaly_history.get(template_id, []) + anomalies
        self.anomaly_history[template_id] = [a for a in history if a.timestamp > cutoff]

    def _prune_old_snapshots(self, template_id: str):
        snapshots = self.snapshots.get(template_id)
        if not snapshots:
            return

        cutoff = self.clock() - timedelta(days=self.settings.metrics_retention_days)
        expired = [key for key, snapshot in snapshots.items() if snapshot.timestamp <= cutoff]
        if not expired:
            return

        for key in expired:
            del snapshots[key]

        self.bus.emit(EventType.SNAPSHOTS_PRUNED, template_id=template_id, pruned_count=len(expired))
