"""Tests for performance analytics"""

from datetime import datetime, timedelta

import pytest

from promptops.analytics.performance import (
    CustomMetricDefinition,
    PerformanceAnalytics,
    interval_end,
    interval_start,
)
from promptops.core.config import Settings
from promptops.events.bus import EventBus
from promptops.models.analytics import (
    AnomalySeverity,
    PerformanceAnomaly,
    PerformanceSnapshot,
    PerformanceTrend,
    SnapshotInterval,
    SnapshotMetrics,
    TrendDirection,
)
from promptops.models.events import EventType
from promptops.models.execution import ExecutionRecord, TemplateMetrics, TokenUsage

NOW = datetime(2024, 3, 6, 12, 30)  # a Wednesday


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def execution(executed_at, response_time=100.0, **overrides):
    data = {
        "template_id": "t1",
        "version": "1.0.0",
        "provider": "openai",
        "model": "gpt-4o-mini",
        "response_time": response_time,
        "token_usage": TokenUsage(prompt=10, completion=10, total=20),
        "cost": 0.01,
        "executed_at": executed_at,
    }
    data.update(overrides)
    return ExecutionRecord(**data)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    received = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def analytics(bus, clock):
    return PerformanceAnalytics(bus=bus, settings=Settings(), clock=clock)


def hourly_snapshots(metric, values, start=NOW):
    snapshots = []
    for index, value in enumerate(values):
        metrics = SnapshotMetrics(execution_count=10, success_rate=1.0, avg_response_time=500, avg_cost=0.01)
        setattr(metrics, metric, value)
        snapshots.append(PerformanceSnapshot(
            template_id="t1",
            interval=SnapshotInterval.HOUR,
            timestamp=start + timedelta(hours=index),
            metrics=metrics,
        ))
    return snapshots


def test_interval_boundaries():
    moment = datetime(2024, 3, 6, 12, 34, 56, 789)

    assert interval_start(moment, SnapshotInterval.MINUTE) == datetime(2024, 3, 6, 12, 34)
    assert interval_start(moment, SnapshotInterval.HOUR) == datetime(2024, 3, 6, 12)
    assert interval_start(moment, SnapshotInterval.DAY) == datetime(2024, 3, 6)
    assert interval_start(moment, SnapshotInterval.WEEK) == datetime(2024, 3, 4)
    assert interval_start(moment, SnapshotInterval.MONTH) == datetime(2024, 3, 1)
    assert interval_end(datetime(2024, 12, 1), SnapshotInterval.MONTH) == datetime(2025, 1, 1)
    assert interval_end(datetime(2024, 3, 6, 11), SnapshotInterval.HOUR) == datetime(2024, 3, 6, 12)


@pytest.mark.asyncio
async def test_anomaly_flagged_high_at_ten_std_devs(analytics, events):
    """Test an execution at mean + 10 std devs is a high severity anomaly"""
    for index in range(30):
        anomalies = await analytics.record_execution(execution(
            NOW - timedelta(minutes=40 - index),
            response_time=90.0 if index % 2 else 110.0,
        ))
        assert anomalies == []

    anomalies = await analytics.record_execution(execution(NOW, response_time=200.0))

    assert len(anomalies) == 1
    anomaly = anomalies[0]
    assert anomaly.metric == "response_time"
    assert anomaly.severity is AnomalySeverity.HIGH
    assert anomaly.expected_value == pytest.approx(100)
    assert anomaly.deviation_std_dev == pytest.approx(10)
    assert "Provider API slowdown" in anomaly.possible_causes
    assert analytics.get_anomalies("t1") == anomalies

    detected = [e for e in events if e.event_type is EventType.ANOMALIES_DETECTED]
    assert len(detected) == 1
    assert detected[0].data["anomalies"][0]["metric"] == "response_time"


@pytest.mark.asyncio
async def test_anomaly_detection_needs_minimum_samples(analytics):
    for index in range(29):
        await analytics.record_execution(execution(
            NOW - timedelta(minutes=30 - index),
            response_time=90.0 if index % 2 else 110.0,
        ))

    assert await analytics.record_execution(execution(NOW, response_time=10_000.0)) == []


@pytest.mark.asyncio
async def test_anomaly_severity_bands(analytics):
    baseline = [execution(NOW, response_time=90.0 if i % 2 else 110.0) for i in range(30)]

    low = analytics.detect_anomalies("t1", execution(NOW, response_time=135.0), baseline)
    medium = analytics.detect_anomalies("t1", execution(NOW, response_time=145.0), baseline)
    quiet = analytics.detect_anomalies("t1", execution(NOW, response_time=125.0), baseline)

    assert low[0].severity is AnomalySeverity.LOW
    assert medium[0].severity is AnomalySeverity.MEDIUM
    assert quiet == []


@pytest.mark.asyncio
async def test_minute_snapshot_incremental_update(analytics):
    bucket = datetime(2024, 3, 6, 12, 29)
    await analytics.record_execution(execution(bucket + timedelta(seconds=5), response_time=100.0, quality_score=0.8))
    await analytics.record_execution(execution(bucket + timedelta(seconds=20), response_time=200.0, provider="anthropic"))
    await analytics.record_execution(execution(
        bucket + timedelta(seconds=40),
        response_time=600.0,
        success=False,
        cost=0.04,
        quality_score=0.4,
    ))

    snapshots = analytics.get_snapshots("t1", SnapshotInterval.MINUTE)

    assert len(snapshots) == 1
    snapshot = snapshots[0]
    assert snapshot.timestamp == bucket
    metrics = snapshot.metrics
    assert metrics.execution_count == 3
    assert metrics.success_rate == pytest.approx(2 / 3)
    assert metrics.error_rate == pytest.approx(1 / 3)
    assert metrics.avg_response_time == pytest.approx(300)
    assert metrics.p50_response_time == pytest.approx(200)
    assert metrics.total_cost == pytest.approx(0.06)
    assert metrics.avg_cost == pytest.approx(0.02)
    assert metrics.avg_quality_score == pytest.approx(0.6)
    assert metrics.quality_count == 2
    assert snapshot.providers["openai"].execution_count == 2
    assert snapshot.providers["openai"].error_rate == pytest.approx(0.5)
    assert snapshot.providers["anthropic"].avg_response_time == pytest.approx(200)


@pytest.mark.asyncio
async def test_hourly_rollup_is_idempotent(analytics, events):
    """Test a second rollup of the same window creates nothing"""
    await analytics.record_execution(execution(datetime(2024, 3, 6, 10, 5), response_time=100.0))
    await analytics.record_execution(execution(datetime(2024, 3, 6, 10, 40), response_time=300.0))
    await analytics.record_execution(execution(datetime(2024, 3, 6, 10, 40, 30), response_time=500.0, success=False))
    await analytics.record_execution(execution(datetime(2024, 3, 6, 11, 10), response_time=900.0))

    created = await analytics.perform_aggregation(SnapshotInterval.HOUR, now=datetime(2024, 3, 6, 11, 30))

    assert len(created) == 1
    hourly = created[0]
    assert hourly.timestamp == datetime(2024, 3, 6, 10)
    assert hourly.metrics.execution_count == 3
    assert hourly.metrics.avg_response_time == pytest.approx(300)
    assert hourly.metrics.success_rate == pytest.approx(2 / 3)
    assert hourly.metrics.p50_response_time == pytest.approx(300)
    assert hourly.providers["openai"].execution_count == 3

    again = await analytics.perform_aggregation(SnapshotInterval.HOUR, now=datetime(2024, 3, 6, 11, 45))

    assert again == []
    assert len(analytics.get_snapshots("t1", SnapshotInterval.HOUR)) == 1
    aggregated = [e for e in events if e.event_type is EventType.SNAPSHOT_AGGREGATED]
    assert len(aggregated) == 1
    assert aggregated[0].data["source_count"] == 2


@pytest.mark.asyncio
async def test_hourly_rollup_catches_up_skipped_windows(analytics):
    """Test windows missed by earlier runs are still rolled up"""
    await analytics.record_execution(execution(datetime(2024, 3, 6, 9, 15), response_time=100.0))
    await analytics.record_execution(execution(datetime(2024, 3, 6, 10, 20), response_time=200.0))
    await analytics.record_execution(execution(datetime(2024, 3, 6, 12, 10), response_time=300.0))

    created = await analytics.perform_aggregation(SnapshotInterval.HOUR, now=datetime(2024, 3, 6, 11, 5))

    assert [s.timestamp for s in created] == [datetime(2024, 3, 6, 9), datetime(2024, 3, 6, 10)]

    later = await analytics.perform_aggregation(SnapshotInterval.HOUR, now=datetime(2024, 3, 6, 12, 5))

    assert later == []
    assert [s.timestamp for s in analytics.get_snapshots("t1", SnapshotInterval.HOUR)] == [
        datetime(2024, 3, 6, 9),
        datetime(2024, 3, 6, 10),
    ]


@pytest.mark.asyncio
async def test_daily_rollup_uses_hourly_snapshots(analytics):
    await analytics.record_execution(execution(datetime(2024, 3, 5, 9, 15), response_time=100.0))
    await analytics.record_execution(execution(datetime(2024, 3, 5, 14, 15), response_time=300.0))

    for hour in (datetime(2024, 3, 5, 9), datetime(2024, 3, 5, 14)):
        await analytics.perform_aggregation(SnapshotInterval.HOUR, window_start=hour)

    created = await analytics.perform_aggregation(SnapshotInterval.DAY, now=NOW)

    assert [s.timestamp for s in created] == [datetime(2024, 3, 5)]
    assert created[0].metrics.execution_count == 2
    assert created[0].metrics.avg_response_time == pytest.approx(200)


@pytest.mark.asyncio
async def test_returned_snapshots_are_copies(analytics):
    await analytics.record_execution(execution(datetime(2024, 3, 6, 12, 10), response_time=100.0))

    fetched = analytics.get_snapshots("t1", SnapshotInterval.MINUTE)[0]
    fetched.metrics.execution_count = 999
    ranged = analytics.get_snapshots_in_range("t1", NOW - timedelta(hours=1), NOW)[0]
    ranged.providers.clear()

    stored = analytics.get_snapshots("t1", SnapshotInterval.MINUTE)[0]
    assert stored.metrics.execution_count == 1
    assert "openai" in stored.providers


@pytest.mark.asyncio
async def test_minute_rollup_rejected(analytics):
    with pytest.raises(ValueError):
        await analytics.perform_aggregation(SnapshotInterval.MINUTE)


def test_trend_improving_success_rate(analytics):
    """Test rising success rate is improving"""
    snapshots = hourly_snapshots("success_rate", [0.5, 0.6, 0.7, 0.8, 0.9])

    trends = {t.metric: t for t in analytics.analyze_trends(snapshots, SnapshotInterval.HOUR)}

    assert trends["success_rate"].direction is TrendDirection.IMPROVING
    assert trends["success_rate"].slope == pytest.approx(0.1)
    assert trends["success_rate"].change_percent == pytest.approx(80)
    assert trends["success_rate"].forecast.next_period_value == pytest.approx(1.0)
    assert trends["avg_response_time"].direction is TrendDirection.STABLE
    assert "avg_quality_score" not in trends


def test_trend_declining_success_rate(analytics):
    snapshots = hourly_snapshots("success_rate", [0.9, 0.8, 0.7, 0.6, 0.5])

    trends = {t.metric: t for t in analytics.analyze_trends(snapshots, SnapshotInterval.HOUR)}

    assert trends["success_rate"].direction is TrendDirection.DECLINING


def test_trend_direction_follows_raw_slope(analytics):
    """Test rising latency is classified by slope sign but is not an improvement"""
    snapshots = hourly_snapshots("avg_response_time", [100, 200, 300, 400, 500])

    trends = {t.metric: t for t in analytics.analyze_trends(snapshots, SnapshotInterval.HOUR)}

    assert trends["avg_response_time"].slope == pytest.approx(100)
    assert trends["avg_response_time"].direction is TrendDirection.IMPROVING
    assert trends["avg_response_time"].is_improvement is False
    assert trends["success_rate"].direction is TrendDirection.STABLE


def test_falling_cost_is_an_improvement(analytics):
    snapshots = hourly_snapshots("avg_cost", [0.5, 0.4, 0.3, 0.2])

    trends = {t.metric: t for t in analytics.analyze_trends(snapshots, SnapshotInterval.HOUR)}

    assert trends["avg_cost"].direction is TrendDirection.DECLINING
    assert trends["avg_cost"].is_improvement is True


def test_rising_cost_recommendation_keyed_on_slope(analytics):
    summary = TemplateMetrics(total_executions=10, success_rate=1.0, avg_response_time=100)
    rising = PerformanceTrend(
        metric="avg_cost", direction=TrendDirection.STABLE, slope=0.002, change_percent=40, confidence=0.9,
    )
    falling = PerformanceTrend(
        metric="avg_cost", direction=TrendDirection.STABLE, slope=-0.002, change_percent=40, confidence=0.9,
    )

    assert [r.title for r in analytics.generate_recommendations(summary, [rising], [])] == ["Rising Costs Detected"]
    assert analytics.generate_recommendations(summary, [falling], []) == []


def test_trends_need_three_points(analytics):
    assert analytics.analyze_trends(hourly_snapshots("success_rate", [0.1, 0.9])) == []


def test_recommendations(analytics, clock):
    summary = TemplateMetrics(
        total_executions=10,
        success_rate=0.8,
        avg_response_time=4500,
        quality_score=0.5,
    )
    cost_trend = PerformanceTrend(
        metric="avg_cost",
        direction=TrendDirection.IMPROVING,
        slope=0.02,
        change_percent=50,
        confidence=0.9,
    )
    anomalies = [
        PerformanceAnomaly(
            timestamp=clock() - timedelta(hours=1),
            template_id="t1",
            metric="cost",
            expected_value=1,
            actual_value=10,
            deviation_std_dev=6,
            severity=AnomalySeverity.HIGH,
        )
        for _ in range(6)
    ]

    titles = [r.title for r in analytics.generate_recommendations(summary, [cost_trend], anomalies)]

    assert titles == [
        "High Response Time Detected",
        "Rising Costs Detected",
        "Low Success Rate",
        "Frequent Anomalies Detected",
        "Quality Improvement Opportunity",
    ]


def test_no_recommendations_without_data(analytics):
    assert analytics.generate_recommendations(TemplateMetrics(), [], []) == []


@pytest.mark.asyncio
async def test_report_with_previous_period(analytics):
    await analytics.record_execution(execution(NOW - timedelta(days=10), response_time=1000.0))
    await analytics.record_execution(execution(NOW - timedelta(days=1), response_time=5000.0))
    await analytics.record_execution(execution(NOW - timedelta(hours=2), response_time=5000.0, success=False))

    report = analytics.generate_report("t1")

    assert report.period.end == NOW
    assert report.period.start == NOW - timedelta(days=7)
    assert report.summary.total_executions == 2
    assert report.summary.avg_response_time == pytest.approx(5000)
    assert report.summary.success_rate == pytest.approx(0.5)

    titles = {r.title for r in report.recommendations}
    assert "High Response Time Detected" in titles
    assert "Low Success Rate" in titles

    latency = report.previous_period.metrics["avg_response_time"]
    assert latency.change_percent == pytest.approx(400)
    assert latency.is_improvement is False
    assert report.previous_period.metrics["success_rate"].is_improvement is False


@pytest.mark.asyncio
async def test_report_without_data(analytics):
    report = analytics.generate_report("unknown")

    assert report.summary.total_executions == 0
    assert report.trends == []
    assert report.previous_period is None


@pytest.mark.asyncio
async def test_custom_metric_and_history(analytics, events):
    analytics.register_custom_metric(CustomMetricDefinition(
        name="long_responses",
        description="Share of responses over 200ms",
        calculator=lambda executions: sum(e.response_time > 200 for e in executions) / len(executions),
        unit="ratio",
    ))

    await analytics.record_execution(execution(datetime(2024, 3, 6, 12, 0), response_time=100.0))
    await analytics.record_execution(execution(datetime(2024, 3, 6, 12, 1), response_time=300.0))

    history = analytics.get_metric_history("t1", "long_responses", SnapshotInterval.MINUTE)

    assert [point.value for point in history] == [0.0, 0.5]
    assert [point.timestamp for point in history] == [datetime(2024, 3, 6, 12, 0), datetime(2024, 3, 6, 12, 1)]
    assert any(e.event_type is EventType.METRIC_REGISTERED for e in events)

    latency = analytics.get_metric_history("t1", "avg_response_time", SnapshotInterval.MINUTE, periods=1)
    assert [point.value for point in latency] == [300.0]


@pytest.mark.asyncio
async def test_failing_custom_metric_does_not_break_recording(analytics):
    analytics.register_custom_metric(CustomMetricDefinition(
        name="broken",
        description="Always fails",
        calculator=lambda executions: 1 / 0,
    ))

    await analytics.record_execution(execution(NOW))

    snapshot = analytics.get_snapshots("t1")[0]
    assert "broken" not in snapshot.metrics.custom_metrics
    assert snapshot.metrics.execution_count == 1


@pytest.mark.asyncio
async def test_old_snapshots_pruned_inline(analytics, clock, events):
    await analytics.record_execution(execution(NOW))

    clock.now = NOW + timedelta(days=91)
    await analytics.record_execution(execution(clock.now))

    snapshots = analytics.get_snapshots("t1")
    assert [s.timestamp for s in snapshots] == [clock.now.replace(second=0, microsecond=0)]
    pruned = [e for e in events if e.event_type is EventType.SNAPSHOTS_PRUNED]
    assert pruned[0].data["pruned_count"] == 1


@pytest.mark.asyncio
async def test_real_time_analytics_disabled(bus, clock):
    analytics = PerformanceAnalytics(
        bus=bus,
        settings=Settings(enable_real_time_analytics=False),
        clock=clock,
    )

    await analytics.record_execution(execution(NOW))

    assert analytics.get_snapshots("t1") == []
    assert analytics.recorder.usage_count("t1") == 1
