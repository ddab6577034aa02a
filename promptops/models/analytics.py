"""Performance analytics models"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Tuple

from pydantic import BaseModel, Field

from promptops.models.execution import TemplateMetrics


class SnapshotInterval(str, Enum):
    """Snapshot granularities, finest first"""
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class ProviderMetrics(BaseModel):
    execution_count: int = 0
    avg_response_time: float = 0.0
    error_rate: float = 0.0
    avg_cost: float = 0.0


class SnapshotMetrics(BaseModel):
    execution_count: int = 0
    success_rate: float = 0.0
    avg_response_time: float = 0.0
    p50_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    avg_token_usage: float = 0.0
    total_cost: float = 0.0
    avg_cost: float = 0.0
    error_rate: float = 0.0
    avg_quality_score: Optional[float] = None
    quality_count: int = 0
    custom_metrics: Dict[str, float] = Field(default_factory=dict)


class PerformanceSnapshot(BaseModel):
    """Aggregated metrics for one template over one window"""
    template_id: str
    interval: SnapshotInterval
    timestamp: datetime  # window start
    metrics: SnapshotMetrics = Field(default_factory=SnapshotMetrics)
    providers: Dict[str, ProviderMetrics] = Field(default_factory=dict)


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class Forecast(BaseModel):
    next_period_value: float
    confidence_interval: Tuple[float, float]


class PerformanceTrend(BaseModel):
    metric: str
    direction: TrendDirection
    slope: float
    is_improvement: bool = False  # slope read against the metric (lower latency or cost is better)
    change_percent: float
    confidence: float  # R squared
    forecast: Optional[Forecast] = None


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PerformanceAnomaly(BaseModel):
    timestamp: datetime
    template_id: str
    metric: str
    expected_value: float
    actual_value: float
    deviation_std_dev: float
    severity: AnomalySeverity
    possible_causes: List[str] = Field(default_factory=list)


class RecommendationType(str, Enum):
    OPTIMIZATION = "optimization"
    WARNING = "warning"
    INSIGHT = "insight"


class RecommendationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PerformanceRecommendation(BaseModel):
    type: RecommendationType
    priority: RecommendationPriority
    title: str
    description: str
    impact: str
    suggested_action: Optional[str] = None
    related_metrics: List[str] = Field(default_factory=list)


class MetricComparison(BaseModel):
    current: float
    comparison: float
    change_percent: float
    is_improvement: bool


class PerformanceComparison(BaseModel):
    label: str
    metrics: Dict[str, MetricComparison] = Field(default_factory=dict)


class ReportPeriod(BaseModel):
    start: datetime
    end: datetime


class PerformanceReport(BaseModel):
    template_id: str
    period: ReportPeriod
    summary: TemplateMetrics
    trends: List[PerformanceTrend] = Field(default_factory=list)
    anomalies: List[PerformanceAnomaly] = Field(default_factory=list)
    recommendations: List[PerformanceRecommendation] = Field(default_factory=list)
    previous_period: Optional[PerformanceComparison] = None


class MetricPoint(BaseModel):
    timestamp: datetime
    value: float
