"""Execution telemetry models"""

from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


class TokenUsage(BaseModel):
    """Token counts reported by the provider"""
    model_config = ConfigDict(frozen=True)

    prompt: int = 0
    completion: int = 0
    total: int = 0


class ExecutionRecord(BaseModel):
    """One compile-and-invoke event, as reported by the execution provider"""
    model_config = ConfigDict(frozen=True)

    template_id: str
    version: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    provider: str
    model: str
    response: str = ""
    response_time: float  # milliseconds
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    success: bool = True
    error: Optional[str] = None
    quality_score: Optional[float] = None
    executed_at: datetime = Field(default_factory=datetime.now)


class TemplateMetrics(BaseModel):
    """Summary metrics for one template"""
    total_executions: int = 0
    success_rate: float = 0.0
    avg_response_time: float = 0.0
    avg_token_usage: float = 0.0
    avg_cost: float = 0.0
    last_executed: Optional[datetime] = None
    quality_score: Optional[float] = None
