"""Event models"""

from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from enum import Enum


class EventType(str, Enum):
    """Events emitted on state changes"""
    TEMPLATE_CREATED = "template.created"
    TEMPLATE_UPDATED = "template.updated"
    TEMPLATE_DELETED = "template.deleted"
    TEMPLATE_COMPILED = "template.compiled"
    VERSION_CREATED = "version.created"
    VERSIONS_PRUNED = "versions.pruned"
    EXECUTION_RECORDED = "execution.recorded"
    ANOMALIES_DETECTED = "anomalies.detected"
    SNAPSHOT_AGGREGATED = "snapshot.aggregated"
    SNAPSHOTS_PRUNED = "snapshots.pruned"
    METRIC_REGISTERED = "metric.registered"
    ERROR = "error"


class Event(BaseModel):
    """Event payload structure"""
    event_type: EventType
    template_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
    data: Dict[str, Any] = Field(default_factory=dict)
