"""Runtime services: notifications and best-effort tracing."""

from promptcascade.runtime.event_bus import (
    CascadeEvent,
    EventBus,
    EventType,
    NotificationLevel,
)
from promptcascade.runtime.tracing import (
    BestEffortCostRecorder,
    BestEffortTracer,
    CostRecord,
    CostRecorder,
    Tracer,
)

__all__ = [
    "CascadeEvent",
    "EventBus",
    "EventType",
    "NotificationLevel",
    "BestEffortCostRecorder",
    "BestEffortTracer",
    "CostRecord",
    "CostRecorder",
    "Tracer",
]
