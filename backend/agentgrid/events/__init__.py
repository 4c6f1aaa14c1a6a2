"""
Event bus, payload types, detection and schedules
"""

from .event_bus import Event, EventBus, EventSummary
from .event_detector import DetectorState, EventDetector
from .event_log import FileEventLog, MemoryEventLog
from .payloads import EventPayload, EventSeverity, EventType, PerformanceMetrics
from .schedules import DEFAULT_SCHEDULES, Cadence, ScheduleEntry, ScheduleTable

__all__ = [
    "Event",
    "EventBus",
    "EventSummary",
    "EventDetector",
    "DetectorState",
    "FileEventLog",
    "MemoryEventLog",
    "EventPayload",
    "EventSeverity",
    "EventType",
    "PerformanceMetrics",
    "Cadence",
    "ScheduleEntry",
    "ScheduleTable",
    "DEFAULT_SCHEDULES",
]
