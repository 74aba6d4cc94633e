from .event import Event
from .scoring_events import (
    GradingTaskDeadLettered,
    PredictionRegraded,
    PredictionScored,
    PredictionVoided,
    SkippedContestClosed,
)
from .sink import EventSink, LoggingEventSink, MemoryEventSink

__all__ = [
    "Event",
    "PredictionScored",
    "SkippedContestClosed",
    "PredictionVoided",
    "PredictionRegraded",
    "GradingTaskDeadLettered",
    "EventSink",
    "LoggingEventSink",
    "MemoryEventSink",
]
