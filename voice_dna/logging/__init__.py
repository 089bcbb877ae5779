"""Structured event logging for Voice DNA."""
from voice_dna.logging.models import LogLevel, LogComponent, LogEntry
from voice_dna.logging.event_logger import (
    EventLogger,
    init_event_logger,
    get_event_logger,
    event_logger_ready,
    reset_event_logger,
)
from voice_dna.logging.component_logger import ComponentLogger, TimedOperation

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "EventLogger", "init_event_logger", "get_event_logger",
    "event_logger_ready", "reset_event_logger",
    "ComponentLogger", "TimedOperation",
]
