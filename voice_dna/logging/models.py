"""Logging data models: LogLevel, LogComponent, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Log levels with numeric values for severity comparison.

    Values match the stdlib ``logging`` levels so entries can be forwarded
    without translation.
    """

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        return self.name.lower()


class LogComponent(Enum):
    """All system components that can produce structured events."""

    SERVICE = "service"
    SCRAPER = "scraper"
    EXTRACTOR = "extractor"
    SYNTHESIZER = "synthesizer"
    GENERATION = "generation"
    FEEDBACK = "feedback"
    LEARNING = "learning"
    DATABASE = "database"
    IDENTITY = "identity"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEntry:
    """Structured log entry.

    One event with its request context (user and platform), optional error
    details and timing.
    """

    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    # Context
    user_id: Optional[str] = None
    platform: Optional[str] = None

    data: Dict[str, Any] = field(default_factory=dict)

    error_type: Optional[str] = None
    error_traceback: Optional[str] = None

    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the ``event_logs`` collection."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
            "user_id": self.user_id,
            "platform": self.platform,
            "data": self.data,
            "error_type": self.error_type,
            "error_traceback": self.error_traceback,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        """Serialize to one JSON line for file logging."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_readable(self) -> str:
        """Human-readable one-liner for console output."""
        time_str = self.timestamp.strftime("%H:%M:%S")
        msg = f"[{self.level.name}] [{time_str}] [{self.component.value}] {self.message}"
        if self.user_id:
            msg += f" (user={self.user_id}"
            msg += f", platform={self.platform})" if self.platform else ")"
        if self.duration_ms is not None:
            msg += f" ({self.duration_ms}ms)"
        return msg
