"""Structured event log with file, ring-buffer and document-store outputs.

``EventLogger`` writes every entry as a JSON line via ``aiofiles``:

    - ``events.log`` -- all entries
    - ``errors.log`` -- ERROR and CRITICAL only
    - ``debug.log``  -- DEBUG only

Entries also land in an in-memory ring buffer for ``get_recent()`` and,
when a store is attached, are mirrored to the ``event_logs`` collection in
background tasks (tracked so ``flush()`` can wait for them).

Request context (user id and platform) lives in ``contextvars`` so
concurrent requests never see each other's context.

Global helpers:
    - ``init_event_logger()`` -- create and register the singleton
    - ``get_event_logger()``  -- retrieve it (raises if not initialised)
    - ``event_logger_ready()`` -- whether the singleton exists
"""

import asyncio
import contextvars
import logging
import traceback
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set, Union

import aiofiles

from voice_dna.database import EVENT_LOGS
from voice_dna.logging.models import LogComponent, LogEntry, LogLevel
from voice_dna.utils import generate_id, utc_now

logger = logging.getLogger(__name__)

_user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "voice_dna_log_user_id", default=None
)
_platform: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "voice_dna_log_platform", default=None
)


class EventLogger:
    """Central structured event log.

    Parameters:
        log_dir: Directory for log files (created if missing).
        store: Optional ``DocumentStore`` to mirror entries into.
        min_level: Minimum level for store mirroring.
        max_recent: Ring buffer size.
    """

    def __init__(
        self,
        log_dir: Union[str, Path] = "logs",
        store: Any = None,
        min_level: LogLevel = LogLevel.INFO,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.store = store
        self.min_level = min_level

        self._events_log = self.log_dir / "events.log"
        self._error_log = self.log_dir / "errors.log"
        self._debug_log = self.log_dir / "debug.log"

        self._recent: Deque[LogEntry] = deque(maxlen=max_recent)

        # Track pending mirror tasks to prevent garbage collection
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    @staticmethod
    def set_context(user_id: Optional[str] = None, platform: Optional[str] = None) -> None:
        """Set request context for subsequent entries in this task."""
        if user_id is not None:
            _user_id.set(user_id)
        if platform is not None:
            _platform.set(getattr(platform, "value", platform))

    @staticmethod
    def clear_context() -> None:
        _user_id.set(None)
        _platform.set(None)

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> LogEntry:
        """Record one structured entry on every configured output."""
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            user_id=_user_id.get(),
            platform=_platform.get(),
            data=data or {},
            duration_ms=duration_ms,
        )
        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_traceback = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        self._recent.append(entry)
        await self._write_to_file(entry)

        if self.store is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_store(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        return entry

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    async def critical(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.CRITICAL, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        user_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Recent entries from the ring buffer, oldest first."""
        entries = list(self._recent)
        if level is not None:
            entries = [e for e in entries if e.level == level]
        if component is not None:
            entries = [e for e in entries if e.component == component]
        if user_id is not None:
            entries = [e for e in entries if e.user_id == user_id]
        return entries[-limit:]

    async def flush(self) -> None:
        """Wait for all pending store writes.  Call before shutdown."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Private output methods
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._events_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

        if entry.level == LogLevel.DEBUG:
            async with aiofiles.open(self._debug_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _write_to_store(self, entry: LogEntry) -> None:
        try:
            await self.store.create(EVENT_LOGS, generate_id(), entry.to_dict())
        except Exception as exc:
            # Mirror failures are logged, not raised.
            logger.warning("[LOGGING] Failed to mirror event to store: %s", exc)


# ======================================================================
# GLOBAL EVENT LOGGER SINGLETON
# ======================================================================

_event_logger: Optional[EventLogger] = None


def init_event_logger(
    log_dir: Union[str, Path] = "logs",
    store: Any = None,
    min_level: LogLevel = LogLevel.INFO,
) -> EventLogger:
    """Create and register the global ``EventLogger``."""
    global _event_logger
    _event_logger = EventLogger(log_dir=log_dir, store=store, min_level=min_level)
    return _event_logger


def get_event_logger() -> EventLogger:
    """Retrieve the global ``EventLogger``.

    Raises:
        RuntimeError: If ``init_event_logger()`` has not been called yet.
    """
    if _event_logger is None:
        raise RuntimeError("Event logger not initialized. Call init_event_logger() first.")
    return _event_logger


def event_logger_ready() -> bool:
    return _event_logger is not None


def reset_event_logger() -> None:
    global _event_logger
    _event_logger = None
