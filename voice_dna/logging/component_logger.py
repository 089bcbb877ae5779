"""Per-component logger wrapper and timed-operation context manager.

``ComponentLogger`` binds a ``LogComponent`` so callers never repeat it.
When the global ``EventLogger`` is initialised, entries go there; otherwise
they are forwarded to stdlib ``logging`` under ``voice_dna.<component>``,
so library use without ``init_event_logger()`` still produces output.

``TimedOperation`` (from ``ComponentLogger.timed()``) logs the start,
elapsed duration, and success or failure of a block of code.
"""

import logging
import time
from typing import Any, Dict, Optional

from voice_dna.logging.event_logger import event_logger_ready, get_event_logger
from voice_dna.logging.models import LogComponent, LogLevel


class ComponentLogger:
    """Wrapper that binds a fixed ``LogComponent``::

        self.log = ComponentLogger(LogComponent.LEARNING)
        await self.log.info("Learning pass complete", data={"processed": 3})
    """

    def __init__(self, component: LogComponent) -> None:
        self.component = component
        self._stdlib = logging.getLogger(f"voice_dna.{component.value}")

    async def _emit(
        self,
        level: LogLevel,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        if event_logger_ready():
            await get_event_logger().log(
                level,
                self.component,
                message,
                data=data,
                error=error,
                duration_ms=duration_ms,
            )
            return

        suffix = f" ({duration_ms}ms)" if duration_ms is not None else ""
        extra = f" {data}" if data else ""
        self._stdlib.log(
            level.value,
            "%s%s%s",
            message,
            suffix,
            extra,
            exc_info=error if error is not None else None,
        )

    async def debug(self, message: str, **kwargs: Any) -> None:
        await self._emit(LogLevel.DEBUG, message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> None:
        await self._emit(LogLevel.INFO, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> None:
        await self._emit(LogLevel.WARNING, message, **kwargs)

    async def error(
        self, message: str, error: Optional[BaseException] = None, **kwargs: Any
    ) -> None:
        await self._emit(LogLevel.ERROR, message, error=error, **kwargs)

    async def critical(
        self, message: str, error: Optional[BaseException] = None, **kwargs: Any
    ) -> None:
        await self._emit(LogLevel.CRITICAL, message, error=error, **kwargs)

    def timed(self, message: str) -> "TimedOperation":
        """Async context manager that logs start/end with duration.

        Usage::

            async with self.log.timed("Synthesizing profile"):
                profile = synthesizer.synthesize(...)
        """
        return TimedOperation(self, message)


class TimedOperation:
    """Measures and logs the duration of an ``async with`` block.

    Entry logs DEBUG ``"Starting: <message>"``; a clean exit logs INFO with
    ``duration_ms``; an exception logs ERROR with the error and is
    re-raised.
    """

    def __init__(self, logger: ComponentLogger, message: str) -> None:
        self.logger = logger
        self.message = message
        self.start: Optional[float] = None
        self.duration_ms: Optional[int] = None

    async def __aenter__(self) -> "TimedOperation":
        self.start = time.monotonic()
        await self.logger.debug(f"Starting: {self.message}")
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Any,
    ) -> None:
        assert self.start is not None
        self.duration_ms = int((time.monotonic() - self.start) * 1000)

        if exc_type is not None:
            await self.logger.error(
                f"Failed: {self.message}",
                error=exc_val,
                duration_ms=self.duration_ms,
            )
        else:
            await self.logger.info(
                f"Completed: {self.message}",
                duration_ms=self.duration_ms,
            )
        # Return None (falsy) so exceptions propagate
