"""Latency and outcome recording for external calls."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from compliance_agent.schemas import ToolCallMetric

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


class MetricsRecorder:
    """Records one `ToolCallMetric` per tracked call.

    Tracking is observational: the wrapped operation's result is returned as-is
    and its exception is re-raised after the failed metric has been recorded.
    Nothing is retried.
    """

    def __init__(self) -> None:
        self._metrics: list[ToolCallMetric] = []
        self._observer: Callable[[ToolCallMetric], None] | None = None

    @property
    def metrics(self) -> list[ToolCallMetric]:
        return list(self._metrics)

    def set_observer(self, observer: Callable[[ToolCallMetric], None] | None) -> None:
        """Set an optional callback invoked after each recorded call."""
        self._observer = observer

    async def track(
        self,
        tool: str,
        operation: Callable[[], Awaitable[T]],
        metadata: dict[str, Any] | None = None,
    ) -> T:
        timer = Timer()
        try:
            with timer:
                result = await operation()
        except Exception as exc:
            self._record(
                ToolCallMetric(
                    tool=tool,
                    latency_ms=timer.elapsed_ms,
                    success=False,
                    metadata=metadata,
                    error_message=str(exc) or exc.__class__.__name__,
                )
            )
            logger.warning("Tool call '%s' failed after %.1fms: %s", tool, timer.elapsed_ms, exc)
            raise

        self._record(
            ToolCallMetric(
                tool=tool,
                latency_ms=timer.elapsed_ms,
                success=True,
                metadata=metadata,
            )
        )
        logger.debug("Tool call '%s' succeeded in %.1fms", tool, timer.elapsed_ms)
        return result

    def _record(self, metric: ToolCallMetric) -> None:
        self._metrics.append(metric)
        if self._observer is not None:
            self._observer(metric)


def step_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"
