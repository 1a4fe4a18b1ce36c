"""Usage gate: policy hook bracketing every remote-model request.

Monitors receive a start event before the request and an end event after
it. Returning ``False`` from a monitor vetoes the request (or the use of
its response) without raising. Events are not persisted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pipeline_agent.llm.provider import TokenUsage
from pipeline_agent.utils import maybe_await

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageEvent:
    """One half of a start/end pair for a single model request."""

    phase: Literal["start", "end"]
    source: str
    model: str
    started_at: float
    ended_at: float | None = None
    usage: TokenUsage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int | None:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at) * 1000)


# A monitor may be sync or async. ``False`` vetoes; ``None``/``True`` proceed.
UsageMonitor = Callable[[UsageEvent], "bool | None | Awaitable[bool | None]"]


class UsageGate:
    """Fans usage events out to monitors and folds their verdicts."""

    def __init__(self, monitors: list[UsageMonitor] | None = None):
        self._monitors: list[UsageMonitor] = list(monitors or [])

    def add_monitor(self, monitor: UsageMonitor) -> None:
        self._monitors.append(monitor)

    async def _emit(self, event: UsageEvent) -> bool:
        proceed = True
        for monitor in self._monitors:
            verdict = await maybe_await(monitor(event))
            if verdict is False:
                proceed = False
        return proceed

    async def emit_start_checked(
        self,
        source: str,
        model: str,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[UsageEvent, bool]:
        event = UsageEvent(
            phase="start",
            source=source,
            model=model,
            started_at=time.time(),
            metadata=metadata or {},
        )
        proceed = await self._emit(event)
        if not proceed:
            logger.info("Usage monitor vetoed request start", extra={"model": model})
        return event, proceed

    async def emit_end_checked(
        self,
        source: str,
        model: str,
        started_at: float,
        usage: TokenUsage | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[UsageEvent, bool]:
        event = UsageEvent(
            phase="end",
            source=source,
            model=model,
            started_at=started_at,
            ended_at=time.time(),
            usage=usage,
            metadata=metadata or {},
        )
        proceed = await self._emit(event)
        if not proceed:
            logger.info("Usage monitor vetoed request end", extra={"model": model})
        return event, proceed
