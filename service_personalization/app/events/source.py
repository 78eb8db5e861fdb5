"""
Event source normalizing raw page signals into event records.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger
from .models import EventRecord, EventType
from ..page.base import Page, PageSignal, SignalKind, Unsubscribe


EventSink = Callable[[EventRecord], Awaitable[None]]


def scroll_percentage(scroll_y: float, scroll_height: float, viewport_height: float) -> int:
    """Percentage of the scrollable distance covered, 0 for pages that cannot scroll."""
    scrollable = scroll_height - viewport_height
    if scrollable <= 0:
        return 0
    return max(0, min(100, round(scroll_y / scrollable * 100)))


class EventSource:
    """Produces EventRecords from page signals and a time-on-page ticker.

    Every record carries the current ``time_on_page`` (seconds) and
    ``scroll_percentage`` so continuous triggers see consistent values
    whatever event they are evaluated against.
    """

    def __init__(self, page: Page, sink: EventSink,
                 tick_interval: float = 1.0, throttle: float = 0.1,
                 clock: Callable[[], float] = time.monotonic):
        self.page = page
        self.sink = sink
        self.tick_interval = tick_interval
        self.throttle = throttle
        self.clock = clock
        self.logger = get_logger("personalization.event_source")

        self.started_at = clock()
        self.scroll_percentage = 0
        self.running = False

        self._unsubscribe: Optional[Unsubscribe] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._scroll_task: Optional[asyncio.Task] = None

    @property
    def time_on_page(self) -> float:
        return max(0.0, self.clock() - self.started_at)

    def record(self, event_type: EventType, selector: Optional[str] = None, **payload: Any) -> EventRecord:
        """Build an enriched record."""
        data = {
            "time_on_page": round(self.time_on_page, 3),
            "scroll_percentage": self.scroll_percentage,
        }
        data.update(payload)
        return EventRecord(event_type=event_type, selector=selector, payload=data)

    async def start(self) -> None:
        """Subscribe to page signals and start the time-on-page ticker."""
        if self.running:
            return
        self.running = True
        self._unsubscribe = await self.page.subscribe(self._on_signal)
        self._tick_task = asyncio.create_task(self._tick_loop())
        self.logger.debug("Event source started", tick_interval=self.tick_interval)

    async def stop(self) -> None:
        """Unsubscribe and cancel pending timers."""
        self.running = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        for task in (self._tick_task, self._scroll_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._tick_task = None
        self._scroll_task = None
        self.logger.debug("Event source stopped")

    async def _deliver(self, record: EventRecord) -> None:
        try:
            await self.sink(record)
        except Exception as e:
            self.logger.error("Event sink failed", event_type=record.event_type.value, error=str(e))

    async def _tick_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.tick_interval)
            await self._deliver(self.record(EventType.TIME_ON_PAGE))

    async def _debounced_scroll(self) -> None:
        await asyncio.sleep(self.throttle)
        # Past the debounce window; later signals must not cancel delivery.
        self._scroll_task = None
        await self._deliver(self.record(EventType.SCROLL))

    async def _on_signal(self, signal: PageSignal) -> None:
        if not self.running:
            return

        data = signal.data or {}

        if signal.kind == SignalKind.SCROLL:
            self.scroll_percentage = scroll_percentage(
                float(data.get("scroll_y", 0)),
                float(data.get("scroll_height", 0)),
                float(data.get("viewport_height", 0))
            )
            if self.throttle <= 0:
                await self._deliver(self.record(EventType.SCROLL))
                return
            if self._scroll_task is not None and not self._scroll_task.done():
                self._scroll_task.cancel()
            self._scroll_task = asyncio.create_task(self._debounced_scroll())

        elif signal.kind == SignalKind.CLICK:
            await self._deliver(self.record(
                EventType.CLICK,
                selector=signal.selector,
                x=data.get("x", 0),
                y=data.get("y", 0)
            ))

        elif signal.kind == SignalKind.POINTER_LEAVE:
            if float(data.get("client_y", 1)) <= 0:
                await self._deliver(self.record(EventType.EXIT_INTENT))

        elif signal.kind == SignalKind.VISIBILITY_CHANGE:
            await self._deliver(self.record(
                EventType.VISIBILITY_CHANGE,
                visible=bool(data.get("visible", True))
            ))

        else:
            self.logger.debug("Ignoring page signal", kind=signal.kind)
