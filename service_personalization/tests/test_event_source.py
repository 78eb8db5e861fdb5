"""
Unit tests for the event source.
"""

import asyncio
import pytest

from service_personalization.app.events.models import EventRecord, EventType
from service_personalization.app.events.source import EventSource, scroll_percentage
from service_personalization.app.page.base import PageSignal, SignalKind
from shared.test_helpers import create_page


def scroll(y, height=2800, viewport=800):
    return PageSignal(SignalKind.SCROLL, data={"scroll_y": y, "scroll_height": height, "viewport_height": viewport})


class TestScrollPercentage:
    """Test cases for scroll_percentage."""

    @pytest.mark.parametrize("y,height,viewport,expected", [
        (0, 2800, 800, 0),
        (1000, 2800, 800, 50),
        (2000, 2800, 800, 100),
        (5000, 2800, 800, 100),
        (-10, 2800, 800, 0),
        (0, 800, 800, 0),
        (100, 600, 800, 0),
    ])
    def test_scroll_percentage(self, y, height, viewport, expected):
        """Test clamping and short pages."""
        assert scroll_percentage(y, height, viewport) == expected


class TestEventSource:
    """Test cases for EventSource."""

    @pytest.fixture
    def page(self):
        return create_page()

    @pytest.fixture
    def records(self):
        return []

    @pytest.fixture
    def sink(self, records):
        async def collect(record):
            records.append(record)
        return collect

    @pytest.mark.asyncio
    async def test_click_carries_selector_and_enrichment(self, page, sink, records):
        """Test clicks are normalized with the element selector."""
        source = EventSource(page, sink, tick_interval=60, throttle=0)
        await source.start()

        await page.emit(scroll(1000))
        await page.click("#buy", x=10, y=20)
        await source.stop()

        click = [r for r in records if r.event_type == EventType.CLICK][0]
        assert click.selector == "#buy"
        assert click.payload["x"] == 10
        assert click.payload["y"] == 20
        assert click.scroll_percentage == 50
        assert "time_on_page" in click.payload

    @pytest.mark.asyncio
    async def test_exit_intent_only_through_top_edge(self, page, sink, records):
        """Test pointer leaving through the top edge is exit intent."""
        source = EventSource(page, sink, tick_interval=60, throttle=0)
        await source.start()

        await page.emit(PageSignal(SignalKind.POINTER_LEAVE, data={"client_y": 300}))
        await page.emit(PageSignal(SignalKind.POINTER_LEAVE, data={"client_y": -2}))
        await source.stop()

        assert [r.event_type for r in records] == [EventType.EXIT_INTENT]

    @pytest.mark.asyncio
    async def test_visibility_change(self, page, sink, records):
        """Test visibility signals carry the visible flag."""
        source = EventSource(page, sink, tick_interval=60, throttle=0)
        await source.start()

        await page.emit(PageSignal(SignalKind.VISIBILITY_CHANGE, data={"visible": False}))
        await source.stop()

        assert records[0].event_type == EventType.VISIBILITY_CHANGE
        assert records[0].payload["visible"] is False

    @pytest.mark.asyncio
    async def test_scroll_debounced(self, page, sink, records):
        """Test a burst of scroll signals produces one record with the final depth."""
        source = EventSource(page, sink, tick_interval=60, throttle=0.02)
        await source.start()

        for y in (200, 600, 1400):
            await page.emit(scroll(y))
        await asyncio.sleep(0.08)
        await source.stop()

        scrolls = [r for r in records if r.event_type == EventType.SCROLL]
        assert len(scrolls) == 1
        assert scrolls[0].scroll_percentage == 70

    @pytest.mark.asyncio
    async def test_time_on_page_ticks(self, page, sink, records):
        """Test the ticker emits time-on-page records."""
        source = EventSource(page, sink, tick_interval=0.01, throttle=0)
        await source.start()

        await asyncio.sleep(0.05)
        await source.stop()

        ticks = [r for r in records if r.event_type == EventType.TIME_ON_PAGE]
        assert len(ticks) >= 2
        assert ticks[-1].time_on_page >= ticks[0].time_on_page

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, page, sink, records):
        """Test no records are produced after stop."""
        source = EventSource(page, sink, tick_interval=60, throttle=0)
        await source.start()
        await source.stop()

        await page.click("#buy")

        assert records == []
        assert page.subscribers == []

    @pytest.mark.asyncio
    async def test_sink_failure_is_contained(self, page):
        """Test a failing sink does not break signal delivery."""
        calls = []

        async def failing(record):
            calls.append(record)
            raise RuntimeError("sink down")

        source = EventSource(page, failing, tick_interval=60, throttle=0)
        await source.start()

        await page.click("#buy")
        await page.click("#cta")
        await source.stop()

        assert len(calls) == 2

    def test_record_enrichment(self, page):
        """Test records built directly carry time and scroll values."""
        now = [100.0]
        source = EventSource(page, None, clock=lambda: now[0])
        now[0] = 112.5

        record = source.record(EventType.CUSTOM, eventName="x")

        assert isinstance(record, EventRecord)
        assert record.time_on_page == 12.5
        assert record.scroll_percentage == 0
        assert record.payload["eventName"] == "x"
