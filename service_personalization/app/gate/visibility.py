"""
Anti-flicker visibility gate.
"""

import asyncio
import time
from enum import Enum
from typing import Callable, Optional

from shared.logging import get_logger
from ..page.base import Page


HIDE_STYLE_ID = "personalization-init-hide"
REVEAL_STYLE_ID = "personalization-reveal"
LOADING_INDICATOR_ID = "personalization-loading"


class GatePhase(str, Enum):
    """Visibility phases. REVEALED is terminal."""
    HIDDEN = "hidden"
    REVEALED = "revealed"


class VisibilityGate:
    """Suppresses page paint until personalization finishes or a deadline passes.

    ``reveal`` is idempotent and wins over everything: once revealed, the
    page is never hidden again. The safety timer does not cancel in-flight
    work, it only reveals.
    """

    def __init__(self, page: Page, max_init_time: float = 5.0, enabled: bool = True,
                 hide_method: str = "opacity", show_loading_indicator: bool = True,
                 transition_duration: float = 0.3,
                 clock: Callable[[], float] = time.monotonic):
        self.page = page
        self.max_init_time = max_init_time
        self.enabled = enabled
        self.hide_method = hide_method
        self.show_loading_indicator = show_loading_indicator
        self.transition_duration = transition_duration
        self.clock = clock
        self.logger = get_logger("personalization.visibility_gate")

        self.phase = GatePhase.HIDDEN
        self.deadline: Optional[float] = None
        self.hidden_at: Optional[float] = None
        self.reveal_reason: Optional[str] = None
        self._timer: Optional[asyncio.Task] = None
        self._revealed = asyncio.Event()

        # Content is never hidden when hiding is disabled.
        if not enabled:
            self.phase = GatePhase.REVEALED
            self.reveal_reason = "disabled"
            self._revealed.set()

    @property
    def is_revealed(self) -> bool:
        return self.phase == GatePhase.REVEALED

    def _hide_css(self) -> str:
        rule = "opacity: 0 !important" if self.hide_method == "opacity" else "visibility: hidden !important"
        return f"body > *:not(#{LOADING_INDICATOR_ID}) {{ {rule}; }}"

    async def hide(self) -> None:
        """Suppress paint and arm the safety timer."""
        if self.is_revealed:
            return

        self.hidden_at = self.clock()
        self.deadline = self.hidden_at + self.max_init_time
        self._timer = asyncio.create_task(self._safety_timeout())

        try:
            await self.page.inject_style(HIDE_STYLE_ID, self._hide_css())
            if self.show_loading_indicator:
                await self.page.append_html(
                    f'<div id="{LOADING_INDICATOR_ID}" style="position: fixed; top: 50%; left: 50%; '
                    'transform: translate(-50%, -50%); z-index: 10001; font-family: sans-serif; '
                    'color: #666">Personalizing content...</div>'
                )
            self.logger.debug("Content hidden", hide_method=self.hide_method, max_init_time=self.max_init_time)
        except Exception as e:
            self.logger.error("Failed to hide content", error=str(e))
            await self.reveal("hide_error")

    async def _safety_timeout(self) -> None:
        await asyncio.sleep(self.max_init_time)
        if not self.is_revealed:
            self.logger.warning("Initialization deadline reached", max_init_time=self.max_init_time)
            await self.reveal("timeout")

    async def reveal(self, reason: str = "complete") -> bool:
        """Restore paint. Returns False when already revealed."""
        if self.is_revealed:
            return False

        self.phase = GatePhase.REVEALED
        self.reveal_reason = reason

        timer = self._timer
        self._timer = None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

        try:
            await self.page.remove_element(LOADING_INDICATOR_ID)
            await self.page.remove_element(HIDE_STYLE_ID)
            await self.page.inject_style(
                REVEAL_STYLE_ID,
                f"body > * {{ transition: opacity {self.transition_duration}s ease; }}"
            )
        except Exception as e:
            self.logger.error("Failed to restore content", error=str(e))

        elapsed = self.clock() - self.hidden_at if self.hidden_at is not None else 0.0
        self.logger.info("Content revealed", reason=reason, elapsed_ms=round(elapsed * 1000, 1))
        self._revealed.set()
        return True

    async def wait_revealed(self, timeout: Optional[float] = None) -> bool:
        """Wait for the reveal; False if timeout elapses first."""
        try:
            await asyncio.wait_for(self._revealed.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def close(self) -> None:
        """Cancel the safety timer without revealing."""
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
