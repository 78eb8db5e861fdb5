"""
Visitor identity, visit counting and session tracking.
"""

import time
import uuid
from typing import Callable, Optional

from shared.logging import get_logger
from .storage import StateStorage


VISITOR_ID_KEY = "personalization_visitor_id"
VISIT_COUNT_KEY = "personalization_visit_count"
LAST_ACTIVITY_KEY = "personalization_last_activity"
SESSION_ID_KEY = "personalization_session_id"


class VisitorState:
    """Persisted client state backing the user context.

    The visitor id, visit counter and last-activity timestamp live in durable
    storage; the session id lives in session storage. A new session starts
    (and the visit counter increments) when there is no session id or the
    last activity is older than ``session_timeout`` seconds.
    """

    def __init__(self, local: StateStorage, session: StateStorage,
                 session_timeout: float = 1800.0,
                 clock: Callable[[], float] = time.time):
        self.local = local
        self.session = session
        self.session_timeout = session_timeout
        self.clock = clock
        self.logger = get_logger("personalization.visitor_state")

        self.visitor_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.visit_count = 0

    @property
    def is_returning(self) -> bool:
        return self.visit_count > 1

    async def load(self) -> "VisitorState":
        """Read (or create) the visitor identity and refresh the session."""
        self.visitor_id = await self.local.get_item(VISITOR_ID_KEY)
        if not self.visitor_id:
            self.visitor_id = str(uuid.uuid4())
            await self.local.set_item(VISITOR_ID_KEY, self.visitor_id)
            self.logger.info("New visitor", visitor_id=self.visitor_id)

        self.visit_count = _to_int(await self.local.get_item(VISIT_COUNT_KEY))
        await self.ensure_session()
        return self

    async def ensure_session(self) -> bool:
        """Start a new session when needed; returns True when one was started."""
        now = self.clock()
        session_id = await self.session.get_item(SESSION_ID_KEY)
        last_activity = _to_float(await self.local.get_item(LAST_ACTIVITY_KEY))

        expired = last_activity is None or now - last_activity > self.session_timeout
        started = False

        if not session_id or expired:
            session_id = str(uuid.uuid4())
            await self.session.set_item(SESSION_ID_KEY, session_id)
            self.visit_count = _to_int(await self.local.get_item(VISIT_COUNT_KEY)) + 1
            await self.local.set_item(VISIT_COUNT_KEY, str(self.visit_count))
            started = True
            self.logger.info(
                "New session",
                session_id=session_id,
                visit_count=self.visit_count
            )

        self.session_id = session_id
        await self.local.set_item(LAST_ACTIVITY_KEY, str(now))
        return started

    async def touch(self) -> None:
        """Record visitor activity."""
        await self.local.set_item(LAST_ACTIVITY_KEY, str(self.clock()))

    async def on_visibility_change(self, visible: bool) -> bool:
        """Re-check the session when the page becomes visible again."""
        if not visible:
            return False
        return await self.ensure_session()


def _to_int(value: Optional[str]) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


def _to_float(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value else None
    except ValueError:
        return None
