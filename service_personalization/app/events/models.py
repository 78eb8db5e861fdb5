"""
Event records produced by the event source.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    """Runtime event types."""
    PAGE_LOAD = "page_load"
    SCROLL = "scroll"
    TIME_ON_PAGE = "time_on_page"
    CLICK = "click"
    EXIT_INTENT = "exit_intent"
    VISIBILITY_CHANGE = "visibility_change"
    CUSTOM = "custom"
    PAGE_VIEW = "page_view"
    WORKFLOW_EXECUTED = "workflow_executed"


@dataclass(frozen=True)
class EventRecord:
    """A normalized page event."""
    event_type: EventType
    timestamp: float = field(default_factory=time.time)
    selector: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def time_on_page(self) -> float:
        return float(self.payload.get("time_on_page") or 0)

    @property
    def scroll_percentage(self) -> float:
        return float(self.payload.get("scroll_percentage") or 0)

    @property
    def utm(self) -> Dict[str, str]:
        return dict(self.payload.get("utm") or {})

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "eventType": self.event_type.value,
            "timestamp": self.timestamp,
            **self.payload,
        }
        if self.selector:
            data["selector"] = self.selector
        return data
