"""
Page abstraction the engine personalizes.

The engine never touches a concrete document model directly. It works on
a Page (queries, style injection, navigation and signal subscription) and
on Elements returned by it. Backends:

- soup: in-memory document backed by BeautifulSoup
- playwright: live browser page driven through playwright.async_api
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional


SignalCallback = Callable[["PageSignal"], Awaitable[None]]
ElementCallback = Callable[[], Awaitable[None]]
Unsubscribe = Callable[[], None]


class SignalKind:
    """Raw page signal kinds delivered to subscribers."""
    SCROLL = "scroll"
    CLICK = "click"
    POINTER_LEAVE = "pointer_leave"
    VISIBILITY_CHANGE = "visibility_change"


@dataclass(frozen=True)
class PageEnvironment:
    """Static facts about the loaded page and the browser showing it."""
    url: str
    referrer: str = ""
    title: str = ""
    user_agent: str = ""
    viewport_width: int = 1280
    viewport_height: int = 800
    language: str = "en-US"
    timezone: str = "UTC"


@dataclass
class PageSignal:
    """Raw lifecycle or interaction signal emitted by a page backend.

    ``data`` carries kind specific values: ``scroll_y``, ``scroll_height`` and
    ``viewport_height`` for scroll; ``x``/``y`` for click; ``client_y`` for
    pointer_leave; ``visible`` for visibility_change.
    """
    kind: str
    selector: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


def css_property_name(name: str) -> str:
    """Convert a camelCase style property (backgroundColor) to CSS form."""
    if name.startswith("--"):
        return name
    return re.sub(r"(?<!^)(?=[A-Z])", "-", name.strip()).lower()


def parse_style(style: Optional[str]) -> Dict[str, str]:
    """Parse an inline style attribute into an ordered property map."""
    properties: Dict[str, str] = {}
    for declaration in (style or "").split(";"):
        if ":" not in declaration:
            continue
        name, value = declaration.split(":", 1)
        name = name.strip().lower()
        if name:
            properties[name] = value.strip()
    return properties


def format_style(properties: Dict[str, str]) -> str:
    """Render a property map back into an inline style attribute."""
    return "; ".join(f"{name}: {value}" for name, value in properties.items())


def element_selector(tag_name: str, element_id: Optional[str], class_names: Iterable[str]) -> str:
    """Describe a clicked element the way click triggers are configured: #id, .classes or tag."""
    if element_id:
        return f"#{element_id}"
    classes = [name for name in class_names if name]
    if classes:
        return "." + ".".join(classes)
    return tag_name.lower()


class Element(ABC):
    """A live element of the page."""

    tag_name: str

    @abstractmethod
    async def get_attribute(self, name: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_attribute(self, name: str, value: str) -> None:
        ...

    @abstractmethod
    async def get_text(self) -> str:
        ...

    @abstractmethod
    async def set_text(self, text: str) -> None:
        ...

    @abstractmethod
    async def get_html(self) -> str:
        """Inner HTML."""

    @abstractmethod
    async def set_html(self, html: str) -> None:
        ...

    @abstractmethod
    async def set_value(self, value: str) -> None:
        """Set the current value of a form control."""

    @abstractmethod
    async def has_class(self, name: str) -> bool:
        ...

    @abstractmethod
    async def add_class(self, name: str) -> None:
        ...

    @abstractmethod
    async def remove_class(self, name: str) -> None:
        ...

    @abstractmethod
    async def get_style(self, name: str) -> str:
        """Inline style value, empty string when unset."""

    @abstractmethod
    async def set_style(self, name: str, value: str) -> None:
        """Set an inline style property; an empty value removes it."""

    @abstractmethod
    async def remove(self) -> None:
        ...

    @abstractmethod
    async def on(self, event: str, callback: ElementCallback) -> None:
        """Attach a DOM event listener (click, focus)."""


class Page(ABC):
    """A page being personalized."""

    environment: PageEnvironment

    @abstractmethod
    async def query_all(self, selector: str) -> List[Element]:
        ...

    async def query(self, selector: str) -> Optional[Element]:
        elements = await self.query_all(selector)
        return elements[0] if elements else None

    @abstractmethod
    async def wait_for_selector(self, selector: str, timeout: float) -> Optional[Element]:
        """Wait until an element matches, returning None when the timeout elapses."""

    @abstractmethod
    async def inject_style(self, style_id: str, css: str) -> None:
        """Add (or replace) a document-level style block."""

    @abstractmethod
    async def append_html(self, html: str) -> Optional[Element]:
        """Append markup to the body, returning its first element."""

    @abstractmethod
    async def remove_element(self, element_id: str) -> bool:
        """Remove the element with the given id, False when absent."""

    @abstractmethod
    async def navigate(self, url: str) -> None:
        ...

    @abstractmethod
    async def open_tab(self, url: str) -> None:
        ...

    @abstractmethod
    async def subscribe(self, callback: SignalCallback) -> Unsubscribe:
        """Deliver raw page signals to callback until the returned function is called."""

    @property
    @abstractmethod
    def local_storage(self):
        """Durable StateStorage shared by every page load of the site."""

    @property
    @abstractmethod
    def session_storage(self):
        """StateStorage scoped to the browsing session."""
