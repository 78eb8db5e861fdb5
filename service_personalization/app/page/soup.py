"""
In-memory page backed by BeautifulSoup.

Used to render personalized HTML on the server, by the command line
entry point, and by the test-suite. Runtime signals that a browser would
produce are injected with ``emit``, ``click`` and ``focus``.
"""

import asyncio
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from shared.logging import get_logger
from .base import (
    Element, ElementCallback, Page, PageEnvironment, PageSignal, SignalCallback,
    SignalKind, Unsubscribe, element_selector, format_style, parse_style,
)
from ..visitor.storage import MemoryStorage, StateStorage


class SoupElement(Element):
    """Element wrapper around a BeautifulSoup tag."""

    def __init__(self, page: "SoupPage", tag: Tag):
        self.page = page
        self.tag = tag
        self.tag_name = tag.name.lower()

    def __eq__(self, other):
        return isinstance(other, SoupElement) and other.tag is self.tag

    def __hash__(self):
        return id(self.tag)

    async def get_attribute(self, name: str) -> Optional[str]:
        value = self.tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    async def set_attribute(self, name: str, value: str) -> None:
        self.tag[name] = value
        self.page.notify_mutation()

    async def get_text(self) -> str:
        return self.tag.get_text()

    async def set_text(self, text: str) -> None:
        self.tag.string = text
        self.page.notify_mutation()

    async def get_html(self) -> str:
        return self.tag.decode_contents()

    async def set_html(self, html: str) -> None:
        self.tag.clear()
        fragment = BeautifulSoup(html, "html.parser")
        for child in list(fragment.contents):
            self.tag.append(child.extract())
        self.page.notify_mutation()

    async def set_value(self, value: str) -> None:
        if self.tag_name == "textarea":
            self.tag.string = value
        else:
            self.tag["value"] = value
        self.page.notify_mutation()

    def _classes(self) -> List[str]:
        classes = self.tag.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        return list(classes)

    async def has_class(self, name: str) -> bool:
        return name in self._classes()

    async def add_class(self, name: str) -> None:
        classes = self._classes()
        if name not in classes:
            classes.append(name)
            self.tag["class"] = classes
            self.page.notify_mutation()

    async def remove_class(self, name: str) -> None:
        classes = self._classes()
        if name in classes:
            classes.remove(name)
            if classes:
                self.tag["class"] = classes
            else:
                del self.tag["class"]
            self.page.notify_mutation()

    async def get_style(self, name: str) -> str:
        return parse_style(self.tag.get("style")).get(name.lower(), "")

    async def set_style(self, name: str, value: str) -> None:
        properties = parse_style(self.tag.get("style"))
        name = name.lower()
        if value:
            properties[name] = value
        else:
            properties.pop(name, None)

        if properties:
            self.tag["style"] = format_style(properties)
        elif self.tag.has_attr("style"):
            del self.tag["style"]
        self.page.notify_mutation()

    async def remove(self) -> None:
        self.page.listeners.pop(id(self.tag), None)
        self.tag.decompose()
        self.page.notify_mutation()

    async def on(self, event: str, callback: ElementCallback) -> None:
        self.page.listeners.setdefault(id(self.tag), {}).setdefault(event, []).append(callback)

    def selector(self) -> str:
        return element_selector(self.tag_name, self.tag.get("id"), self._classes())


class SoupPage(Page):
    """Page over an in-memory HTML document."""

    def __init__(self, html: str, environment: PageEnvironment,
                 local_storage: Optional[StateStorage] = None,
                 session_storage: Optional[StateStorage] = None):
        self.soup = BeautifulSoup(html, "html.parser")
        self.environment = environment
        self.logger = get_logger("personalization.soup_page")

        self._local_storage = local_storage or MemoryStorage()
        self._session_storage = session_storage or MemoryStorage()

        self.listeners: Dict[int, Dict[str, List[ElementCallback]]] = {}
        self.subscribers: List[SignalCallback] = []
        self.navigations: List[str] = []
        self.opened_tabs: List[str] = []
        self._mutation = asyncio.Event()

    @property
    def local_storage(self) -> StateStorage:
        return self._local_storage

    @property
    def session_storage(self) -> StateStorage:
        return self._session_storage

    def notify_mutation(self) -> None:
        """Wake everything waiting for a selector."""
        self._mutation.set()
        self._mutation = asyncio.Event()

    def _container(self) -> Tag:
        return self.soup.body or self.soup.find("html") or self.soup

    async def query_all(self, selector: str) -> List[Element]:
        return [SoupElement(self, tag) for tag in self.soup.select(selector)]

    async def wait_for_selector(self, selector: str, timeout: float) -> Optional[Element]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            mutation = self._mutation
            element = await self.query(selector)
            if element is not None:
                return element

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None

            try:
                await asyncio.wait_for(mutation.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return None

    async def inject_style(self, style_id: str, css: str) -> None:
        style = self.soup.find(id=style_id)
        if style is None:
            style = self.soup.new_tag("style", id=style_id)
            parent = self.soup.head or self.soup.find("html") or self.soup
            parent.append(style)
        style.string = css
        self.notify_mutation()

    async def append_html(self, html: str) -> Optional[Element]:
        fragment = BeautifulSoup(html, "html.parser")
        first = None
        container = self._container()
        for child in list(fragment.contents):
            node = child.extract()
            container.append(node)
            if first is None and isinstance(node, Tag):
                first = node
        self.notify_mutation()
        return SoupElement(self, first) if first is not None else None

    async def remove_element(self, element_id: str) -> bool:
        tag = self.soup.find(id=element_id)
        if tag is None:
            return False
        await SoupElement(self, tag).remove()
        return True

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        self.logger.info("Navigation requested", url=url)

    async def open_tab(self, url: str) -> None:
        self.opened_tabs.append(url)
        self.logger.info("New tab requested", url=url)

    async def subscribe(self, callback: SignalCallback) -> Unsubscribe:
        self.subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self.subscribers:
                self.subscribers.remove(callback)

        return unsubscribe

    # Signal injection

    async def emit(self, signal: PageSignal) -> None:
        """Deliver a raw signal to every subscriber."""
        for callback in list(self.subscribers):
            await callback(signal)

    async def dispatch(self, selector: str, event: str) -> int:
        """Run the listeners attached to the first element matching selector."""
        tag = self.soup.select_one(selector)
        if tag is None:
            return 0
        callbacks = list(self.listeners.get(id(tag), {}).get(event, []))
        for callback in callbacks:
            await callback()
        return len(callbacks)

    async def click(self, selector: str, x: int = 0, y: int = 0) -> None:
        """Simulate a user click: element listeners first, then the page signal."""
        tag = self.soup.select_one(selector)
        if tag is None:
            return
        described = SoupElement(self, tag).selector()
        await self.dispatch(selector, "click")
        await self.emit(PageSignal(SignalKind.CLICK, selector=described, data={"x": x, "y": y}))

    async def focus(self, selector: str) -> None:
        await self.dispatch(selector, "focus")

    async def insert_html(self, parent_selector: str, html: str) -> None:
        """Mutate the document from outside the engine, as page scripts do."""
        parent = self.soup.select_one(parent_selector)
        if parent is None:
            raise ValueError(f"No element matches {parent_selector}")
        fragment = BeautifulSoup(html, "html.parser")
        for child in list(fragment.contents):
            parent.append(child.extract())
        self.notify_mutation()

    def serialize(self) -> str:
        return str(self.soup)
