"""
Live browser page driven through Playwright.
"""

import itertools
from typing import Any, Dict, List, Optional

from playwright.async_api import ElementHandle, Error as PlaywrightError
from playwright.async_api import Page as BrowserPage
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from shared.logging import get_logger
from .base import (
    Element, ElementCallback, Page, PageEnvironment, PageSignal, SignalCallback,
    Unsubscribe, css_property_name,
)
from ..visitor.storage import StateStorage


BINDING_NAME = "__personalizationDispatch"

SIGNAL_SCRIPT = """
(binding) => {
    if (window.__personalizationSignals) return;
    window.__personalizationSignals = true;
    const send = (kind, selector, data) => window[binding]({signal: kind, selector: selector, data: data});
    const describe = (el) => {
        if (el.id) return '#' + el.id;
        const classes = (typeof el.className === 'string' ? el.className : '').trim().split(/\\s+/).filter(Boolean);
        if (classes.length) return '.' + classes.join('.');
        return el.tagName.toLowerCase();
    };
    window.addEventListener('scroll', () => send('scroll', null, {
        scroll_y: window.scrollY,
        scroll_height: document.documentElement.scrollHeight,
        viewport_height: window.innerHeight
    }), {passive: true});
    document.addEventListener('click', (e) => send('click', describe(e.target), {x: e.clientX, y: e.clientY}));
    document.addEventListener('mouseleave', (e) => send('pointer_leave', null, {client_y: e.clientY}));
    document.addEventListener('visibilitychange', () => send('visibility_change', null, {
        visible: document.visibilityState === 'visible'
    }));
}
"""


class PlaywrightStorage(StateStorage):
    """Browser Web Storage accessed through page.evaluate."""

    def __init__(self, page: BrowserPage, area: str):
        self.page = page
        self.area = area

    async def get_item(self, key: str) -> Optional[str]:
        return await self.page.evaluate(f"(k) => window.{self.area}.getItem(k)", key)

    async def set_item(self, key: str, value: str) -> None:
        await self.page.evaluate(f"([k, v]) => window.{self.area}.setItem(k, v)", [key, str(value)])

    async def remove_item(self, key: str) -> None:
        await self.page.evaluate(f"(k) => window.{self.area}.removeItem(k)", key)


class PlaywrightElement(Element):
    """Element wrapper around a Playwright element handle."""

    def __init__(self, page: "PlaywrightPage", handle: ElementHandle, tag_name: str):
        self.page = page
        self.handle = handle
        self.tag_name = tag_name

    async def get_attribute(self, name: str) -> Optional[str]:
        return await self.handle.get_attribute(name)

    async def set_attribute(self, name: str, value: str) -> None:
        await self.handle.evaluate("(el, [n, v]) => el.setAttribute(n, v)", [name, value])

    async def get_text(self) -> str:
        return await self.handle.text_content() or ""

    async def set_text(self, text: str) -> None:
        await self.handle.evaluate("(el, t) => { el.textContent = t; }", text)

    async def get_html(self) -> str:
        return await self.handle.inner_html()

    async def set_html(self, html: str) -> None:
        await self.handle.evaluate("(el, h) => { el.innerHTML = h; }", html)

    async def set_value(self, value: str) -> None:
        await self.handle.evaluate("(el, v) => { el.value = v; }", value)

    async def has_class(self, name: str) -> bool:
        return await self.handle.evaluate("(el, c) => el.classList.contains(c)", name)

    async def add_class(self, name: str) -> None:
        await self.handle.evaluate("(el, c) => el.classList.add(c)", name)

    async def remove_class(self, name: str) -> None:
        await self.handle.evaluate("(el, c) => el.classList.remove(c)", name)

    async def get_style(self, name: str) -> str:
        return await self.handle.evaluate(
            "(el, p) => el.style.getPropertyValue(p)", css_property_name(name)
        )

    async def set_style(self, name: str, value: str) -> None:
        await self.handle.evaluate(
            "(el, [p, v]) => v ? el.style.setProperty(p, v) : el.style.removeProperty(p)",
            [css_property_name(name), value]
        )

    async def remove(self) -> None:
        await self.handle.evaluate("(el) => el.remove()")

    async def on(self, event: str, callback: ElementCallback) -> None:
        listener_id = await self.page.register_listener(callback)
        await self.handle.evaluate(
            "(el, [event, id, binding]) => el.addEventListener(event, () => window[binding]({listener: id}))",
            [event, listener_id, BINDING_NAME]
        )


class PlaywrightPage(Page):
    """Page over a live Playwright browser page."""

    def __init__(self, page: BrowserPage, environment: PageEnvironment):
        self.page = page
        self.environment = environment
        self.logger = get_logger("personalization.playwright_page")

        self._local_storage = PlaywrightStorage(page, "localStorage")
        self._session_storage = PlaywrightStorage(page, "sessionStorage")
        self._binding_ready = False
        self._signals_ready = False
        self._listener_ids = itertools.count(1)
        self.listeners: Dict[int, ElementCallback] = {}
        self.subscribers: List[SignalCallback] = []

    @classmethod
    async def attach(cls, page: BrowserPage) -> "PlaywrightPage":
        """Build a PlaywrightPage reading the environment from the browser."""
        facts = await page.evaluate("""() => ({
            url: window.location.href,
            referrer: document.referrer,
            title: document.title,
            user_agent: navigator.userAgent,
            viewport_width: window.innerWidth,
            viewport_height: window.innerHeight,
            language: navigator.language,
            timezone: Intl.DateTimeFormat().resolvedOptions().timeZone
        })""")
        return cls(page, PageEnvironment(**facts))

    @property
    def local_storage(self) -> StateStorage:
        return self._local_storage

    @property
    def session_storage(self) -> StateStorage:
        return self._session_storage

    async def _wrap(self, handle: ElementHandle) -> PlaywrightElement:
        tag_name = await handle.evaluate("(el) => el.tagName.toLowerCase()")
        return PlaywrightElement(self, handle, tag_name)

    async def query_all(self, selector: str) -> List[Element]:
        handles = await self.page.query_selector_all(selector)
        return [await self._wrap(handle) for handle in handles]

    async def wait_for_selector(self, selector: str, timeout: float) -> Optional[Element]:
        try:
            handle = await self.page.wait_for_selector(selector, state="attached", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            return None
        if handle is None:
            return None
        return await self._wrap(handle)

    async def inject_style(self, style_id: str, css: str) -> None:
        await self.page.evaluate(
            """([id, css]) => {
                let style = document.getElementById(id);
                if (!style) {
                    style = document.createElement('style');
                    style.id = id;
                    (document.head || document.documentElement).appendChild(style);
                }
                style.textContent = css;
            }""",
            [style_id, css]
        )

    async def append_html(self, html: str) -> Optional[Element]:
        handle = await self.page.evaluate_handle(
            """(html) => {
                const template = document.createElement('template');
                template.innerHTML = html.trim();
                const first = template.content.firstElementChild;
                (document.body || document.documentElement).appendChild(template.content);
                return first;
            }""",
            html
        )
        element = handle.as_element()
        return await self._wrap(element) if element is not None else None

    async def remove_element(self, element_id: str) -> bool:
        return await self.page.evaluate(
            "(id) => { const el = document.getElementById(id); if (!el) return false; el.remove(); return true; }",
            element_id
        )

    async def navigate(self, url: str) -> None:
        await self.page.goto(url)

    async def open_tab(self, url: str) -> None:
        await self.page.evaluate("(url) => window.open(url, '_blank', 'noopener,noreferrer')", url)

    async def _ensure_binding(self) -> None:
        if self._binding_ready:
            return
        await self.page.expose_function(BINDING_NAME, self._dispatch)
        self._binding_ready = True

    async def register_listener(self, callback: ElementCallback) -> int:
        await self._ensure_binding()
        listener_id = next(self._listener_ids)
        self.listeners[listener_id] = callback
        return listener_id

    async def subscribe(self, callback: SignalCallback) -> Unsubscribe:
        await self._ensure_binding()
        if not self._signals_ready:
            await self.page.evaluate(SIGNAL_SCRIPT, BINDING_NAME)
            self._signals_ready = True
        self.subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self.subscribers:
                self.subscribers.remove(callback)

        return unsubscribe

    async def _dispatch(self, payload: Dict[str, Any]) -> None:
        """Entry point for events forwarded from the browser."""
        try:
            if "listener" in payload:
                callback = self.listeners.get(payload["listener"])
                if callback is not None:
                    await callback()
                return

            signal = PageSignal(
                kind=payload.get("signal", ""),
                selector=payload.get("selector"),
                data=payload.get("data") or {}
            )
            for callback in list(self.subscribers):
                await callback(signal)
        except PlaywrightError as e:
            self.logger.error("Browser event dispatch failed", error=str(e))
