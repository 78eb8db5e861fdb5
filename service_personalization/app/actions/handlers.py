"""
Action handlers.

Each handler applies one ActionKind to the page and must be safe to apply
twice: re-application leaves the page as a single application would.
Handlers return True when they changed the page and False when the
desired state was already in place. Invalid configs raise
ActionExecutionError.
"""

import html
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from shared.errors import ActionExecutionError
from shared.logging import get_logger
from ..config import EngineConfig
from ..events.context import PageContext, UserContext, resolve_placeholder
from ..events.models import EventRecord, EventType
from ..page.base import Element, Page, css_property_name
from ..rules.models import ActionKind, Node, Workflow
from ..scheduling import TaskScheduler


logger = get_logger("personalization.action_handlers")

BOUND_ATTRIBUTE = "data-personalization-bound"
OVERLAY_ID_PREFIX = "personalization-overlay-"
REDIRECT_KEY_PREFIX = "redirect_"
SHOW_START_DELAY = 0.01
TEXT_INPUT_TYPES = ("", "text", "email", "tel", "number", "search", "url", "password")
PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


@dataclass
class ActionContext:
    """Everything a handler may touch while applying an action."""
    page: Page
    config: EngineConfig
    scheduler: TaskScheduler
    page_context: PageContext
    user_context: UserContext
    emit: Callable[[EventRecord], Awaitable[None]]
    clock: Callable[[], float] = field(default=time.time)


Handler = Callable[[Node, Workflow, ActionContext], Awaitable[bool]]


TARGET_KEYS: Dict[ActionKind, Tuple[str, ...]] = {
    ActionKind.PROGRESSIVE_FORM: ("triggerField", "selector"),
    ActionKind.DYNAMIC_CONTENT: ("targetContainer", "targetElement", "selector"),
    ActionKind.DISPLAY_OVERLAY: (),
    ActionKind.REDIRECT_PAGE: (),
    ActionKind.CUSTOM_EVENT: (),
}


def target_keys(kind: ActionKind) -> Tuple[str, ...]:
    return TARGET_KEYS.get(kind, ("selector",))


def target_selector(action: Node) -> Optional[str]:
    """Selector the action operates on, None for page-level actions."""
    kind = action.action_kind
    if kind is None:
        return None
    for key in target_keys(kind):
        value = action.config.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _required(action: Node, key: str, *fallbacks: str) -> Any:
    for name in (key,) + fallbacks:
        value = action.config.get(name)
        if value is not None and value != "":
            return value
    raise ActionExecutionError(
        f"'{key}' is required",
        details={"action_id": action.id, "action": action.name}
    )


async def _targets(action: Node, ctx: ActionContext) -> List[Element]:
    selector = target_selector(action)
    if selector is None:
        raise ActionExecutionError(
            "Target selector is required",
            details={"action_id": action.id, "action": action.name}
        )
    return await ctx.page.query_all(selector)


def looks_like_url(text: str) -> bool:
    return text.startswith(("http://", "https://", "/", "mailto:", "tel:", "#"))


def replaced_content(current: str, original_text: str, new_text: str) -> Optional[str]:
    """Content after applying a replacement, or None when nothing should change."""
    if original_text and original_text in current:
        # Already applied when the replacement itself contains originalText.
        if original_text in new_text and new_text in current:
            return None
        return current.replace(original_text, new_text)
    if new_text in current:
        return None
    return new_text


async def replace_text(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    new_text = str(_required(action, "newText"))
    original_text = str(action.config.get("originalText") or "")
    changed = False

    for element in await _targets(action, ctx):
        tag = element.tag_name
        input_type = ((await element.get_attribute("type")) or "").lower()

        if tag == "input" and input_type in ("submit", "button", "reset"):
            if await element.get_attribute("value") != new_text:
                await element.set_attribute("value", new_text)
                changed = True

        elif tag == "button":
            text = replaced_content(await element.get_text(), original_text, new_text)
            if text is not None:
                await element.set_text(text)
                changed = True

        elif tag in ("input", "textarea") and (tag == "textarea" or input_type in TEXT_INPUT_TYPES):
            if await element.get_attribute("placeholder") != new_text:
                await element.set_value(new_text)
                await element.set_attribute("placeholder", new_text)
                changed = True

        elif tag == "a" and looks_like_url(new_text):
            if await element.get_attribute("href") != new_text:
                await element.set_attribute("href", new_text)
                changed = True

        else:
            markup = replaced_content(await element.get_html(), original_text, new_text)
            if markup is not None:
                await element.set_html(markup)
                changed = True

    return changed


def _animation(action: Node) -> str:
    return str(action.config.get("animation") or "none").lower()


async def hide_element(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    animation = _animation(action)
    duration = ctx.config.transition_duration
    changed = False

    for element in await _targets(action, ctx):
        if await element.get_style("display") == "none":
            continue
        changed = True

        if animation in ("fade", "slide"):
            await element.set_style("transition", f"opacity {duration}s ease, transform {duration}s ease")
            await element.set_style("opacity", "0")
            if animation == "slide":
                await element.set_style("transform", "translateY(-20px)")

            async def finish(element: Element = element) -> None:
                await element.set_style("display", "none")

            ctx.scheduler.call_later(duration, finish, name=f"hide:{action.id}")
        else:
            await element.set_style("display", "none")

    return changed


async def show_element(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    animation = _animation(action)
    duration = ctx.config.transition_duration
    display = str(action.config.get("display") or "block")
    changed = False

    for element in await _targets(action, ctx):
        if await element.get_style("display") == display and await element.get_style("opacity") in ("", "1"):
            continue
        changed = True

        if animation in ("fade", "slide"):
            await element.set_style("opacity", "0")
            if animation == "slide":
                await element.set_style("transform", "translateY(-20px)")
            await element.set_style("transition", f"opacity {duration}s ease, transform {duration}s ease")
            await element.set_style("display", display)

            async def finish(element: Element = element, slide: bool = animation == "slide") -> None:
                await element.set_style("opacity", "")
                if slide:
                    await element.set_style("transform", "")

            # Final values land after the start state has been painted.
            ctx.scheduler.call_later(SHOW_START_DELAY, finish, name=f"show:{action.id}")
        else:
            await element.set_style("display", display)
            await element.set_style("opacity", "")

    return changed


async def modify_css(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    prop = css_property_name(str(_required(action, "customProperty", "property")))
    value = str(_required(action, "value"))
    changed = False

    for element in await _targets(action, ctx):
        if await element.get_style(prop) != value:
            await element.set_style(prop, value)
            changed = True

    return changed


def _class_names(action: Node) -> List[str]:
    return str(_required(action, "className")).split()


async def add_class(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    class_names = _class_names(action)
    changed = False

    for element in await _targets(action, ctx):
        for name in class_names:
            if not await element.has_class(name):
                await element.add_class(name)
                changed = True

    return changed


async def remove_class(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    class_names = _class_names(action)
    changed = False

    for element in await _targets(action, ctx):
        for name in class_names:
            if await element.has_class(name):
                await element.remove_class(name)
                changed = True

    return changed


def overlay_id(action: Node) -> str:
    return f"{OVERLAY_ID_PREFIX}{re.sub(r'[^A-Za-z0-9_-]', '-', action.id)}"


async def display_overlay(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    element_id = overlay_id(action)
    if await ctx.page.query(f'[id="{element_id}"]') is not None:
        return False

    content = str(action.config.get("content") or "")
    markup = (
        f'<div id="{element_id}" class="personalization-overlay" '
        'style="position: fixed; top: 0; left: 0; width: 100%; height: 100%; '
        'background: rgba(0,0,0,0.8); z-index: 10000; display: flex; '
        'align-items: center; justify-content: center">'
        '<div class="personalization-overlay-content" '
        'style="background: white; padding: 20px; border-radius: 8px; max-width: 90%; '
        f'max-height: 90%; overflow: auto">{content}</div></div>'
    )

    overlay = await ctx.page.append_html(markup)
    if overlay is None:
        raise ActionExecutionError("Overlay could not be created", details={"action_id": action.id})

    async def dismiss() -> None:
        await ctx.page.remove_element(element_id)

    await overlay.on("click", dismiss)

    if action.config.get("autoClose"):
        delay = float(action.config.get("autoCloseDelay") or 5)
        ctx.scheduler.call_later(delay, dismiss, name=f"overlay:{action.id}")

    return True


def _normalize_url(url: str) -> str:
    parts = urlsplit(url)
    return parts._replace(fragment="", path=parts.path.rstrip("/") or "/").geturl()


async def redirect_page(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    raw_url = str(_required(action, "url", "redirectUrl")).strip()
    current_url = ctx.page_context.url
    target = urljoin(current_url, raw_url)

    if urlsplit(target).scheme not in ("http", "https"):
        raise ActionExecutionError("Invalid redirect URL", details={"url": raw_url})

    if _normalize_url(target) == _normalize_url(current_url):
        logger.info("Skipping redirect to current page", url=target)
        return False

    key = f"{REDIRECT_KEY_PREFIX}{target}"
    now = ctx.clock()
    storage = ctx.page.session_storage
    last = await storage.get_item(key)
    try:
        last_at = float(last) if last else None
    except ValueError:
        last_at = None
    if last_at is not None and now - last_at < ctx.config.redirect_guard_window:
        logger.warning("Skipping repeated redirect", url=target, seconds_since=now - last_at)
        return False
    await storage.set_item(key, str(now))

    new_tab = bool(action.config.get("newTab"))
    delay = float(action.config.get("delay") or 0)

    async def go() -> None:
        if new_tab:
            await ctx.page.open_tab(target)
        else:
            await ctx.page.navigate(target)

    if delay > 0:
        ctx.scheduler.call_later(delay, go, name=f"redirect:{action.id}")
    else:
        await go()

    logger.info("Redirect scheduled", url=target, delay=delay, new_tab=new_tab)
    return True


async def custom_event(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    event_name = str(_required(action, "eventName"))
    record = EventRecord(
        event_type=EventType.CUSTOM,
        payload={
            "eventName": event_name,
            "eventData": action.config.get("eventData") or {},
            "workflowId": workflow.id,
            "actionId": action.id,
            "pageUrl": ctx.page_context.url,
            "sessionId": ctx.user_context.session_id,
        }
    )
    await ctx.emit(record)
    return True


async def progressive_form(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    fields = action.config.get("additionalFields")
    if isinstance(fields, str):
        selectors = [s.strip() for s in fields.split(",") if s.strip()]
    else:
        selectors = [str(s).strip() for s in (fields or []) if str(s).strip()]
    if not selectors:
        raise ActionExecutionError("'additionalFields' is required", details={"action_id": action.id})

    slide = _animation(action) == "slide"
    duration = ctx.config.transition_duration
    changed = False

    for trigger_field in await _targets(action, ctx):
        bound = ((await trigger_field.get_attribute(BOUND_ATTRIBUTE)) or "").split()
        if action.id in bound:
            continue

        async def reveal() -> None:
            for selector in selectors:
                for element in await ctx.page.query_all(selector):
                    await element.set_style("display", "block")
                    if slide:
                        await element.set_style("transition", f"transform {duration}s ease")
                        await element.set_style("transform", "translateY(0)")

        await trigger_field.on("focus", reveal)
        await trigger_field.set_attribute(BOUND_ATTRIBUTE, " ".join(bound + [action.id]))
        changed = True

    return changed


async def dynamic_content(action: Node, workflow: Workflow, ctx: ActionContext) -> bool:
    template = str(_required(action, "contentTemplate", "templateHtml", "content"))

    def substitute(match) -> str:
        value = resolve_placeholder(match.group(1), ctx.user_context, ctx.page_context)
        return html.escape(value) if value is not None else match.group(0)

    content = PLACEHOLDER_PATTERN.sub(substitute, template)
    changed = False

    for container in await _targets(action, ctx):
        if await container.get_html() != content:
            await container.set_html(content)
            changed = True

    return changed


ACTION_HANDLERS: Dict[ActionKind, Handler] = {
    ActionKind.REPLACE_TEXT: replace_text,
    ActionKind.HIDE_ELEMENT: hide_element,
    ActionKind.SHOW_ELEMENT: show_element,
    ActionKind.MODIFY_CSS: modify_css,
    ActionKind.ADD_CLASS: add_class,
    ActionKind.REMOVE_CLASS: remove_class,
    ActionKind.DISPLAY_OVERLAY: display_overlay,
    ActionKind.REDIRECT_PAGE: redirect_page,
    ActionKind.CUSTOM_EVENT: custom_event,
    ActionKind.PROGRESSIVE_FORM: progressive_form,
    ActionKind.DYNAMIC_CONTENT: dynamic_content,
}
