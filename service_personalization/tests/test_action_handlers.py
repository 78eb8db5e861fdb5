"""
Unit tests for action handlers, the execution guard and the action executor.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from service_personalization.app.actions.executor import ActionExecutor, ExecutionStatus
from service_personalization.app.actions.guard import ExecutionGuard
from service_personalization.app.actions.handlers import (
    ActionContext, add_class, custom_event, display_overlay, dynamic_content, hide_element,
    modify_css, overlay_id, progressive_form, redirect_page, remove_class, replace_text,
    show_element, target_selector,
)
from service_personalization.app.config import get_config
from service_personalization.app.events.context import PageContext, UserContext
from service_personalization.app.events.models import EventType
from service_personalization.app.rules.models import Node, NodeKind, WorkflowPayload
from service_personalization.app.scheduling import TaskScheduler
from shared.errors import ActionExecutionError
from shared.test_helpers import TestDataFactory, create_page


def action(name, node_id="a1", **config):
    return Node(id=node_id, kind=NodeKind.ACTION, name=name, config=config)


WORKFLOW = WorkflowPayload.model_validate(TestDataFactory.workflow([], [])).to_workflow()


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def page():
    """Create an in-memory landing page."""
    return create_page(url="https://shop.example.com/landing?utm_source=news")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def ctx(page, clock, emitted):
    """Create ActionContext over the landing page."""
    async def emit(record):
        emitted.append(record)

    return ActionContext(
        page=page,
        config=get_config(transition_duration=0.01, redirect_guard_window=10),
        scheduler=TaskScheduler(),
        page_context=PageContext.from_environment(page.environment),
        user_context=UserContext(session_id="session-1", visitor_id="a<b", visit_count=2, is_returning=True),
        emit=emit,
        clock=clock
    )


async def style_of(page, selector, name):
    element = await page.query(selector)
    return await element.get_style(name)


class TestContentHandlers:
    """Test cases for text and markup handlers."""

    @pytest.mark.asyncio
    async def test_replace_text_substring(self, page, ctx):
        """Test originalText is replaced inside the element and reapplying is a no-op."""
        node = action("Replace Text", selector="#intro", originalText="Great deals", newText="Huge savings")

        assert await replace_text(node, WORKFLOW, ctx) is True
        assert await (await page.query("#intro")).get_text() == "Huge savings every day."
        assert await replace_text(node, WORKFLOW, ctx) is False
        assert await (await page.query("#intro")).get_text() == "Huge savings every day."

    @pytest.mark.asyncio
    async def test_replace_text_full_replacement(self, page, ctx):
        """Test content is replaced wholesale when originalText is absent."""
        node = action("Replace Text", selector=".headline", newText="Welcome back")

        assert await replace_text(node, WORKFLOW, ctx) is True
        assert await (await page.query(".headline")).get_text() == "Welcome back"

    @pytest.mark.asyncio
    async def test_replace_text_by_element_kind(self, page, ctx):
        """Test buttons, submit inputs, text inputs and links get the right property."""
        await replace_text(action("Replace Text", selector="#buy", newText="Buy now"), WORKFLOW, ctx)
        await replace_text(action("Replace Text", selector="#submit", newText="Join"), WORKFLOW, ctx)
        await replace_text(action("Replace Text", selector="#email", newText="Work email"), WORKFLOW, ctx)
        await replace_text(action("Replace Text", selector="#cta", newText="/pricing"), WORKFLOW, ctx)

        assert await (await page.query("#buy")).get_text() == "Buy now"
        assert await (await page.query("#submit")).get_attribute("value") == "Join"
        email = await page.query("#email")
        assert await email.get_attribute("placeholder") == "Work email"
        assert await email.get_attribute("value") == "Work email"
        cta = await page.query("#cta")
        assert await cta.get_attribute("href") == "/pricing"
        assert await cta.get_text() == "Sign up"

    @pytest.mark.asyncio
    async def test_replace_text_button_substring(self, page, ctx):
        """Test originalText inside a button label is replaced in place."""
        await page.append_html('<button id="price">Buy now - $10</button>')
        node = action("Replace Text", selector="#price", originalText="$10", newText="$8")

        assert await replace_text(node, WORKFLOW, ctx) is True
        assert await (await page.query("#price")).get_text() == "Buy now - $8"
        assert await replace_text(node, WORKFLOW, ctx) is False
        assert await (await page.query("#price")).get_text() == "Buy now - $8"

    @pytest.mark.asyncio
    async def test_replace_text_original_wins_over_present_new_text(self, page, ctx):
        """Test a present originalText is replaced even when newText already occurs."""
        await page.append_html('<p id="greeting">Hi! Hello World</p>')
        node = action("Replace Text", selector="#greeting", originalText="Hello World", newText="Hi")

        assert await replace_text(node, WORKFLOW, ctx) is True
        assert await (await page.query("#greeting")).get_text() == "Hi! Hi"
        assert await replace_text(node, WORKFLOW, ctx) is False

    @pytest.mark.asyncio
    async def test_replace_text_containing_original_applies_once(self, page, ctx):
        """Test a newText that wraps originalText is not applied twice."""
        node = action("Replace Text", selector="#buy", originalText="Buy", newText="Buy today")

        assert await replace_text(node, WORKFLOW, ctx) is True
        assert await replace_text(node, WORKFLOW, ctx) is False
        assert await (await page.query("#buy")).get_text() == "Buy today"

    @pytest.mark.asyncio
    async def test_replace_text_requires_new_text(self, ctx):
        """Test a missing newText is a config error."""
        with pytest.raises(ActionExecutionError):
            await replace_text(action("Replace Text", selector="#intro"), WORKFLOW, ctx)

    @pytest.mark.asyncio
    async def test_dynamic_content_placeholders(self, page, ctx):
        """Test placeholders resolve from user then page context, escaped, unknown kept."""
        node = action(
            "Dynamic Content",
            targetContainer="#recommendations",
            contentTemplate="<p>{{visitor_id}} via {{utm_source}} {{missing}}</p>"
        )

        assert await dynamic_content(node, WORKFLOW, ctx) is True

        markup = await (await page.query("#recommendations")).get_html()
        assert "a&lt;b via news" in markup
        assert "{{missing}}" in markup

    @pytest.mark.asyncio
    async def test_dynamic_content_idempotent(self, page, ctx):
        """Test reapplying identical content changes nothing."""
        node = action("Dynamic Content", targetContainer="#recommendations", contentTemplate="<p>Picked for you</p>")

        assert await dynamic_content(node, WORKFLOW, ctx) is True
        assert await dynamic_content(node, WORKFLOW, ctx) is False
        assert len(await page.query_all("#recommendations p")) == 1


class TestStyleHandlers:
    """Test cases for visibility, style and class handlers."""

    @pytest.mark.asyncio
    async def test_hide_element_immediately(self, page, ctx):
        """Test hiding without animation and the no-op second application."""
        node = action("Hide Element", selector="#promo")

        assert await hide_element(node, WORKFLOW, ctx) is True
        assert await style_of(page, "#promo", "display") == "none"
        assert await hide_element(node, WORKFLOW, ctx) is False

    @pytest.mark.asyncio
    async def test_hide_element_fade_finishes_after_transition(self, page, ctx):
        """Test fade sets opacity first and display none after the transition."""
        node = action("Hide Element", selector="#promo", animation="fade")

        assert await hide_element(node, WORKFLOW, ctx) is True
        assert await style_of(page, "#promo", "opacity") == "0"
        assert await style_of(page, "#promo", "display") == ""

        await asyncio.sleep(0.05)

        assert await style_of(page, "#promo", "display") == "none"
        await ctx.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_show_element(self, page, ctx):
        """Test showing a hidden element sets display block and is idempotent."""
        node = action("Show Element", selector="#progressive-fields")

        assert await show_element(node, WORKFLOW, ctx) is True
        assert await style_of(page, "#progressive-fields", "display") == "block"
        assert await show_element(node, WORKFLOW, ctx) is False

    @pytest.mark.asyncio
    async def test_show_element_stylesheet_hidden(self, page, ctx):
        """Test an element without inline display still gets an explicit display."""
        node = action("Show Element", selector="#promo", display="flex")

        assert await show_element(node, WORKFLOW, ctx) is True
        assert await style_of(page, "#promo", "display") == "flex"

    @pytest.mark.asyncio
    async def test_show_element_fade_starts_transparent(self, page, ctx):
        """Test fade starts at opacity 0 and clears it shortly after."""
        node = action("Show Element", selector="#progressive-fields", animation="fade")

        assert await show_element(node, WORKFLOW, ctx) is True
        assert await style_of(page, "#progressive-fields", "display") == "block"
        assert await style_of(page, "#progressive-fields", "opacity") == "0"
        assert "opacity" in await style_of(page, "#progressive-fields", "transition")

        await asyncio.sleep(0.05)

        assert await style_of(page, "#progressive-fields", "opacity") == ""
        assert await show_element(node, WORKFLOW, ctx) is False
        await ctx.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_show_element_slide(self, page, ctx):
        """Test slide starts offset and settles back into place."""
        node = action("Show Element", selector="#progressive-fields", animation="slide")

        await show_element(node, WORKFLOW, ctx)
        assert await style_of(page, "#progressive-fields", "transform") == "translateY(-20px)"

        await asyncio.sleep(0.05)

        assert await style_of(page, "#progressive-fields", "transform") == ""
        assert await style_of(page, "#progressive-fields", "opacity") == ""
        await ctx.scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_modify_css_camel_case_property(self, page, ctx):
        """Test camelCase properties are converted to CSS names."""
        node = action("Modify CSS", selector="#promo", property="backgroundColor", value="red")

        assert await modify_css(node, WORKFLOW, ctx) is True
        assert await style_of(page, "#promo", "background-color") == "red"
        assert await modify_css(node, WORKFLOW, ctx) is False

    @pytest.mark.asyncio
    async def test_add_and_remove_classes(self, page, ctx):
        """Test class handlers apply to every match and are idempotent."""
        add = action("Add Class", selector=".btn", className="highlight featured")
        remove = action("Remove Class", selector=".btn", className="featured")

        assert await add_class(add, WORKFLOW, ctx) is True
        assert await add_class(add, WORKFLOW, ctx) is False
        for element in await page.query_all(".btn"):
            assert await element.has_class("highlight")
            assert await element.has_class("featured")

        assert await remove_class(remove, WORKFLOW, ctx) is True
        assert await remove_class(remove, WORKFLOW, ctx) is False
        assert await page.query_all(".featured") == []
        assert len(await page.query_all(".highlight")) == 2


class TestPageHandlers:
    """Test cases for overlay, redirect, custom event and progressive form handlers."""

    @pytest.mark.asyncio
    async def test_overlay_created_once_and_dismissed_on_click(self, page, ctx):
        """Test one overlay per action and click-to-dismiss."""
        node = action("Display Overlay", node_id="promo 1", content="<h2>10% off</h2>")
        element_id = overlay_id(node)

        assert element_id == "personalization-overlay-promo-1"
        assert await display_overlay(node, WORKFLOW, ctx) is True
        assert await display_overlay(node, WORKFLOW, ctx) is False
        assert len(await page.query_all(f"#{element_id}")) == 1
        assert "10% off" in page.serialize()

        await page.click(f"#{element_id}")

        assert await page.query(f"#{element_id}") is None

    @pytest.mark.asyncio
    async def test_overlay_auto_close(self, page, ctx):
        """Test autoClose removes the overlay after the delay."""
        node = action("Display Overlay", content="Hi", autoClose=True, autoCloseDelay=0.01)

        await display_overlay(node, WORKFLOW, ctx)
        await asyncio.sleep(0.05)

        assert await page.query(f"#{overlay_id(node)}") is None

    @pytest.mark.asyncio
    async def test_redirect_resolves_relative_url(self, page, ctx):
        """Test relative targets resolve against the page URL."""
        node = action("Redirect Page", url="/pricing")

        assert await redirect_page(node, WORKFLOW, ctx) is True
        assert page.navigations == ["https://shop.example.com/pricing"]

    @pytest.mark.asyncio
    async def test_redirect_loop_guard(self, page, ctx, clock):
        """Test the same redirect is suppressed inside the guard window."""
        node = action("Redirect Page", url="https://shop.example.com/pricing")

        assert await redirect_page(node, WORKFLOW, ctx) is True
        clock.now += 5
        assert await redirect_page(node, WORKFLOW, ctx) is False
        clock.now += 6
        assert await redirect_page(node, WORKFLOW, ctx) is True
        assert len(page.navigations) == 2

    @pytest.mark.asyncio
    async def test_redirect_to_current_page_skipped(self, page, ctx):
        """Test redirecting to the page already shown does nothing."""
        node = action("Redirect Page", url="https://shop.example.com/landing/?utm_source=news#top")

        assert await redirect_page(node, WORKFLOW, ctx) is False
        assert page.navigations == []

    @pytest.mark.asyncio
    async def test_redirect_rejects_non_http_scheme(self, page, ctx):
        """Test javascript: URLs are refused."""
        with pytest.raises(ActionExecutionError):
            await redirect_page(action("Redirect Page", url="javascript:alert(1)"), WORKFLOW, ctx)
        assert page.navigations == []

    @pytest.mark.asyncio
    async def test_redirect_new_tab_and_delay(self, page, ctx):
        """Test newTab opens a tab and a delay defers navigation until cancelled."""
        await redirect_page(action("Redirect Page", node_id="a1", url="/a", newTab=True), WORKFLOW, ctx)
        await redirect_page(action("Redirect Page", node_id="a2", url="/b", delay=5), WORKFLOW, ctx)

        assert page.opened_tabs == ["https://shop.example.com/a"]
        assert page.navigations == []
        assert ctx.scheduler.pending == 1

        await ctx.scheduler.cancel_all()

        assert page.navigations == []

    @pytest.mark.asyncio
    async def test_custom_event_emitted(self, ctx, emitted):
        """Test custom events carry workflow and action identifiers."""
        node = action("Custom Event", eventName="promo_seen", eventData={"slot": "hero"})

        assert await custom_event(node, WORKFLOW, ctx) is True

        assert len(emitted) == 1
        record = emitted[0]
        assert record.event_type == EventType.CUSTOM
        assert record.payload["eventName"] == "promo_seen"
        assert record.payload["eventData"] == {"slot": "hero"}
        assert record.payload["workflowId"] == "wf-1"
        assert record.payload["actionId"] == "a1"
        assert record.payload["sessionId"] == "session-1"

    @pytest.mark.asyncio
    async def test_custom_event_requires_name(self, ctx):
        """Test eventName is required."""
        with pytest.raises(ActionExecutionError):
            await custom_event(action("Custom Event"), WORKFLOW, ctx)

    @pytest.mark.asyncio
    async def test_progressive_form_reveals_on_focus(self, page, ctx):
        """Test extra fields show on focus and the listener binds once."""
        node = action(
            "Progressive Form",
            triggerField="#email",
            additionalFields="#progressive-fields, #missing"
        )

        assert await progressive_form(node, WORKFLOW, ctx) is True
        assert await progressive_form(node, WORKFLOW, ctx) is False
        assert await style_of(page, "#progressive-fields", "display") == "none"

        assert await page.dispatch("#email", "focus") == 1

        assert await style_of(page, "#progressive-fields", "display") == "block"

    def test_target_selector_keys(self):
        """Test per-kind target config keys."""
        assert target_selector(action("Progressive Form", triggerField="#email")) == "#email"
        assert target_selector(action("Dynamic Content", targetElement=" #recs ")) == "#recs"
        assert target_selector(action("Display Overlay", selector="#x")) is None
        assert target_selector(action("Hide Element", selector="#promo")) == "#promo"


class TestExecutionGuard:
    """Test cases for ExecutionGuard."""

    def test_check_and_insert(self):
        """Test keys are unique per action and match pass."""
        guard = ExecutionGuard()

        assert guard.check_and_insert("a1", "p1") is True
        assert guard.check_and_insert("a1", "p1") is False
        assert guard.check_and_insert("a1", "p2") is True
        assert ("a1", "p1") in guard
        assert len(guard) == 2


class TestActionExecutor:
    """Test cases for ActionExecutor."""

    @pytest.fixture
    def executor(self):
        """Create ActionExecutor instance."""
        return ActionExecutor(ExecutionGuard(), element_wait_timeout=0.05, execution_delay=0)

    def build_workflow(self, *actions):
        trigger = TestDataFactory.trigger("Exit Intent", node_id="t1")
        payload = TestDataFactory.chain(trigger, *actions)
        return WorkflowPayload.model_validate(payload).to_workflow()

    @pytest.mark.asyncio
    async def test_chain_contains_failures(self, page, ctx, executor):
        """Test a missing element, a bad config and an unknown action do not stop the chain."""
        workflow = self.build_workflow(
            TestDataFactory.action("Add Class", {"selector": "#nope", "className": "x"}, node_id="a1"),
            TestDataFactory.action("Replace Text", {"selector": "#intro"}, node_id="a2"),
            TestDataFactory.action("Teleport", {}, node_id="a3"),
            TestDataFactory.action("Add Class", {"selector": "#promo", "className": "seen"}, node_id="a4"),
        )

        results = await executor.execute_chain(workflow, workflow.node("t1"), "wf-1:t1:1", ctx)

        assert [r.status for r in results] == [
            ExecutionStatus.SKIPPED, ExecutionStatus.FAILED, ExecutionStatus.FAILED, ExecutionStatus.SUCCESS
        ]
        assert results[0].reason == "element not found"
        assert await (await page.query("#promo")).has_class("seen")
        assert executor.stats == {"executed": 1, "skipped": 1, "failed": 2}
        assert results[3].to_dict()["actionId"] == "a4"

    @pytest.mark.asyncio
    async def test_guard_skips_within_pass(self, ctx, executor):
        """Test an action runs once per pass and again for a new pass."""
        workflow = self.build_workflow(
            TestDataFactory.action("Add Class", {"selector": "#promo", "className": "seen"}, node_id="a1"),
        )
        trigger = workflow.node("t1")

        first = await executor.execute_chain(workflow, trigger, "wf-1:t1:1", ctx)
        again = await executor.execute_chain(workflow, trigger, "wf-1:t1:1", ctx)
        next_pass = await executor.execute_chain(workflow, trigger, "wf-1:t1:2", ctx)

        assert first[0].status == ExecutionStatus.SUCCESS
        assert again[0].status == ExecutionStatus.SKIPPED
        assert again[0].reason == "already executed"
        assert next_pass[0].status == ExecutionStatus.SUCCESS
        assert next_pass[0].reason == "already applied"

    @pytest.mark.asyncio
    async def test_waits_for_late_element(self, page, ctx):
        """Test the executor waits for an element inserted after the action starts."""
        executor = ActionExecutor(ExecutionGuard(), element_wait_timeout=1.0, execution_delay=0)
        workflow = self.build_workflow(
            TestDataFactory.action("Add Class", {"selector": "#late", "className": "ready"}, node_id="a1"),
        )

        async def insert_later():
            await asyncio.sleep(0.02)
            await page.insert_html("#recommendations", '<div id="late">Later</div>')

        inserter = asyncio.create_task(insert_later())
        results = await executor.execute_chain(workflow, workflow.node("t1"), "p1", ctx)
        await inserter

        assert results[0].status == ExecutionStatus.SUCCESS
        assert await (await page.query("#late")).has_class("ready")

    @pytest.mark.asyncio
    async def test_delay_between_actions(self, ctx):
        """Test the pacing delay runs between actions but not after the last one."""
        executor = ActionExecutor(ExecutionGuard(), element_wait_timeout=0.05, execution_delay=0.1)
        workflow = self.build_workflow(
            TestDataFactory.action("Add Class", {"selector": "#promo", "className": "one"}, node_id="a1"),
            TestDataFactory.action("Add Class", {"selector": "#promo", "className": "two"}, node_id="a2"),
            TestDataFactory.action("Add Class", {"selector": "#promo", "className": "three"}, node_id="a3"),
        )

        with patch('service_personalization.app.actions.executor.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            await executor.execute_chain(workflow, workflow.node("t1"), "p1", ctx)

        assert [call.args[0] for call in mock_sleep.await_args_list] == [0.1, 0.1]
