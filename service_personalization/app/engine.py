"""
Personalization engine lifecycle.

Startup sequence for one page load:

1. hide page content (visibility gate, safety timer armed)
2. load visitor state and build the user context
3. subscribe to page signals, emit page_view
4. fetch the active workflows
5. evaluate the page_load event and execute matched chains
6. reveal page content
7. replay runtime events that arrived during steps 2-5, in order

Any failure in steps 2-5 is logged as an InitializationFailure and the
content is revealed; the page then behaves as if no engine were present.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from shared.errors import ErrorResponse, InitializationFailure
from shared.logging import clear_context, get_logger, set_page_context
from .actions.executor import ActionExecutor, ExecutionResult, ExecutionStatus
from .actions.guard import ExecutionGuard
from .actions.handlers import ActionContext
from .adapters.telemetry_client import TelemetryEmitter
from .adapters.workflows_client import WorkflowsClient
from .config import EngineConfig, get_config
from .events.context import PageContext, UserContext
from .events.models import EventRecord, EventType
from .events.source import EventSource
from .gate.visibility import VisibilityGate
from .page.base import Page
from .rules.models import Node, TriggerKind, Workflow
from .rules.store import RuleStore
from .scheduling import TaskScheduler
from .triggers.evaluator import TriggerEvaluator
from .visitor.state import VisitorState


# Triggers describing an instant: every matching event opens a new match pass.
DISCRETE_TRIGGERS = frozenset({TriggerKind.ELEMENT_CLICK, TriggerKind.EXIT_INTENT})

INTERACTION_EVENTS = frozenset({EventType.CLICK, EventType.SCROLL, EventType.EXIT_INTENT})


@dataclass
class EngineContext:
    """Per-page-load state shared by the engine's collaborators."""
    config: EngineConfig
    page: Page
    page_context: PageContext
    visitor: VisitorState
    telemetry: TelemetryEmitter
    scheduler: TaskScheduler = field(default_factory=TaskScheduler)
    user_context: Optional[UserContext] = None
    clock: Callable[[], float] = time.time

    @classmethod
    def create(cls, page: Page, config: EngineConfig,
               telemetry: Optional[TelemetryEmitter] = None,
               clock: Callable[[], float] = time.time) -> "EngineContext":
        return cls(
            config=config,
            page=page,
            page_context=PageContext.from_environment(page.environment),
            visitor=VisitorState(
                page.local_storage,
                page.session_storage,
                session_timeout=config.session_timeout,
                clock=clock
            ),
            telemetry=telemetry or TelemetryEmitter(
                config.api_endpoint,
                api_key=config.api_key,
                batch_size=config.batch_size,
                batch_timeout=config.batch_timeout,
                timeout=config.request_timeout
            ),
            clock=clock
        )

    async def load_user_context(self) -> UserContext:
        await self.visitor.load()
        return self.refresh_user_context()

    def refresh_user_context(self) -> UserContext:
        self.user_context = UserContext.build(self.visitor, self.page.environment)
        return self.user_context

    def action_context(self) -> ActionContext:
        return ActionContext(
            page=self.page,
            config=self.config,
            scheduler=self.scheduler,
            page_context=self.page_context,
            user_context=self.user_context,
            emit=self.telemetry.emit,
            clock=self.clock
        )


class PersonalizationEngine:
    """Evaluates workflows against page events and applies their actions."""

    def __init__(self, page: Page, config: Optional[EngineConfig] = None,
                 client: Optional[WorkflowsClient] = None,
                 telemetry: Optional[TelemetryEmitter] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or get_config()
        self.logger = get_logger("personalization.engine")
        self.context = EngineContext.create(page, self.config, telemetry=telemetry, clock=clock)

        self.store = RuleStore(client or WorkflowsClient(
            self.config.api_endpoint,
            api_key=self.config.api_key,
            retry_attempts=self.config.retry_attempts,
            retry_delay=self.config.retry_delay,
            timeout=self.config.request_timeout
        ))
        self.evaluator = TriggerEvaluator()
        self.guard = ExecutionGuard()
        self.executor = ActionExecutor(
            self.guard,
            element_wait_timeout=self.config.element_wait_timeout,
            execution_delay=self.config.execution_delay
        )
        self.gate = VisibilityGate(
            page,
            max_init_time=self.config.max_init_time,
            enabled=self.config.hide_content_during_init,
            hide_method=self.config.hide_method,
            show_loading_indicator=self.config.show_loading_indicator,
            transition_duration=self.config.transition_duration
        )
        self.events = EventSource(
            page,
            self.handle_event,
            tick_interval=self.config.tick_interval,
            throttle=self.config.throttle
        )

        self.started = False
        self.initialized = False
        self.failed = False
        self.failure: Optional[ErrorResponse] = None
        self.torn_down = False
        self.pending: List[EventRecord] = []

        self._latches: Dict[Tuple[str, str], Optional[str]] = {}
        self._pass_counts: Dict[Tuple[str, str], int] = {}
        self.counters = {"events": 0, "passes": 0, "chains": 0}

    @property
    def page(self) -> Page:
        return self.context.page

    async def start(self) -> bool:
        """Run the initial personalization pass. Returns False when it failed."""
        if self.started:
            return not self.failed
        self.started = True
        start_time = time.time()

        await self.gate.hide()

        try:
            user_context = await self.context.load_user_context()
            set_page_context(session_id=user_context.session_id, page_url=self.context.page_context.url)
            self.context.telemetry.set_metadata(
                sessionId=user_context.session_id,
                visitorId=user_context.visitor_id,
                userAgent=self.context.page_context.user_agent,
                pageUrl=self.context.page_context.url
            )

            await self.events.start()
            await self.context.telemetry.emit(self.events.record(
                EventType.PAGE_VIEW,
                pageUrl=self.context.page_context.url,
                referrer=self.context.page_context.referrer,
                deviceType=self.context.page_context.device_type,
                visitCount=user_context.visit_count
            ))

            await self.store.load(self.context.page_context.url)
            await self._process(self.events.record(EventType.PAGE_LOAD))

        except Exception as e:
            failure = InitializationFailure(
                "Initial personalization pass failed",
                details={"error": str(e), "error_type": type(e).__name__}
            )
            self.failed = True
            self.failure = failure.to_response()
            self.logger.error("Initialization failed", error=failure.message, details=failure.details)
            await self.gate.reveal("error")
            await self.events.stop()
            self.pending.clear()
            return False

        await self.gate.reveal("complete")
        self.logger.info(
            "Initial pass complete",
            workflows=len(self.store.workflows),
            duration_ms=round((time.time() - start_time) * 1000, 1)
        )

        await self._drain_pending()
        return True

    async def _drain_pending(self) -> None:
        while self.pending:
            record = self.pending.pop(0)
            await self._safe_process(record)
        self.initialized = True

    async def handle_event(self, record: EventRecord) -> None:
        """Entry point for runtime events; queued until the initial pass is done."""
        if self.torn_down or self.failed:
            return
        if not self.initialized:
            self.pending.append(record)
            return
        await self._safe_process(record)

    async def _safe_process(self, record: EventRecord) -> None:
        try:
            await self._process(record)
        except Exception as e:
            self.logger.error("Event processing failed", event_type=record.event_type.value, error=str(e))

    async def _process(self, record: EventRecord) -> None:
        self.counters["events"] += 1
        context = self.context

        if record.event_type == EventType.VISIBILITY_CHANGE:
            if await context.visitor.on_visibility_change(bool(record.payload.get("visible", True))):
                context.refresh_user_context()
                set_page_context(session_id=context.user_context.session_id)
        elif record.event_type != EventType.PAGE_LOAD:
            await context.visitor.touch()

        if self.config.track_interactions and record.event_type in INTERACTION_EVENTS:
            await context.telemetry.emit(record)

        for workflow in self.store.active_workflows(context.page_context.url):
            for trigger in workflow.triggers():
                matched = self.evaluator.evaluate(trigger, record, context.page_context, context.user_context)
                match_pass_id = self._open_pass(workflow, trigger, matched)
                if match_pass_id is None:
                    continue

                self.logger.info(
                    "Trigger matched",
                    workflow_id=workflow.id,
                    trigger_id=trigger.id,
                    trigger=trigger.name,
                    event_type=record.event_type.value,
                    match_pass_id=match_pass_id
                )
                await self._run_chain(workflow, trigger, match_pass_id)

    def _open_pass(self, workflow: Workflow, trigger: Node, matched: bool) -> Optional[str]:
        """Return a new match pass id when this match starts one, else None.

        State triggers latch: the pass opened by the first matching event
        stays open while the trigger keeps matching and closes on the first
        non-matching event. Discrete triggers open a pass on every match.
        """
        key = (workflow.id, trigger.id)

        if not matched:
            self._latches[key] = None
            return None

        if trigger.trigger_kind not in DISCRETE_TRIGGERS and self._latches.get(key):
            return None

        count = self._pass_counts.get(key, 0) + 1
        self._pass_counts[key] = count
        match_pass_id = f"{workflow.id}:{trigger.id}:{count}"
        self._latches[key] = match_pass_id
        self.counters["passes"] += 1
        return match_pass_id

    async def _run_chain(self, workflow: Workflow, trigger: Node, match_pass_id: str) -> List[ExecutionResult]:
        start_time = time.time()
        results = await self.executor.execute_chain(
            workflow, trigger, match_pass_id, self.context.action_context()
        )
        self.counters["chains"] += 1

        failed = sum(1 for r in results if r.status == ExecutionStatus.FAILED)
        if not results:
            status = "no_actions"
        elif failed == 0:
            status = "success"
        elif failed == len(results):
            status = "failed"
        else:
            status = "partial"

        await self.context.telemetry.emit(EventRecord(
            event_type=EventType.WORKFLOW_EXECUTED,
            payload={
                "workflowId": workflow.id,
                "triggerId": trigger.id,
                "triggerName": trigger.name,
                "matchPassId": match_pass_id,
                "status": status,
                "executionTimeMs": round((time.time() - start_time) * 1000, 2),
                "pageUrl": self.context.page_context.url,
                "sessionId": self.context.user_context.session_id if self.context.user_context else None,
                "deviceType": self.context.page_context.device_type,
                "actions": [r.to_dict() for r in results],
            }
        ))
        return results

    def stats(self) -> Dict[str, Any]:
        return {
            "workflows": len(self.store.workflows),
            "active_workflows": len(self.store.active_workflows(self.context.page_context.url)),
            "pending_events": len(self.pending),
            "guard_entries": len(self.guard),
            "revealed": self.gate.is_revealed,
            "reveal_reason": self.gate.reveal_reason,
            "actions": dict(self.executor.stats),
            "error": self.failure.model_dump() if self.failure else None,
            **self.counters,
        }

    async def teardown(self) -> None:
        """Release listeners, timers, telemetry and state."""
        global _current_engine

        if self.torn_down:
            return
        self.torn_down = True

        await self.events.stop()
        await self.gate.reveal("teardown")
        await self.gate.close()
        await self.context.scheduler.cancel_all()
        await self.context.telemetry.close()

        self.store.clear()
        self.pending.clear()
        self._latches.clear()
        clear_context()

        if _current_engine is self:
            _current_engine = None
        self.logger.info("Engine torn down", **self.counters)


_current_engine: Optional[PersonalizationEngine] = None


def create_engine(page: Page, config: Optional[EngineConfig] = None, **kwargs: Any) -> PersonalizationEngine:
    """Create the engine, or return the live one if it already exists."""
    global _current_engine

    if _current_engine is not None and not _current_engine.torn_down:
        get_logger("personalization.engine").warning("Engine already initialized, reusing instance")
        return _current_engine

    _current_engine = PersonalizationEngine(page, config, **kwargs)
    return _current_engine


def current_engine() -> Optional[PersonalizationEngine]:
    return _current_engine
