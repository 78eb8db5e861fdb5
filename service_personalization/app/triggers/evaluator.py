"""
Trigger evaluation for the personalization engine.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from shared.logging import get_logger
from shared.errors import TriggerEvaluationError
from ..events.context import PageContext, UserContext
from ..events.models import EventRecord, EventType
from ..rules.models import Node, TriggerKind


DEFAULT_VISIT_COUNT = 3
DEFAULT_MINIMUM_VISIT_COUNT = 2
DEFAULT_SCROLL_PERCENTAGE = 50
DEFAULT_DURATION = 30

TriggerHandler = Callable[[Dict[str, Any], EventRecord, PageContext, UserContext], bool]


def _number(config: Mapping[str, Any], *keys: str, default: float) -> float:
    """First present config value among keys, as a number."""
    for key in keys:
        value = config.get(key)
        if value is None or value == "":
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            raise TriggerEvaluationError(
                f"Config value '{key}' is not numeric",
                details={"key": key, "value": value}
            )
    return float(default)


def _text(config: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = config.get(key)
        if value not in (None, ""):
            return str(value)
    return None


class TriggerEvaluator:
    """Evaluates trigger nodes against an event and the page/user context.

    Evaluation is pure: no side effects, no memory of earlier events.
    Unknown triggers and malformed configs evaluate to False.
    """

    def __init__(self):
        self.logger = get_logger("personalization.trigger_evaluator")
        self.handlers: Dict[TriggerKind, TriggerHandler] = {
            TriggerKind.DEVICE_TYPE: self._device_type,
            TriggerKind.UTM_PARAMETER: self._utm_parameter,
            TriggerKind.PAGE_VISITS: self._page_visits,
            TriggerKind.TIME_ON_PAGE: self._time_on_page,
            TriggerKind.SCROLL_DEPTH: self._scroll_depth,
            TriggerKind.ELEMENT_CLICK: self._element_click,
            TriggerKind.EXIT_INTENT: self._exit_intent,
            TriggerKind.REPEAT_VISITOR: self._repeat_visitor,
        }

    def evaluate(self, trigger: Node, event: EventRecord,
                 page_context: PageContext, user_context: UserContext) -> bool:
        """Check whether a trigger is satisfied."""
        kind = trigger.trigger_kind
        handler = self.handlers.get(kind) if kind is not None else None
        if handler is None:
            self.logger.warning("Unknown trigger", trigger_id=trigger.id, name=trigger.name)
            return False

        try:
            return bool(handler(trigger.config or {}, event, page_context, user_context))
        except TriggerEvaluationError as e:
            self.logger.warning(
                "Trigger evaluation failed",
                trigger_id=trigger.id,
                kind=kind.value,
                error=e.message
            )
            return False
        except Exception as e:
            self.logger.error(
                "Trigger evaluation error",
                trigger_id=trigger.id,
                kind=kind.value,
                error=str(e)
            )
            return False

    def _device_type(self, config, event, page_context, user_context) -> bool:
        expected = _text(config, "deviceType", "device_type")
        if expected is None:
            raise TriggerEvaluationError("deviceType is required")
        return page_context.device_type == expected.strip().lower()

    def _utm_parameter(self, config, event, page_context, user_context) -> bool:
        parameter = _text(config, "parameter", "utmParameter")
        if parameter is None:
            raise TriggerEvaluationError("parameter is required")

        params = dict(page_context.query_params)
        params.update(event.utm)
        if parameter not in params:
            return False

        actual = params[parameter]
        expected = _text(config, "value") or ""
        operator = (_text(config, "operator") or "equals").lower()

        if operator == "equals":
            return actual == expected
        elif operator == "contains":
            return expected in actual
        elif operator == "starts_with":
            return actual.startswith(expected)
        elif operator == "exists":
            return bool(actual)
        else:
            self.logger.warning("Unknown UTM operator", operator=operator)
            return False

    def _page_visits(self, config, event, page_context, user_context) -> bool:
        threshold = _number(config, "visitCount", "visit_count", default=DEFAULT_VISIT_COUNT)
        return user_context.visit_count >= threshold

    def _time_on_page(self, config, event, page_context, user_context) -> bool:
        duration = _number(config, "duration", default=DEFAULT_DURATION)
        if (_text(config, "unit") or "seconds").lower() == "minutes":
            duration *= 60
        return event.time_on_page >= duration

    def _scroll_depth(self, config, event, page_context, user_context) -> bool:
        threshold = _number(
            config, "percentage", "scrollPercentage", default=DEFAULT_SCROLL_PERCENTAGE
        )
        return event.scroll_percentage >= threshold

    def _element_click(self, config, event, page_context, user_context) -> bool:
        selector = _text(config, "selector", "elementSelector")
        if selector is None:
            raise TriggerEvaluationError("selector is required")
        return event.event_type == EventType.CLICK and event.selector == selector.strip()

    def _exit_intent(self, config, event, page_context, user_context) -> bool:
        return event.event_type == EventType.EXIT_INTENT

    def _repeat_visitor(self, config, event, page_context, user_context) -> bool:
        threshold = _number(
            config, "minimumVisitCount", "minimum_visit_count", default=DEFAULT_MINIMUM_VISIT_COUNT
        )
        return user_context.visit_count >= threshold
