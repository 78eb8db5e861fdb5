"""
Action chain execution for the personalization engine.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from shared.errors import ActionExecutionError
from shared.logging import get_logger
from .guard import ExecutionGuard
from .handlers import ACTION_HANDLERS, ActionContext, Handler, target_keys, target_selector
from ..rules.graph import reachable_actions
from ..rules.models import ActionKind, Node, Workflow


class ExecutionStatus(str, Enum):
    """Outcome of one action."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


STAT_KEYS = {
    ExecutionStatus.SUCCESS: "executed",
    ExecutionStatus.SKIPPED: "skipped",
    ExecutionStatus.FAILED: "failed",
}


@dataclass
class ExecutionResult:
    """Result of applying one action."""
    action_id: str
    action_name: str
    status: ExecutionStatus
    reason: Optional[str] = None
    execution_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "actionId": self.action_id,
            "actionName": self.action_name,
            "status": self.status.value,
            "reason": self.reason,
            "executionTimeMs": round(self.execution_time_ms, 2),
        }


class ActionExecutor:
    """Executes the actions reachable from a matched trigger.

    For each action, in traversal order: wait (bounded) for its target,
    consult the guard, dispatch to the handler, then pause before the
    next action. Failures are contained to the failing action.
    """

    def __init__(self, guard: ExecutionGuard,
                 element_wait_timeout: float = 5.0,
                 execution_delay: float = 0.1,
                 handlers: Optional[Dict[ActionKind, Handler]] = None):
        self.guard = guard
        self.element_wait_timeout = element_wait_timeout
        self.execution_delay = execution_delay
        self.handlers = dict(ACTION_HANDLERS if handlers is None else handlers)
        self.logger = get_logger("personalization.action_executor")
        self.stats = {"executed": 0, "skipped": 0, "failed": 0}

    async def execute_chain(self, workflow: Workflow, trigger: Node, match_pass_id: str,
                            context: ActionContext) -> List[ExecutionResult]:
        """Execute every action connected to trigger for one match pass."""
        actions = reachable_actions(workflow, trigger.id)
        results: List[ExecutionResult] = []

        for index, action in enumerate(actions):
            result = await self.execute_action(workflow, action, match_pass_id, context)
            results.append(result)

            if self.execution_delay > 0 and index < len(actions) - 1:
                await asyncio.sleep(self.execution_delay)

        return results

    async def execute_action(self, workflow: Workflow, action: Node, match_pass_id: str,
                             context: ActionContext) -> ExecutionResult:
        """Execute a single action, never raising."""
        start_time = time.time()

        def finish(status: ExecutionStatus, reason: Optional[str] = None) -> ExecutionResult:
            self.stats[STAT_KEYS[status]] += 1
            return ExecutionResult(
                action_id=action.id,
                action_name=action.name,
                status=status,
                reason=reason,
                execution_time_ms=(time.time() - start_time) * 1000
            )

        try:
            kind = action.action_kind
            handler = self.handlers.get(kind) if kind is not None else None
            if handler is None:
                raise ActionExecutionError(f"Unknown action '{action.name}'", details={"action_id": action.id})

            if target_keys(kind):
                selector = target_selector(action)
                if selector is None:
                    raise ActionExecutionError(
                        "Target selector is required",
                        details={"action_id": action.id, "keys": list(target_keys(kind))}
                    )
                element = await context.page.wait_for_selector(selector, self.element_wait_timeout)
                if element is None:
                    self.logger.warning(
                        "Action target not found",
                        workflow_id=workflow.id,
                        action_id=action.id,
                        selector=selector,
                        timeout=self.element_wait_timeout
                    )
                    return finish(ExecutionStatus.SKIPPED, "element not found")

            if not self.guard.check_and_insert(action.id, match_pass_id):
                self.logger.debug("Action already executed in this pass", action_id=action.id, match_pass_id=match_pass_id)
                return finish(ExecutionStatus.SKIPPED, "already executed")

            changed = await handler(action, workflow, context)

            self.logger.info(
                "Action executed",
                workflow_id=workflow.id,
                action_id=action.id,
                action=kind.value,
                changed=changed,
                match_pass_id=match_pass_id
            )
            return finish(ExecutionStatus.SUCCESS, None if changed else "already applied")

        except ActionExecutionError as e:
            self.logger.warning(
                "Action failed",
                workflow_id=workflow.id,
                action_id=action.id,
                error=e.message,
                details=e.details
            )
            return finish(ExecutionStatus.FAILED, e.message)
        except Exception as e:
            self.logger.error(
                "Action error",
                workflow_id=workflow.id,
                action_id=action.id,
                error=str(e)
            )
            return finish(ExecutionStatus.FAILED, str(e))
