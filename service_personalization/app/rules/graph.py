"""
Workflow graph traversal.
"""

from typing import List, Set

from .models import Node, Workflow


def reachable_actions(workflow: Workflow, trigger_id: str) -> List[Node]:
    """Resolve the action nodes connected to a trigger.

    Depth-first over the workflow connections in declaration order, descending
    only through action nodes. Every node is visited at most once, so cycles
    terminate and an action reachable over several paths is returned once.
    """
    visited: Set[str] = {trigger_id}
    actions: List[Node] = []

    def visit(node_id: str) -> None:
        for target_id in workflow.successors(node_id):
            if target_id in visited:
                continue
            visited.add(target_id)

            node = workflow.node(target_id)
            if node is None or not node.is_action:
                continue

            actions.append(node)
            visit(target_id)

    visit(trigger_id)
    return actions
