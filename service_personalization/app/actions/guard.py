"""
Execution guard preventing duplicate actions within a match pass.
"""

from typing import Set, Tuple


class ExecutionGuard:
    """Set of (action_id, match_pass_id) keys that already executed."""

    def __init__(self):
        self.executed: Set[Tuple[str, str]] = set()

    def check_and_insert(self, action_id: str, match_pass_id: str) -> bool:
        """Record an execution; False when the key was already present."""
        key = (action_id, match_pass_id)
        if key in self.executed:
            return False
        self.executed.add(key)
        return True

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self.executed

    def __len__(self) -> int:
        return len(self.executed)
