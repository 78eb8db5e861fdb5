"""
Actions applied to the page when a trigger matches.

Modules of interest:
- guard: ExecutionGuard keyed by (action id, match pass id).
- handlers: One idempotent handler per ActionKind.
- executor: Runs the action chain reachable from a matched trigger.
"""
