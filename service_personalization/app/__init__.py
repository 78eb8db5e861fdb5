"""
Personalization engine package.

This package personalizes a page on the client side: it fetches the
active workflows for the current URL, evaluates their triggers against
page, visitor and event context, and applies the connected actions to
the live document. It provides:

- app.engine: Engine lifecycle, application context and guarded factory.
- app.rules: Workflow model, graph traversal and the per-load rule store.
- app.adapters: HTTP clients for workflow fetch and telemetry emission.
- app.triggers: Pure trigger predicate evaluation.
- app.actions: Action handlers, execution guard and chain executor.
- app.events: Page/user context and the runtime event source.
- app.visitor: Durable visitor identity, visit counting and sessions.
- app.gate: Anti-flicker visibility gate.
- app.page: Page abstraction with BeautifulSoup and Playwright backends.
- app.main: Command line entry point for personalizing HTML files.

Guidelines:
- Nothing raised inside the engine may reach the host page; degrade to
  "engine absent" instead.
- Workflows are fetched once per page load and never cached across loads.
- Every action must be safe to apply twice.
"""
