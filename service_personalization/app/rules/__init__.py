"""
Rules package.

Defines the workflow graph model fetched from the workflow service, the
traversal that resolves the actions connected to a trigger, and the
per-page-load store holding the active workflows.

Modules of interest:
- models: Workflow, Node and Connection plus the wire payload models.
- graph: Reachable-action resolution over workflow connections.
- store: RuleStore owning the workflows of the current page load.
"""
