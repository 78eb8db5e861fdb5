"""
HTTP adapters for the workflow service.

- workflows_client: Active workflow fetch with bounded linear retry.
- telemetry_client: Batched, fire-and-forget event emission.
"""
