"""
Shared utilities for the personalization engine.

This package aggregates common building blocks consumed by the engine
and its adapters:

- config: Engine configuration via pydantic-settings
- logging: Structured logging with page-load correlation
- errors: Canonical error types and responses
- retry: Retry decorators and backoff strategies
- test_helpers: Factories for workflow payloads, pages and client doubles
  used by the service tests

Any cross-component logic should live here to avoid import cycles.
Runtime modules in shared/ must not import from service_* packages.
"""
