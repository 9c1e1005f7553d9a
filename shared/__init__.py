"""
Shared utilities for the Item Catalog.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with correlation IDs and field redaction
- metrics: Prometheus metrics helpers
- errors: Canonical error types and the error response envelope
- retry: Async retry with configurable backoff
- base_service: FastAPI app factory with middleware, health and metrics
- time_utils: ISO-8601 timestamps

Do not import from service_* packages into shared/.
"""
