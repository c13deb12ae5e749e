"""
Shared utilities for the DERP Admission Gateway.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- base_service: FastAPI service shell (health, metrics, error handlers)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
