"""
Prometheus metrics for the DERP Admission Gateway.
"""

import threading
from typing import Dict, Any, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    REGISTRY,
)


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "admission":
            self._setup_admission_metrics()

    def _setup_admission_metrics(self):
        """Set up admission-specific metrics."""
        self._metrics["admission_decisions_total"] = Counter(
            "admission_decisions_total",
            "Total admission decisions",
            ["allow"],
            registry=self.registry
        )

        self._metrics["cache_refresh_total"] = Counter(
            "admission_cache_refresh_total",
            "Total authorized-key cache refresh attempts",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["cache_refresh_duration_seconds"] = Histogram(
            "admission_cache_refresh_duration_seconds",
            "Authorized-key cache refresh duration in seconds",
            registry=self.registry
        )

        self._metrics["upstream_requests_total"] = Counter(
            "admission_upstream_requests_total",
            "Total upstream directory API requests",
            ["operation", "status_code"],
            registry=self.registry
        )

        self._metrics["authorized_keys"] = Gauge(
            "admission_authorized_keys",
            "Number of authorized node keys in the last successful refresh",
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_decision(self, allow: bool):
        """Record an admission verdict."""
        self.increment_counter("admission_decisions_total", allow=str(allow).lower())

    def record_refresh(self, outcome: str, duration: float, key_count: Optional[int] = None):
        """Record a cache refresh attempt."""
        self.increment_counter("cache_refresh_total", outcome=outcome)
        self.observe_histogram("cache_refresh_duration_seconds", duration)
        if key_count is not None:
            self.set_gauge("authorized_keys", key_count)

    def record_upstream_request(self, operation: str, status_code: Optional[int]):
        """Record an upstream API call."""
        self.increment_counter(
            "upstream_requests_total",
            operation=operation,
            status_code=str(status_code) if status_code is not None else "error"
        )

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)


_collectors: Dict[str, MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service.

    Collectors bound to the default registry are shared per service name,
    since prometheus_client rejects duplicate registrations.
    """
    if registry is not None:
        return MetricsCollector(service_name, registry)

    with _collectors_lock:
        if service_name not in _collectors:
            _collectors[service_name] = MetricsCollector(service_name)
        return _collectors[service_name]
