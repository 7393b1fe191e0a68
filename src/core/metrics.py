"""
Prometheus Metrics for Observability

Tracks task submissions, saga compensations, per-operation latency, worker
message outcomes and retries. Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Upload saga outcomes
tasks_submitted_total = Counter(
    "imagery_tasks_submitted_total",
    "Upload saga outcomes",
    labelnames=["status", "error_type"]
)

saga_compensations_total = Counter(
    "imagery_saga_compensations_total",
    "Compensating actions run after a failed saga step",
    labelnames=["step", "outcome"]
)

# Per-operation latency
operation_latency_seconds = Histogram(
    "imagery_operation_latency_seconds",
    "Time spent applying each transform operation",
    labelnames=["operation", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Worker message outcomes
worker_messages_total = Counter(
    "imagery_worker_messages_total",
    "Messages handled by the processing worker",
    labelnames=["outcome"]
)

active_tasks_gauge = Gauge(
    "imagery_active_tasks",
    "Number of tasks currently being processed by this worker"
)

# Retries (Task Store + Message Channel)
retry_attempts_total = Counter(
    "imagery_retry_attempts_total",
    "Retried calls against the task store or message channel",
    labelnames=["action"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "imagery_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_operation_latency(operation: str):
    """
    Context manager to track transform latency.

    Usage:
        with track_operation_latency("resize"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        operation_latency_seconds.labels(operation=operation, status=status).observe(duration)


def record_submission(status: str, error_type: str = "none"):
    """Record an upload saga outcome."""
    tasks_submitted_total.labels(status=status, error_type=error_type).inc()


def record_compensation(step: str, outcome: str):
    """Record a compensating action outcome."""
    saga_compensations_total.labels(step=step, outcome=outcome).inc()


def record_worker_message(outcome: str):
    """Record how the worker disposed of a message."""
    worker_messages_total.labels(outcome=outcome).inc()


def record_retry(action: str):
    """Record one retried call."""
    retry_attempts_total.labels(action=action).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
