"""
Monitoring and metrics collection using Prometheus.
"""
from prometheus_client import Counter, Histogram, generate_latest, REGISTRY
from typing import Callable
import asyncio
import time
import functools


reconcile_cycles_total = Counter(
    'reconcile_cycles_total',
    'Total number of reconciliation cycles',
    ['status']
)

reconcile_cycle_duration = Histogram(
    'reconcile_cycle_duration_seconds',
    'Duration of reconciliation cycles'
)

meetings_finalized_total = Counter(
    'meetings_finalized_total',
    'Meetings finalized or back-filled by the reconciliation loop',
    ['outcome']
)

bots_scheduled_total = Counter(
    'bots_scheduled_total',
    'Bot scheduling requests by outcome',
    ['outcome']
)

api_requests_total = Counter(
    'api_requests_total',
    'Total number of API requests made',
    ['platform', 'endpoint', 'status']
)

api_request_duration = Histogram(
    'api_request_duration_seconds',
    'Duration of API requests',
    ['platform', 'endpoint']
)

transcript_fetches_total = Counter(
    'transcript_fetches_total',
    'Transcript lookups by the source that produced text',
    ['source']
)

content_generated_total = Counter(
    'content_generated_total',
    'Generated content by provider',
    ['provider']
)

calendar_sync_duration = Histogram(
    'calendar_sync_duration_seconds',
    'Duration of a calendar sync across all linked accounts'
)

errors_total = Counter(
    'errors_total',
    'Total number of errors by type',
    ['error_type', 'component']
)


def track_time(metric: Histogram, labels: dict = None):
    """
    Decorator to track execution time of a function.

    Args:
        metric: Prometheus Histogram metric
        labels: Optional labels for the metric
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                if labels:
                    metric.labels(**labels).observe(duration)
                else:
                    metric.observe(duration)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                if labels:
                    metric.labels(**labels).observe(duration)
                else:
                    metric.observe(duration)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_request(platform: str, endpoint: str, status: str, started: float) -> None:
    """Record a finished API request."""
    api_requests_total.labels(platform=platform, endpoint=endpoint, status=status).inc()
    api_request_duration.labels(platform=platform, endpoint=endpoint).observe(time.time() - started)


def get_metrics() -> bytes:
    """
    Get current metrics in Prometheus format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def record_error(error_type: str, component: str):
    """
    Record an error occurrence.

    Args:
        error_type: Type of error (e.g., 'RecallAPIError')
        component: Component where error occurred (e.g., 'recall_service')
    """
    errors_total.labels(error_type=error_type, component=component).inc()
