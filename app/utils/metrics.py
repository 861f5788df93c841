"""
Lightweight metrics emission.

Metrics are written as structured log lines so any log pipeline can
aggregate them; nothing here keeps state between calls.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from app.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class CallOutcome:
    """Mutable holder a tracked call can fill with its response status."""

    def __init__(self) -> None:
        self.status_code: Any = None


@asynccontextmanager
async def track_api_call(
    logger_adapter,
    service: str,
    endpoint: str,
    method: str
) -> AsyncIterator[CallOutcome]:
    """
    Context manager to time and log an external API call.

    Usage:
        async with track_api_call(logger, "n8n", "/workflows/1", "GET") as outcome:
            response = await client.get("/workflows/1")
            outcome.status_code = response.status_code
    """
    outcome = CallOutcome()
    start_time = time.time()
    error = None

    try:
        yield outcome
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.time() - start_time) * 1000
        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            status_code=outcome.status_code,
            duration_ms=duration_ms,
            error=str(error) if error else None
        )
        emit_metric(f"{service}.call_duration_ms", duration_ms, endpoint=endpoint, failed=error is not None)


def emit_metric(metric_name: str, value: float, **tags: Any) -> None:
    """
    Emit a metric as a structured log entry.

    Args:
        metric_name: Metric name
        value: Metric value
        **tags: Metric tags/labels
    """
    payload: Dict[str, Any] = {
        "metric_name": metric_name,
        "metric_value": value,
        "metric_tags": tags,
    }
    logger.debug(f"Metric: {metric_name}", extra=payload)
