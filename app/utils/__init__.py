"""
Utility modules for the n8n debug agent.
"""

from app.utils.logging import (
    get_logger,
    setup_logging,
    log_report_received,
    log_status_transition,
    log_api_call,
    log_error_with_context,
)
from app.utils.metrics import (
    track_api_call,
    emit_metric,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_report_received",
    "log_status_transition",
    "log_api_call",
    "log_error_with_context",
    "track_api_call",
    "emit_metric",
]
