"""
Unit tests for metrics utilities.
"""

import pytest
from unittest.mock import patch

from app.utils.metrics import emit_metric, track_api_call
from app.utils.logging import get_logger


@pytest.mark.asyncio
async def test_track_api_call_logs_success():
    """Test a tracked call is logged with its status and duration."""
    logger = get_logger("test_metrics")

    with patch("app.utils.metrics.log_api_call") as mock_log, \
            patch("app.utils.metrics.emit_metric") as mock_emit:
        async with track_api_call(logger, "n8n", "/workflows/wf-1", "GET") as outcome:
            outcome.status_code = 200

    kwargs = mock_log.call_args.kwargs
    assert kwargs["service"] == "n8n"
    assert kwargs["status_code"] == 200
    assert kwargs["error"] is None
    assert kwargs["duration_ms"] >= 0
    assert mock_emit.call_args.args[0] == "n8n.call_duration_ms"
    assert mock_emit.call_args.kwargs["failed"] is False


@pytest.mark.asyncio
async def test_track_api_call_logs_and_reraises_failure():
    logger = get_logger("test_metrics")

    with patch("app.utils.metrics.log_api_call") as mock_log, \
            patch("app.utils.metrics.emit_metric") as mock_emit:
        with pytest.raises(RuntimeError):
            async with track_api_call(logger, "slack", "chat.postMessage", "POST"):
                raise RuntimeError("connection reset")

    assert mock_log.call_args.kwargs["error"] == "connection reset"
    assert mock_log.call_args.kwargs["status_code"] is None
    assert mock_emit.call_args.kwargs["failed"] is True


def test_emit_metric():
    """Test emitting a metric."""
    # This should not raise an exception
    emit_metric("test_metric", 42.0, tag1="value1", tag2="value2")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
