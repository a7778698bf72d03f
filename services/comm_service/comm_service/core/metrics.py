"""Prometheus metrics for the communication service.

Exposed by the API at ``/metrics`` via ``render_latest``.
"""

from __future__ import annotations

from typing import Tuple

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


DISPATCH_ACCEPTED_TOTAL = Counter(
    "dispatch_accepted_total", "Dispatch units accepted at intake", ["kind", "status"]
)
DISPATCH_TERMINAL_TOTAL = Counter(
    "dispatch_terminal_total", "Dispatch units reaching a terminal status", ["kind", "status"]
)
DELIVERY_ATTEMPT_TOTAL = Counter(
    "delivery_attempt_total", "Channel delivery attempts", ["channel", "result"]
)
COMMAND_EXECUTION_SECONDS = Histogram(
    "command_execution_seconds",
    "Latency of outbound command calls",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5),
)
RETRY_SCHEDULED_TOTAL = Counter(
    "retry_scheduled_total", "Single fixed-delay retries scheduled", ["kind"]
)
IDEMPOTENCY_TOTAL = Counter(
    "idempotency_total", "Idempotency guard outcomes", ["result"]  # executed | replayed | conflict
)
VERIFICATION_TOTAL = Counter(
    "verification_total", "Verification outcomes", ["mode", "result"]
)
EVENT_RECEIVED_TOTAL = Counter(
    "event_received_total", "Events reported by downstream services", ["service", "status"]
)
NOTIFICATION_FAILED_TOTAL = Counter(
    "notification_failed_total", "Operator notifications that could not be delivered", ["channel"]
)


def render_latest() -> Tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
