"""Shared constants for dispatch statuses, kinds and store key layout.

States (``{kind}:{id}:status`` hash, field ``status``):
- ``pending_confirmation``: Waiting for a human confirm/reject decision.
- ``queued``: Accepted for execution (directly or after confirmation).
- ``processing``: Outbound call or channel delivery in progress.
- ``completed``: Command executed successfully (terminal).
- ``sent``: Message delivered on some channel (terminal).
- ``failed``: All delivery/execution attempts exhausted (terminal).
- ``rejected``: A human rejected the unit (terminal).

Store keys:
- ``{kind}:{id}``: the dispatch unit JSON, TTL = routing.ttl_seconds or 300s
- ``{kind}:{id}:status`` / ``:result`` / ``:error``: 24h side records
- ``audit:{kind}s``: append-only audit list
- ``queue:{kind}s:{target}``: informational queue entries (no consumer)
- ``verification:{id}`` / ``:attempts`` / ``:verified``: verification records
"""

from __future__ import annotations

KIND_COMMAND = "command"
KIND_MESSAGE = "message"

ID_PREFIXES = {KIND_COMMAND: "cmd_", KIND_MESSAGE: "msg_"}
VERIFICATION_ID_PREFIX = "ver_"

STATUS_PENDING_CONFIRMATION = "pending_confirmation"
STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_REJECTED = "rejected"

TERMINAL_STATUSES = frozenset(
    {STATUS_COMPLETED, STATUS_SENT, STATUS_FAILED, STATUS_REJECTED}
)

CONFIRM_SCOPE = "command.execute"
SERVICE_NAME = "comm-service"
MAGIC_LINK_PURPOSE_DISPATCH = "dispatch_confirm"

RETRY_QUEUE_KEY = "queue:retries"


def kind_from_id(dispatch_id: str) -> str | None:
    """Infer the dispatch kind from its id prefix."""
    for kind, prefix in ID_PREFIXES.items():
        if dispatch_id.startswith(prefix):
            return kind
    return None


def unit_key(kind: str, dispatch_id: str) -> str:
    return f"{kind}:{dispatch_id}"


def status_key(kind: str, dispatch_id: str) -> str:
    return f"{kind}:{dispatch_id}:status"


def result_key(kind: str, dispatch_id: str) -> str:
    return f"{kind}:{dispatch_id}:result"


def error_key(kind: str, dispatch_id: str) -> str:
    return f"{kind}:{dispatch_id}:error"


def audit_key(kind: str) -> str:
    return f"audit:{kind}s"


def queue_key(kind: str, target: str) -> str:
    return f"queue:{kind}s:{target}"


def verification_key(verification_id: str) -> str:
    return f"verification:{verification_id}"


def attempts_key(verification_id: str) -> str:
    return f"verification:{verification_id}:attempts"


def verified_key(verification_id: str) -> str:
    return f"verification:{verification_id}:verified"


def retries_key(command_id: str) -> str:
    return f"command:{command_id}:retries"


def event_key(command_id: str, timestamp_ms: int) -> str:
    return f"event:{command_id}:{timestamp_ms}"


def service_metrics_key(service: str, day: str, suffix: str) -> str:
    return f"metrics:{service}:{day}:{suffix}"
