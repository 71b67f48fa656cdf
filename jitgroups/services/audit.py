from __future__ import annotations

import logging
from typing import Any

from jitgroups.domain.events import AuditEventPayload, EventId, EventOutcome


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["justification", "token", "secret", "password", "authorization"]
_REDACTED_VALUE = "[REDACTED]"

_OUTCOME_LEVELS = {
    "success": logging.INFO,
    "skipped": logging.DEBUG,
    "failure": logging.WARNING,
}


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def record_event(
    event_id: EventId,
    *,
    outcome: EventOutcome,
    message: str,
    metadata: dict[str, Any] | None = None,
    level: int | None = None,
) -> AuditEventPayload:
    """Log a structured event and return the payload that was logged.

    The log level follows the outcome unless ``level`` overrides it. Metadata is
    redacted before it reaches any handler.
    """
    payload: AuditEventPayload = {
        "event_id": event_id,
        "outcome": outcome,
        "message": message,
        "metadata": sanitize_metadata(metadata or {}),
    }
    resolved_level = level if level is not None else _OUTCOME_LEVELS[outcome]
    logger.log(
        resolved_level,
        "%s outcome=%s message=%s",
        event_id,
        outcome,
        message,
        extra={"event_id": event_id, "metadata": payload["metadata"]},
    )
    return payload
