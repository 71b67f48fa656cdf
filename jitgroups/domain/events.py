from __future__ import annotations

from typing import Any, Literal, TypedDict


EventId = Literal[
    "legacy.role.map",
    "legacy.role.merge",
    "legacy.binding.ignore",
    "legacy.load",
    "group.join",
    "group.propose",
    "group.approve",
]

EventOutcome = Literal["success", "failure", "skipped"]

LEGACY_ROLE_MAP: EventId = "legacy.role.map"
LEGACY_ROLE_MERGE: EventId = "legacy.role.merge"
LEGACY_BINDING_IGNORE: EventId = "legacy.binding.ignore"
LEGACY_LOAD: EventId = "legacy.load"
GROUP_JOIN: EventId = "group.join"
GROUP_PROPOSE: EventId = "group.propose"
GROUP_APPROVE: EventId = "group.approve"


class BindingEventData(TypedDict, total=False):
    project: str
    role: str
    members: list[str]
    condition: str | None
    error: str


class AccessEventData(TypedDict, total=False):
    user: str
    group: str
    expiry: str
    reviewers: list[str]


class AuditEventPayload(TypedDict, total=False):
    event_id: EventId
    outcome: EventOutcome
    message: str
    metadata: dict[str, Any]
