from __future__ import annotations

from enum import Enum
from typing import Iterable


class PolicyPermission(Enum):
    """Permissions that an access control list can grant on a policy node.

    Values are bit masks; every permission includes the VIEW bit so that
    holding any permission implies being able to see the node.
    """

    VIEW = 1
    JOIN = 1 | 2
    APPROVE_OTHERS = 1 | 4
    APPROVE_SELF = 1 | 8
    EXPORT = 1 | 16
    RECONCILE = 1 | 32

    @property
    def mask(self) -> int:
        return self.value


def to_mask(permissions: PolicyPermission | Iterable[PolicyPermission]) -> int:
    # Combine permissions into a single mask.
    if isinstance(permissions, PolicyPermission):
        return permissions.mask
    mask = 0
    for permission in permissions:
        mask |= permission.mask
    return mask


def from_mask(mask: int) -> frozenset[PolicyPermission]:
    return frozenset(p for p in PolicyPermission if (p.mask & mask) == p.mask)


def parse(text: str) -> frozenset[PolicyPermission]:
    # Parse a comma-separated list such as "VIEW, JOIN".
    permissions = set()
    for item in text.split(","):
        name = item.strip().upper()
        if not name:
            continue
        try:
            permissions.add(PolicyPermission[name])
        except KeyError as exc:
            raise ValueError(f"Unknown permission: {name}") from exc
    if not permissions:
        raise ValueError("Permission list must not be empty")
    return frozenset(permissions)


def to_string(permissions: PolicyPermission | Iterable[PolicyPermission] | int) -> str:
    if isinstance(permissions, int):
        permissions = from_mask(permissions)
    elif isinstance(permissions, PolicyPermission):
        permissions = [permissions]
    # Declaration order keeps the output stable.
    selected = set(permissions)
    return ", ".join(p.name for p in PolicyPermission if p in selected)
