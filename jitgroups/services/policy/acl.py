from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator

from jitgroups.domain.permissions import PolicyPermission, to_mask
from jitgroups.domain.principals import PrincipalId, Subject


@dataclass(frozen=True)
class AllowedEntry:
    principal: PrincipalId
    mask: int

    def __str__(self) -> str:
        return f"{self.principal}: {self.mask}"


@dataclass(frozen=True)
class AccessControlList:
    """Ordered, additive list of allowed entries.

    Masks of all entries that match one of a subject's principals are OR-ed;
    there are no deny entries. An empty list denies everything.
    """

    entries: tuple[AllowedEntry, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(self.entries))

    @classmethod
    def of(cls, *entries: AllowedEntry) -> AccessControlList:
        return cls(tuple(entries))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[AllowedEntry]:
        return iter(self.entries)

    def effective_mask(self, subject: Subject, now: datetime | None = None) -> int:
        # Group principals are not expanded here; the subject must already carry them.
        principals = subject.principal_ids(now or datetime.now(timezone.utc))
        mask = 0
        for entry in self.entries:
            if entry.principal in principals:
                mask |= entry.mask
        return mask

    def is_allowed(
        self,
        subject: Subject,
        permissions: PolicyPermission | Iterable[PolicyPermission] | int,
        now: datetime | None = None,
    ) -> bool:
        required = permissions if isinstance(permissions, int) else to_mask(permissions)
        if not self.entries or required == 0:
            return False
        return (self.effective_mask(subject, now) & required) == required

    def allowed_principals(self, permissions: PolicyPermission | Iterable[PolicyPermission] | int) -> set[PrincipalId]:
        # Principals whose own entries cover the permission, without combining entries of others.
        required = permissions if isinstance(permissions, int) else to_mask(permissions)
        masks: dict[PrincipalId, int] = {}
        for entry in self.entries:
            masks[entry.principal] = masks.get(entry.principal, 0) | entry.mask
        return {principal for principal, mask in masks.items() if (mask & required) == required}

    def merge(self, other: AccessControlList | None) -> AccessControlList:
        if other is None:
            return self
        return AccessControlList(self.entries + other.entries)
