from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import re
from typing import Union


_USER_PATTERN = re.compile(r"^user:(.+)@(.+)$")
_JIT_GROUP_PATTERN = re.compile(r"^[a-z0-9\-]+$")


@dataclass(frozen=True, order=True)
class EndUserId:
    # Lower-case email is the canonical form for user identities.
    email: str

    TYPE = "user"

    def __post_init__(self) -> None:
        if not self.email or not self.email.strip():
            raise ValueError("email must not be blank")
        object.__setattr__(self, "email", self.email.strip().lower())

    @property
    def type(self) -> str:
        return self.TYPE

    @property
    def value(self) -> str:
        return self.email

    def __str__(self) -> str:
        return f"{self.TYPE}:{self.email}"

    @classmethod
    def parse(cls, text: str | None) -> EndUserId | None:
        if text is None or not text.strip():
            return None
        match = _USER_PATTERN.match(text.strip().lower())
        if match is None:
            return None
        return cls(f"{match.group(1).strip()}@{match.group(2)}")


@dataclass(frozen=True, order=True)
class GroupId:
    email: str

    TYPE = "group"

    def __post_init__(self) -> None:
        if not self.email or not self.email.strip():
            raise ValueError("email must not be blank")
        object.__setattr__(self, "email", self.email.strip().lower())

    @property
    def type(self) -> str:
        return self.TYPE

    @property
    def value(self) -> str:
        return self.email

    def __str__(self) -> str:
        return f"{self.TYPE}:{self.email}"

    @classmethod
    def parse(cls, text: str | None) -> GroupId | None:
        if text is None or not text.strip():
            return None
        text = text.strip()
        prefix = f"{cls.TYPE}:"
        if text.startswith(prefix) and len(text) > len(prefix):
            return cls(text[len(prefix):])
        return None


@dataclass(frozen=True, order=True)
class ClassPrincipal:
    """Pseudo-principal that stands for a whole class of users."""

    value: str

    TYPE = "class"

    @property
    def type(self) -> str:
        return self.TYPE

    def __str__(self) -> str:
        return f"{self.TYPE}:{self.value}"

    @classmethod
    def parse(cls, text: str | None) -> ClassPrincipal | None:
        if text is None or not text.strip():
            return None
        return _CLASS_PRINCIPALS.get(text.strip().lower())


AUTHENTICATED_USERS = ClassPrincipal("authenticatedUsers")
INTERNAL_USERS = ClassPrincipal("internalUsers")
EXTERNAL_USERS = ClassPrincipal("externalUsers")

_CLASS_PRINCIPALS = {
    str(principal).lower(): principal
    for principal in (AUTHENTICATED_USERS, INTERNAL_USERS, EXTERNAL_USERS)
}


@dataclass(frozen=True, order=True)
class JitGroupId:
    # Backend group names are case-insensitive, so all parts must be lower-case.
    environment: str
    system: str
    name: str

    TYPE = "jit-group"

    def __post_init__(self) -> None:
        for part_name in ("environment", "system", "name"):
            part = getattr(self, part_name)
            if not part or not part.strip():
                raise ValueError(f"{part_name} must not be blank")
            if part.lower() != part:
                raise ValueError(f"{part_name} must be a lower-case name")

    @property
    def type(self) -> str:
        return self.TYPE

    @property
    def value(self) -> str:
        return f"{self.environment}.{self.system}.{self.name}"

    def __str__(self) -> str:
        return f"{self.TYPE}:{self.value}"

    @classmethod
    def parse(cls, text: str | None) -> JitGroupId | None:
        if text is None or not text.strip():
            return None
        text = text.strip()
        prefix = f"{cls.TYPE}:"
        if text.startswith(prefix):
            text = text[len(prefix):]
        parts = text.split(".")
        if len(parts) != 3 or not all(_JIT_GROUP_PATTERN.match(part) for part in parts):
            return None
        return cls(*parts)


PrincipalId = Union[EndUserId, GroupId, ClassPrincipal, JitGroupId]


def parse_principal_id(text: str | None) -> PrincipalId | None:
    # Try each identifier syntax in turn; unknown prefixes are not principals.
    for parser in (EndUserId.parse, GroupId.parse, ClassPrincipal.parse, JitGroupId.parse):
        parsed = parser(text)
        if parsed is not None:
            return parsed
    return None


@dataclass(frozen=True)
class Principal:
    """A principal held by a subject, optionally only until ``expiry``."""

    id: PrincipalId
    expiry: datetime | None = None

    def is_valid(self, now: datetime) -> bool:
        return self.expiry is None or now < self.expiry


@dataclass(frozen=True)
class Subject:
    """Authenticated user together with every principal it maps to.

    The principal set must be fully resolved (group memberships expanded)
    before it reaches access checks.
    """

    user: EndUserId
    principals: frozenset[Principal] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        principals = set(self.principals)
        if not any(p.id == self.user for p in principals):
            principals.add(Principal(self.user))
        object.__setattr__(self, "principals", frozenset(principals))

    def principal_ids(self, now: datetime) -> frozenset[PrincipalId]:
        return frozenset(p.id for p in self.principals if p.is_valid(now))

    def membership(self, group: JitGroupId, now: datetime) -> Principal | None:
        for principal in self.principals:
            if principal.id == group and principal.is_valid(now):
                return principal
        return None
