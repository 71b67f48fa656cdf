from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import re
from typing import Callable, Iterable, Protocol

from jitgroups.domain.principals import (
    AUTHENTICATED_USERS,
    EXTERNAL_USERS,
    INTERNAL_USERS,
    EndUserId,
    GroupId,
    JitGroupId,
    Principal,
    Subject,
)


logger = logging.getLogger(__name__)

_GROUP_PREFIX = "jit"
_NAME_PATTERN = r"[a-zA-Z0-9\-]+"


class SubjectResolver(Protocol):
    """Resolves an authenticated user into a fully expanded subject."""

    def resolve(self, user: EndUserId) -> Subject:
        ...


@dataclass(frozen=True)
class GroupMembership:
    # Membership as reported by a directory; JIT memberships always carry an expiry.
    group: GroupId
    expiry: datetime | None = None


class GroupMapping:
    """Maps JIT group IDs to directory group emails and back.

    Group emails follow ``jit.<environment>.<system>.<name>@<domain>``.
    """

    def __init__(self, domain: str) -> None:
        self.domain = domain
        self._pattern = re.compile(
            rf"^{_GROUP_PREFIX}\.({_NAME_PATTERN})\.({_NAME_PATTERN})\.({_NAME_PATTERN})@{re.escape(domain)}$"
        )

    def is_jit_group(self, group: GroupId) -> bool:
        return self._pattern.match(group.email) is not None

    def jit_group_from_group(self, group: GroupId) -> JitGroupId:
        match = self._pattern.match(group.email)
        if match is None:
            raise ValueError(f"'{group.email}' is not a JIT group")
        return JitGroupId(match.group(1), match.group(2), match.group(3))

    def group_from_jit_group(self, group: JitGroupId) -> GroupId:
        handle = ".".join([_GROUP_PREFIX, group.environment, group.system, group.name])
        return GroupId(f"{handle}@{self.domain}")

    def group_prefix(self, environment: str) -> str:
        return f"{_GROUP_PREFIX}.{environment}."


class DirectorySubjectResolver:
    """Builds subjects from a directory membership lookup.

    Every subject carries the user itself, the authenticated-users class,
    the internal- or external-users class and its group memberships. JIT group
    memberships without an expiry are ignored.
    """

    def __init__(
        self,
        lookup_memberships: Callable[[EndUserId], Iterable[GroupMembership]],
        mapping: GroupMapping,
        internal_domains: Iterable[str] = (),
    ) -> None:
        self._lookup_memberships = lookup_memberships
        self._mapping = mapping
        self._internal_domains = frozenset(domain.lower() for domain in internal_domains)

    def _user_class(self, user: EndUserId) -> Principal:
        domain = user.email.rsplit("@", 1)[-1]
        if domain in self._internal_domains:
            return Principal(INTERNAL_USERS)
        return Principal(EXTERNAL_USERS)

    def resolve(self, user: EndUserId) -> Subject:
        principals = {Principal(user), Principal(AUTHENTICATED_USERS), self._user_class(user)}
        jit_groups = 0
        other_groups = 0
        for membership in self._lookup_memberships(user):
            if not self._mapping.is_jit_group(membership.group):
                principals.add(Principal(membership.group))
                other_groups += 1
            elif membership.expiry is None:
                logger.warning("subject_resolution_skipped group=%s reason=missing_expiry", membership.group)
            else:
                principals.add(Principal(self._mapping.jit_group_from_group(membership.group), membership.expiry))
                jit_groups += 1

        logger.info(
            "subject_resolved user=%s jit_groups=%s other_groups=%s",
            user,
            jit_groups,
            other_groups,
        )
        return Subject(user, frozenset(principals))
