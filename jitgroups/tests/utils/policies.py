from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Sequence

from jitgroups.domain.permissions import PolicyPermission, to_mask
from jitgroups.domain.principals import AUTHENTICATED_USERS, EndUserId, Principal, PrincipalId, Subject
from jitgroups.services.policy.acl import AccessControlList, AllowedEntry
from jitgroups.services.policy.constraints import Constraint, ConstraintClass, ExpiryConstraint
from jitgroups.services.policy.model import EnvironmentPolicy, JitGroupPolicy, SystemPolicy
from jitgroups.services.policy.privileges import IamRole, IamRoleBinding, ProjectId


def make_subject(email: str, *principals: Principal) -> Subject:
    # Authenticated-users membership is part of every resolved subject.
    return Subject(EndUserId(email), frozenset({Principal(AUTHENTICATED_USERS), *principals}))


def user(email: str) -> EndUserId:
    return EndUserId(email)


def entry(principal: PrincipalId, *permissions: PolicyPermission) -> AllowedEntry:
    return AllowedEntry(principal, to_mask(permissions))


def acl(*entries: AllowedEntry) -> AccessControlList:
    return AccessControlList.of(*entries)


def build_group(
    name: str = "group-1",
    *,
    entries: Iterable[AllowedEntry] = (),
    join: Sequence[Constraint] = (ExpiryConstraint(timedelta(hours=1)),),
    approve: Sequence[Constraint] = (),
    environment: str = "env-1",
    system: str = "system-1",
) -> JitGroupPolicy:
    # Build a group attached to a fresh environment and system.
    group = JitGroupPolicy(
        name,
        f"Group {name}",
        AccessControlList(tuple(entries)),
        {ConstraintClass.JOIN: join, ConstraintClass.APPROVE: approve},
        [IamRoleBinding(ProjectId("project-1"), IamRole("roles/viewer"))],
    )
    system_policy = SystemPolicy(system, "System")
    system_policy.add(group)
    EnvironmentPolicy(environment, "Environment").add(system_policy)
    return group
