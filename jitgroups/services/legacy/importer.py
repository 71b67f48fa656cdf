from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from functools import partial
import logging
import re
from typing import Iterable

from jitgroups.core.config import Settings, get_settings
from jitgroups.core.errors import ExpressionError, UnsupportedOperationError
from jitgroups.domain.events import (
    LEGACY_BINDING_IGNORE,
    LEGACY_LOAD,
    LEGACY_ROLE_MAP,
    LEGACY_ROLE_MERGE,
)
from jitgroups.domain.permissions import PolicyPermission, to_mask
from jitgroups.domain.principals import AUTHENTICATED_USERS, EndUserId, GroupId, PrincipalId
from jitgroups.services.audit import record_event
from jitgroups.services.cel.conditions import IamCondition, split_and
from jitgroups.services.legacy.bindings import LegacyBinding, LegacyBindingSource, LegacyProject
from jitgroups.services.policy.acl import AccessControlList, AllowedEntry
from jitgroups.services.policy.constraints import (
    CelConstraint,
    Constraint,
    ConstraintClass,
    ExpiryConstraint,
    StringVariable,
)
from jitgroups.services.policy.model import EnvironmentPolicy, JitGroupPolicy, PolicySource, SystemPolicy
from jitgroups.services.policy.privileges import IamRole, IamRoleBinding, ProjectId


logger = logging.getLogger(__name__)

ENVIRONMENT_DESCRIPTION = "JIT Access 1.x roles"

JUSTIFICATION_CONSTRAINT_NAME = "justification"
JUSTIFICATION_DISPLAY_NAME = "You must provide a justification that explains why you need this access"

# Roles that include resourcemanager.projects.getIamPolicy (or an equivalent).
ROLES_WITH_GET_POLICY_PERMISSION = frozenset(
    [
        "roles/owner",
        "roles/editor",
        "roles/viewer",
        "roles/browser",
        "roles/iam.organizationRoleAdmin",
        "roles/iam.organizationRoleViewer",
        "roles/iam.roleAdmin",
        "roles/iam.roleViewer",
        "roles/iam.securityAdmin",
        "roles/iam.securityReviewer",
        "roles/resourcemanager.projectIamAdmin",
        "roles/resourcemanager.folderAdmin",
        "roles/resourcemanager.organizationAdmin",
    ]
)

# Roles that include resourcemanager.projects.setIamPolicy (or an equivalent).
ROLES_WITH_SET_POLICY_PERMISSION = frozenset(
    [
        "roles/owner",
        "roles/iam.securityAdmin",
        "roles/resourcemanager.projectIamAdmin",
        "roles/resourcemanager.folderAdmin",
        "roles/resourcemanager.organizationAdmin",
    ]
)

_JIT_MARKER_PATTERN = re.compile(r"^has\(\{\}\.jitaccessconstraint\)$")
_MPA_MARKER_PATTERN = re.compile(r"^has\(\{\}\.multipartyapprovalconstraint\)$")
_WHITESPACE_PATTERN = re.compile(r"\s+")

_ONE_MINUTE = timedelta(minutes=1)

_CUSTOM_ORG_ROLE_PATTERN = re.compile(r"^organizations/(\d+)/roles/(.+)$")
_CUSTOM_PROJECT_ROLE_PATTERN = re.compile(r"^projects/(.+)/roles/(.+)$")


class ActivationType(Enum):
    JIT = "jit"
    MPA = "mpa"

    @property
    def permissions(self) -> tuple[PolicyPermission, ...]:
        # JIT allows self-approval; MPA needs a peer to approve.
        if self is ActivationType.JIT:
            return (PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF)
        return (PolicyPermission.JOIN, PolicyPermission.APPROVE_OTHERS)


@dataclass(frozen=True)
class Eligibility:
    activation_type: ActivationType
    resource_condition: str | None = None


def _is_marker(clause: str, pattern: re.Pattern[str]) -> bool:
    normalized = _WHITESPACE_PATTERN.sub("", clause.lower())
    return bool(normalized) and pattern.match(normalized) is not None


def parse_eligibility(expression: str | None) -> Eligibility | None:
    """Detect the JIT/MPA eligibility marker of a binding condition.

    Returns None for bindings that carry neither marker and for bindings whose
    remaining clauses don't form a valid expression. MPA wins if a condition
    carries both markers.
    """
    if expression is None or not expression.strip():
        return None

    clauses = split_and(expression)
    jit_eligible = any(_is_marker(c, _JIT_MARKER_PATTERN) for c in clauses)
    mpa_eligible = any(_is_marker(c, _MPA_MARKER_PATTERN) for c in clauses)
    if not jit_eligible and not mpa_eligible:
        return None

    remaining = [
        c
        for c in clauses
        if c.strip() and not _is_marker(c, _JIT_MARKER_PATTERN) and not _is_marker(c, _MPA_MARKER_PATTERN)
    ]
    resource_condition = None
    if remaining:
        try:
            resource_condition = IamCondition.and_(remaining).reformat().condition
        except ExpressionError:
            return None

    activation_type = ActivationType.MPA if mpa_eligible else ActivationType.JIT
    return Eligibility(activation_type, resource_condition)


def group_name_for_role(role: IamRole) -> str:
    # Predefined roles drop their prefix; custom roles keep a short marker of their scope.
    name = role.name
    if name.startswith("roles/"):
        return name[len("roles/"):].replace(".", "-").lower()

    match = _CUSTOM_ORG_ROLE_PATTERN.match(name)
    if match is not None:
        return "o-" + match.group(2).replace(".", "-").lower()

    match = _CUSTOM_PROJECT_ROLE_PATTERN.match(name)
    if match is not None:
        return "p-" + match.group(2).replace(".", "-").lower()

    raise ValueError(f"Unrecognized role: {role}")


def extract_principals(members: Iterable[str]) -> list[PrincipalId]:
    # Only users and groups can join; service accounts and domains are dropped.
    principals: list[PrincipalId] = []
    for member in members:
        principal = EndUserId.parse(member) or GroupId.parse(member)
        if principal is not None:
            principals.append(principal)
    return principals


def legacy_join_constraints(settings: Settings | None = None) -> tuple[Constraint, ...]:
    settings = settings or get_settings()
    pattern = settings.legacy_justification_pattern.replace("\\", "\\\\")
    return (
        ExpiryConstraint(_ONE_MINUTE, settings.legacy_activation_timeout),
        CelConstraint(
            JUSTIFICATION_CONSTRAINT_NAME,
            JUSTIFICATION_DISPLAY_NAME,
            [StringVariable("justification", settings.legacy_justification_hint, 1, 100)],
            f"input.justification.matches('{pattern}')",
        ),
    )


def merge_groups(lhs: JitGroupPolicy, rhs: JitGroupPolicy) -> JitGroupPolicy:
    """Combine two groups derived from the same role into one."""
    if lhs.name != rhs.name:
        raise ValueError(f"Groups '{lhs.name}' and '{rhs.name}' cannot be merged because their names differ")

    lhs_acl = lhs.access_control_list if lhs.access_control_list is not None else AccessControlList()
    privileges = []
    for privilege in lhs.privileges + rhs.privileges:
        if privilege not in privileges:
            privileges.append(privilege)

    return JitGroupPolicy(
        lhs.display_name,
        lhs.description,
        lhs_acl.merge(rhs.access_control_list),
        {ConstraintClass.JOIN: lhs.constraints(ConstraintClass.JOIN) + rhs.constraints(ConstraintClass.JOIN)},
        privileges,
        source=PolicySource.LEGACY,
    )


class LegacyPolicyImporter:
    """Maps the IAM bindings of a legacy deployment to a policy tree.

    The environment and its systems are built eagerly; the groups of each
    system are only loaded from the binding source when first accessed.
    """

    def __init__(self, source: LegacyBindingSource, settings: Settings | None = None) -> None:
        self._source = source
        self._settings = settings or get_settings()
        self._join_constraints = legacy_join_constraints(self._settings)

    def load(self) -> EnvironmentPolicy:
        environment = EnvironmentPolicy(
            self._settings.legacy_environment_name,
            ENVIRONMENT_DESCRIPTION,
            self.environment_acl(self._source.root_bindings()),
            source=PolicySource.LEGACY,
        )
        projects = self._source.projects()
        for project in projects:
            environment.add(self.project_system(project))

        record_event(
            LEGACY_LOAD,
            outcome="success",
            message="Loaded legacy policy",
            metadata={"environment": environment.name, "projects": len(projects)},
        )
        return environment

    def environment_acl(self, root_bindings: Iterable[LegacyBinding]) -> AccessControlList:
        root_bindings = [b for b in root_bindings if b.condition_expression is None]
        entries: list[AllowedEntry] = []
        for roles, permission in (
            (ROLES_WITH_GET_POLICY_PERMISSION, PolicyPermission.EXPORT),
            (ROLES_WITH_SET_POLICY_PERMISSION, PolicyPermission.RECONCILE),
        ):
            principals: list[PrincipalId] = []
            for binding in root_bindings:
                if binding.role not in roles:
                    continue
                for principal in extract_principals(binding.members):
                    if principal not in principals:
                        principals.append(principal)
            entries.extend(AllowedEntry(p, permission.mask) for p in principals)

        entries.append(AllowedEntry(AUTHENTICATED_USERS, PolicyPermission.VIEW.mask))
        return AccessControlList(tuple(entries))

    def project_system(self, project: LegacyProject) -> SystemPolicy:
        # Project IDs are too long for group names, so systems use the hex project number.
        system = SystemPolicy(
            format(project.project_number, "x"),
            f"Project {project.project_id}",
            source=PolicySource.LEGACY,
            group_loader=partial(self._load_groups, project),
        )
        system.display_name = project.project_id
        return system

    def role_group(self, project_id: ProjectId, binding: LegacyBinding) -> JitGroupPolicy | None:
        """Map a single binding to a group, or return None if it isn't eligible."""
        eligibility = parse_eligibility(binding.condition_expression)
        if eligibility is None:
            return None

        if eligibility.resource_condition and not self._settings.legacy_allow_resource_conditions:
            raise UnsupportedOperationError("The role has a resource condition")

        role = IamRole(binding.role)
        privilege = IamRoleBinding(project_id, role, condition=eligibility.resource_condition)
        mask = to_mask(eligibility.activation_type.permissions)
        acl = AccessControlList(tuple(AllowedEntry(p, mask) for p in extract_principals(binding.members)))

        return JitGroupPolicy(
            group_name_for_role(role),
            f"Grants {role} on project {project_id}",
            acl,
            {ConstraintClass.JOIN: self._join_constraints},
            [privilege],
            source=PolicySource.LEGACY,
        )

    def _load_groups(self, project: LegacyProject, system: SystemPolicy) -> list[JitGroupPolicy]:
        project_id = ProjectId(project.project_id)
        groups: dict[str, JitGroupPolicy] = {}
        for binding in self._source.project_bindings(project):
            metadata = {"project": project.project_id, "role": binding.role}
            try:
                group = self.role_group(project_id, binding)
            except Exception as exc:
                # A binding that can't be mapped must not prevent the others from loading.
                record_event(
                    LEGACY_ROLE_MAP,
                    outcome="failure",
                    message=(
                        f"The role '{binding.role}' of project {project_id} cannot be mapped "
                        f"to a JIT group: {exc}"
                    ),
                    metadata={**metadata, "error": str(exc)},
                )
                continue

            if group is None:
                record_event(
                    LEGACY_BINDING_IGNORE,
                    outcome="skipped",
                    message="The binding is neither JIT- nor MPA-eligible",
                    metadata=metadata,
                )
            elif group.name in groups:
                # Same role eligible through JIT for some principals and through MPA for others.
                groups[group.name] = merge_groups(groups[group.name], group)
                record_event(
                    LEGACY_ROLE_MERGE,
                    outcome="success",
                    message=f"Merged bindings for role '{binding.role}'",
                    metadata={**metadata, "group": group.name},
                    level=logging.DEBUG,
                )
            else:
                groups[group.name] = group

        logger.info("legacy_project_loaded system=%s project=%s groups=%s", system.name, project_id, len(groups))
        return list(groups.values())
