from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from jitgroups.core.errors import (
    AccessDeniedError,
    ConstraintFailedError,
    ConstraintUnsatisfiedError,
)
from jitgroups.domain.permissions import PolicyPermission, to_mask
from jitgroups.domain.principals import Principal, Subject
from jitgroups.services.policy.constraints import Check, Constraint, ConstraintClass
from jitgroups.services.policy.properties import Property

if TYPE_CHECKING:
    from jitgroups.services.policy.model import JitGroupPolicy


logger = logging.getLogger(__name__)


class AccessOptions(Enum):
    DEFAULT = "default"
    IGNORE_CONSTRAINTS = "ignore_constraints"


class JoinDecision(Enum):
    ACTIVE = "active"
    JOIN_DISALLOWED = "join_disallowed"
    INPUT_REQUIRED = "input_required"
    CONSTRAINTS_UNSATISFIED = "constraints_unsatisfied"
    CONSTRAINTS_FAILED = "constraints_failed"
    JOIN_ALLOWED_WITH_APPROVAL = "join_allowed_with_approval"
    JOIN_ALLOWED_WITHOUT_APPROVAL = "join_allowed_without_approval"


@dataclass(frozen=True)
class AnalysisResult:
    access_allowed: bool
    satisfied: tuple[Constraint, ...] = ()
    unsatisfied: tuple[Constraint, ...] = ()
    failed: Mapping[str, Exception] = field(default_factory=dict)
    missing_input: tuple[Property, ...] = ()
    active_membership: Principal | None = None
    input: tuple[Property, ...] = ()

    def is_access_allowed(self, options: AccessOptions = AccessOptions.DEFAULT) -> bool:
        if options is AccessOptions.IGNORE_CONSTRAINTS:
            return self.access_allowed
        return self.access_allowed and not self.unsatisfied

    def verify_access_allowed(self, options: AccessOptions = AccessOptions.DEFAULT) -> None:
        if self.is_access_allowed(options):
            return
        if not self.access_allowed:
            raise AccessDeniedError("Access is denied")
        if self.failed:
            raise ConstraintFailedError(list(self.failed.values()))
        constraint = self.unsatisfied[0]
        raise ConstraintUnsatisfiedError(constraint.name, constraint.display_name)

    def join_decision(self, requires_approval: bool) -> JoinDecision:
        # An active membership takes precedence over every other outcome.
        if self.active_membership is not None:
            return JoinDecision.ACTIVE
        if not self.access_allowed:
            return JoinDecision.JOIN_DISALLOWED
        if self.failed:
            return JoinDecision.CONSTRAINTS_FAILED
        if self.unsatisfied:
            if self.missing_input:
                return JoinDecision.INPUT_REQUIRED
            return JoinDecision.CONSTRAINTS_UNSATISFIED
        if requires_approval:
            return JoinDecision.JOIN_ALLOWED_WITH_APPROVAL
        return JoinDecision.JOIN_ALLOWED_WITHOUT_APPROVAL


class PolicyAnalysis:
    """Checks whether a subject may access a group.

    Callers pick the constraint classes to apply, fill in ``input()`` and then
    call ``execute()``. Every check is created fresh for this analysis and is
    evaluated exactly once.
    """

    def __init__(
        self,
        policy: JitGroupPolicy,
        subject: Subject,
        permissions: PolicyPermission | Iterable[PolicyPermission] | int,
        now: datetime | None = None,
    ) -> None:
        mask = permissions if isinstance(permissions, int) else to_mask(permissions)
        if mask == 0:
            raise ValueError("At least one permission must be specified")
        self.policy = policy
        self.subject = subject
        self.permissions = mask
        self.now = now or datetime.now(timezone.utc)
        self._checks: list[Check] = []
        self._contexts: dict[str, dict[str, Any]] = {}

    def apply_constraints(self, constraint_class: ConstraintClass) -> PolicyAnalysis:
        self._checks.extend(c.create_check() for c in self.policy.effective_constraints(constraint_class))
        return self

    def add_context(self, name: str, values: Mapping[str, Any]) -> PolicyAnalysis:
        self._contexts[name] = dict(values)
        return self

    @property
    def checks(self) -> list[Check]:
        return list(self._checks)

    def input(self) -> list[Property]:
        return [prop for check in self._checks for prop in check.input()]

    def _prepare(self, check: Check) -> None:
        subject = check.add_context("subject")
        subject.set("email", self.subject.user.email)
        subject.set("principals", sorted(p.id.value for p in self.subject.principals))

        group_id = self.policy.id
        group = check.add_context("group")
        group.set("environment", group_id.environment)
        group.set("system", group_id.system)
        group.set("name", group_id.name)

        for name, values in self._contexts.items():
            context = check.add_context(name)
            for key, value in values.items():
                context.set(key, value)

    def execute(self) -> AnalysisResult:
        access_allowed = self.policy.is_access_allowed(self.subject, self.permissions, self.now)
        satisfied: list[Constraint] = []
        unsatisfied: list[Constraint] = []
        failed: dict[str, Exception] = {}
        missing: list[Property] = []

        for check in self._checks:
            self._prepare(check)
            missing.extend(check.missing_input)
            try:
                if check.evaluate():
                    satisfied.append(check.constraint)
                else:
                    unsatisfied.append(check.constraint)
            except Exception as exc:
                # Failed constraints also count as unsatisfied.
                logger.warning(
                    "constraint_check_failed group=%s constraint=%s",
                    self.policy.name,
                    check.constraint.name,
                    exc_info=exc,
                )
                unsatisfied.append(check.constraint)
                failed[check.constraint.name] = exc

        return AnalysisResult(
            access_allowed=access_allowed,
            satisfied=tuple(satisfied),
            unsatisfied=tuple(unsatisfied),
            failed=failed,
            missing_input=tuple(missing),
            active_membership=self.subject.membership(self.policy.id, self.now),
            input=tuple(self.input()),
        )
