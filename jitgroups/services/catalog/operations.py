from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Protocol

from jitgroups.core.config import Settings, get_settings
from jitgroups.core.errors import AccessDeniedError, StateError
from jitgroups.domain.events import GROUP_APPROVE, GROUP_JOIN, GROUP_PROPOSE
from jitgroups.domain.permissions import PolicyPermission
from jitgroups.domain.principals import EndUserId, GroupId, JitGroupId, PrincipalId, Subject
from jitgroups.services.audit import record_event
from jitgroups.services.cel.temporary import TimeSpan, encode
from jitgroups.services.policy.analysis import AccessOptions, AnalysisResult, JoinDecision, PolicyAnalysis
from jitgroups.services.policy.constraints import ConstraintClass, ExpiryConstraint, ReviewerQuorumConstraint
from jitgroups.services.policy.model import JitGroupPolicy
from jitgroups.services.policy.privileges import Privilege
from jitgroups.services.policy.properties import Property


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grant:
    """Everything a provisioner needs to add a user to a group for a limited time."""

    user: EndUserId
    group: JitGroupId
    privileges: tuple[Privilege, ...]
    validity: TimeSpan
    condition: str

    @classmethod
    def create(
        cls,
        user: EndUserId,
        policy: JitGroupPolicy,
        start: datetime,
        duration: timedelta,
    ) -> Grant:
        validity = TimeSpan(start, start + duration)
        return cls(
            user=user,
            group=policy.id,
            privileges=policy.privileges,
            validity=validity,
            condition=encode(validity.start, validity.end),
        )


class Provisioner(Protocol):
    def provision_membership(self, grant: Grant) -> None:
        ...


class ProposalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"


@dataclass
class Proposal:
    """Pending request to join a group that needs peer approval."""

    user: EndUserId
    group: JitGroupId
    recipients: frozenset[PrincipalId]
    input: dict[str, str]
    expiry: datetime
    reviewers: set[EndUserId] = field(default_factory=set)
    status: ProposalStatus = ProposalStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expiry

    def _ensure_pending(self, now: datetime) -> None:
        if self.status is ProposalStatus.PENDING and self.is_expired(now):
            self.status = ProposalStatus.EXPIRED
        if self.status is ProposalStatus.EXPIRED:
            raise StateError("The proposal has expired")
        if self.status is not ProposalStatus.PENDING:
            raise StateError("The proposal has already been approved")


@dataclass(frozen=True)
class JoinReport:
    decision: JoinDecision
    requires_approval: bool
    result: AnalysisResult


def _copy_input(source: list[Property], target: list[Property]) -> None:
    # Both lists come from the same constraints in the same order.
    for source_prop, target_prop in zip(source, target):
        value = source_prop.get()
        if value is not None:
            target_prop.set(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Operation:
    def __init__(
        self,
        context: JitGroupContext,
        permissions: tuple[PolicyPermission, ...],
        constraint_classes: tuple[ConstraintClass, ...],
    ) -> None:
        self._context = context
        self._permissions = permissions
        self._constraint_classes = constraint_classes
        self._analysis = self._new_analysis(None)

    def _new_analysis(self, now: datetime | None) -> PolicyAnalysis:
        analysis = self._context.policy.analyze(self._context.subject, self._permissions, now)
        for constraint_class in self._constraint_classes:
            analysis.apply_constraints(constraint_class)
        return analysis

    def _run(self, now: datetime) -> AnalysisResult:
        # Checks are single-use, so every run replays the input into fresh checks.
        analysis = self._new_analysis(now)
        _copy_input(self._analysis.input(), analysis.input())
        self._prepare(analysis)
        return analysis.execute()

    def _prepare(self, analysis: PolicyAnalysis) -> None:
        pass

    @property
    def user(self) -> EndUserId:
        return self._context.subject.user

    @property
    def group(self) -> JitGroupId:
        return self._context.policy.id

    def input(self) -> list[Property]:
        return self._analysis.input()

    def _expiry(self, joining_user_input: list[Property]) -> timedelta:
        for constraint in self._context.policy.effective_constraints(ConstraintClass.JOIN):
            if isinstance(constraint, ExpiryConstraint):
                expiry = constraint.extract_expiry(joining_user_input)
                if expiry is not None:
                    return expiry
        raise StateError(f"The group {self.group} doesn't specify an expiry constraint")


class JoinOperation(_Operation):
    """Request by the subject to join the group, with or without approval."""

    def __init__(self, context: JitGroupContext, requires_approval: bool) -> None:
        if requires_approval:
            super().__init__(context, (PolicyPermission.JOIN,), (ConstraintClass.JOIN,))
        else:
            super().__init__(
                context,
                (PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF),
                (ConstraintClass.JOIN, ConstraintClass.APPROVE),
            )
        self.requires_approval = requires_approval

    def dry_run(self, now: datetime | None = None) -> JoinReport:
        result = self._run(now or _utcnow())
        decision = result.join_decision(self.requires_approval)
        if decision is JoinDecision.JOIN_ALLOWED_WITH_APPROVAL and not self._context.can_be_approved():
            # Nobody, or not enough principals, could ever approve the request.
            decision = JoinDecision.JOIN_DISALLOWED
        return JoinReport(decision, self.requires_approval, result)

    def execute(self, now: datetime | None = None) -> Grant:
        if self.requires_approval:
            raise AccessDeniedError("The join operation requires approval")
        now = now or _utcnow()
        self._run(now).verify_access_allowed(AccessOptions.DEFAULT)

        grant = Grant.create(self.user, self._context.policy, now, self._expiry(self.input()))
        record_event(
            GROUP_JOIN,
            outcome="success",
            message="Joined group with self-approval",
            metadata={"user": str(self.user), "group": str(self.group), "expiry": str(grant.validity.end)},
        )
        return grant

    def propose(self, expiry: datetime | None = None, now: datetime | None = None) -> Proposal:
        if not self.requires_approval:
            raise StateError("The join operation does not require approval and cannot be proposed")
        now = now or _utcnow()
        self._run(now).verify_access_allowed(AccessOptions.DEFAULT)

        approvers = self._context.approvers()
        if not approvers:
            raise AccessDeniedError("There are no principals that could approve the request to join this group")
        required = self._context.required_reviewers()
        if not self._context.can_be_approved():
            raise AccessDeniedError(
                f"The request requires {required} approvals, but only {len(approvers)} principals could approve it"
            )

        proposal = Proposal(
            user=self.user,
            group=self.group,
            recipients=approvers,
            input={prop.name: prop.get() for prop in self.input() if prop.get() is not None},
            expiry=expiry or now + self._context.settings.proposal_timeout,
        )
        record_event(
            GROUP_PROPOSE,
            outcome="success",
            message="Proposed joining group",
            metadata={"user": str(self.user), "group": str(self.group), "recipients": sorted(map(str, approvers))},
        )
        return proposal


class ApprovalOperation(_Operation):
    """Approval of someone's proposal by the subject."""

    def __init__(self, context: JitGroupContext, proposal: Proposal, joining_user_input: list[Property]) -> None:
        permission = (
            PolicyPermission.APPROVE_SELF if proposal.user == context.subject.user else PolicyPermission.APPROVE_OTHERS
        )
        super().__init__(context, (permission,), (ConstraintClass.APPROVE,))
        self.proposal = proposal
        self._joining_user_input = joining_user_input

    @property
    def joining_user(self) -> EndUserId:
        return self.proposal.user

    def _prepare(self, analysis: PolicyAnalysis) -> None:
        reviewers = {str(reviewer) for reviewer in self.proposal.reviewers} | {str(self.user)}
        analysis.add_context(
            ReviewerQuorumConstraint.CONTEXT,
            {"requester": str(self.proposal.user), "reviewers": sorted(reviewers)},
        )

    def dry_run(self, now: datetime | None = None) -> AnalysisResult:
        return self._run(now or _utcnow())

    def execute(self, now: datetime | None = None) -> Grant | None:
        """Record the subject's approval.

        Returns the grant once the reviewer quorum is met, and None while
        more approvals are needed.
        """
        now = now or _utcnow()
        self.proposal._ensure_pending(now)
        result = self._run(now)
        if not result.access_allowed:
            raise AccessDeniedError("Access is denied")

        quorum_pending = [c for c in result.unsatisfied if isinstance(c, ReviewerQuorumConstraint)]
        others = [c for c in result.unsatisfied if not isinstance(c, ReviewerQuorumConstraint)]
        if others or result.failed:
            result.verify_access_allowed(AccessOptions.DEFAULT)

        self.proposal.reviewers.add(self.user)
        if quorum_pending:
            logger.info(
                "proposal_approval_recorded group=%s reviewers=%s",
                self.group,
                len(self.proposal.reviewers),
            )
            return None

        self.proposal.status = ProposalStatus.APPROVED
        grant = Grant.create(self.joining_user, self._context.policy, now, self._expiry(self._joining_user_input))
        record_event(
            GROUP_APPROVE,
            outcome="success",
            message="Approved request to join group",
            metadata={
                "user": str(self.joining_user),
                "group": str(self.group),
                "reviewers": sorted(str(r) for r in self.proposal.reviewers),
            },
        )
        return grant


class JitGroupContext:
    """Entry point for joining or approving a group on behalf of a subject."""

    def __init__(self, policy: JitGroupPolicy, subject: Subject, settings: Settings | None = None) -> None:
        self.policy = policy
        self.subject = subject
        self.settings = settings or get_settings()

    def _quorums(self) -> list[ReviewerQuorumConstraint]:
        return [
            c for c in self.policy.effective_constraints(ConstraintClass.APPROVE) if isinstance(c, ReviewerQuorumConstraint)
        ]

    def _requires_quorum(self) -> bool:
        return bool(self._quorums())

    def required_reviewers(self) -> int:
        return max((quorum.min_reviewers for quorum in self._quorums()), default=1)

    def approvers(self) -> frozenset[PrincipalId]:
        """Users and groups, other than the subject, that may approve the subject's requests."""
        return frozenset(
            principal
            for principal in self.policy.effective_access_control_list().allowed_principals(
                PolicyPermission.APPROVE_OTHERS
            )
            if principal != self.subject.user and isinstance(principal, (EndUserId, GroupId))
        )

    def can_be_approved(self, now: datetime | None = None) -> bool:
        # Each group counts as a single reviewer since its size is unknown here.
        capacity = len(self.approvers())
        if any(quorum.allow_requester for quorum in self._quorums()) and self.policy.is_access_allowed(
            self.subject, PolicyPermission.APPROVE_SELF, now
        ):
            capacity += 1
        return capacity >= self.required_reviewers()

    def join(self, now: datetime | None = None) -> JoinOperation:
        # Self-approval needs JOIN and APPROVE_SELF, and no reviewer quorum on the group.
        can_self_approve = self.policy.is_access_allowed(
            self.subject, (PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF), now
        )
        return JoinOperation(self, requires_approval=not can_self_approve or self._requires_quorum())

    def approve(self, proposal: Proposal, now: datetime | None = None) -> ApprovalOperation:
        if proposal.group != self.policy.id:
            raise ValueError("Proposal must match group")
        proposal._ensure_pending(now or _utcnow())

        joining_user_input = (
            self.policy.analyze(self.subject, PolicyPermission.JOIN, now)
            .apply_constraints(ConstraintClass.JOIN)
            .input()
        )
        for prop in joining_user_input:
            if prop.name not in proposal.input:
                if prop.is_required:
                    raise ValueError(f"The proposal is missing a required input for {prop.name}")
                continue
            prop.set(proposal.input[prop.name])

        return ApprovalOperation(self, proposal, joining_user_input)
