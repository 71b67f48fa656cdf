from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

import pytest

from jitgroups.core.errors import AccessDeniedError, ConstraintUnsatisfiedError, StateError
from jitgroups.domain.permissions import PolicyPermission
from jitgroups.domain.principals import EndUserId, GroupId, Subject
from jitgroups.services.catalog.operations import JitGroupContext, ProposalStatus
from jitgroups.services.cel.temporary import decode
from jitgroups.services.policy.analysis import JoinDecision
from jitgroups.services.policy.constraints import Constraint, ExpiryConstraint, ReviewerQuorumConstraint
from jitgroups.services.policy.model import JitGroupPolicy
from jitgroups.tests.utils.policies import build_group, entry, user


FIXED_EXPIRY = ExpiryConstraint(timedelta(hours=1))
RANGED_EXPIRY = ExpiryConstraint(timedelta(minutes=5), timedelta(hours=2))

ALICE = user("alice@example.com")
BOB = user("bob@example.com")
CAROL = user("carol@example.com")


def _jit_group(*join: Constraint) -> JitGroupPolicy:
    return build_group(
        entries=[entry(ALICE, PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF)],
        join=join or (FIXED_EXPIRY,),
    )


def _mpa_group(*join: Constraint, approve: Sequence[Constraint] = ()) -> JitGroupPolicy:
    return build_group(
        entries=[
            entry(ALICE, PolicyPermission.JOIN),
            entry(BOB, PolicyPermission.APPROVE_OTHERS),
            entry(CAROL, PolicyPermission.APPROVE_OTHERS),
            entry(GroupId("admins@example.com"), PolicyPermission.APPROVE_OTHERS),
        ],
        join=join or (FIXED_EXPIRY,),
        approve=approve,
    )


def test_self_approved_join_returns_grant(alice: Subject, now: datetime) -> None:
    group = _jit_group()
    operation = JitGroupContext(group, alice).join(now)
    assert not operation.requires_approval

    report = operation.dry_run(now)
    assert report.decision is JoinDecision.JOIN_ALLOWED_WITHOUT_APPROVAL

    grant = operation.execute(now)
    assert grant.user == ALICE
    assert grant.group == group.id
    assert grant.privileges == group.privileges
    assert grant.validity.start == now
    assert grant.validity.end == now + timedelta(hours=1)
    assert decode(grant.condition) == grant.validity


def test_join_uses_the_chosen_expiry(alice: Subject, now: datetime) -> None:
    operation = JitGroupContext(_jit_group(RANGED_EXPIRY), alice).join(now)
    assert operation.dry_run(now).decision is JoinDecision.INPUT_REQUIRED

    operation.input()[0].set("PT30M")
    assert operation.dry_run(now).decision is JoinDecision.JOIN_ALLOWED_WITHOUT_APPROVAL
    assert operation.execute(now).validity.duration == timedelta(minutes=30)


def test_join_fails_while_constraints_are_unsatisfied(alice: Subject, now: datetime) -> None:
    operation = JitGroupContext(_jit_group(RANGED_EXPIRY), alice).join(now)
    with pytest.raises(ConstraintUnsatisfiedError):
        operation.execute(now)


def test_join_without_permission_is_denied(bob: Subject, now: datetime) -> None:
    operation = JitGroupContext(_jit_group(), bob).join(now)
    assert operation.dry_run(now).decision is JoinDecision.JOIN_DISALLOWED
    with pytest.raises(AccessDeniedError):
        operation.propose(now=now)


def test_self_approved_join_cannot_be_proposed(alice: Subject, now: datetime) -> None:
    with pytest.raises(StateError):
        JitGroupContext(_jit_group(), alice).join(now).propose(now=now)


def test_join_requiring_approval_cannot_be_executed(alice: Subject, now: datetime) -> None:
    operation = JitGroupContext(_mpa_group(), alice).join(now)
    assert operation.requires_approval
    assert operation.dry_run(now).decision is JoinDecision.JOIN_ALLOWED_WITH_APPROVAL
    with pytest.raises(AccessDeniedError, match="requires approval"):
        operation.execute(now)


def test_proposal_lists_other_approvers(alice: Subject, now: datetime) -> None:
    proposal = JitGroupContext(_mpa_group(), alice).join(now).propose(now=now)
    assert proposal.user == ALICE
    assert proposal.recipients == {BOB, CAROL, GroupId("admins@example.com")}
    assert proposal.expiry == now + timedelta(minutes=60)
    assert proposal.status is ProposalStatus.PENDING


def test_proposal_timeout_is_configurable(
    alice: Subject, now: datetime, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("JITGROUPS_PROPOSAL_TIMEOUT_MINUTES", "15")
    proposal = JitGroupContext(_mpa_group(), alice).join(now).propose(now=now)
    assert proposal.expiry == now + timedelta(minutes=15)


def test_proposal_requires_another_approver(alice: Subject, now: datetime) -> None:
    group = build_group(entries=[entry(ALICE, PolicyPermission.JOIN, PolicyPermission.APPROVE_OTHERS)])
    with pytest.raises(AccessDeniedError, match="no principals that could approve"):
        JitGroupContext(group, alice).join(now).propose(now=now)


def test_peer_approval_returns_grant_for_requester(alice: Subject, bob: Subject, now: datetime) -> None:
    group = _mpa_group(RANGED_EXPIRY)
    join = JitGroupContext(group, alice).join(now)
    join.input()[0].set("PT45M")
    proposal = join.propose(now=now)
    assert proposal.input == {"_expiry": "PT45M"}

    approval = JitGroupContext(group, bob).approve(proposal, now)
    assert approval.joining_user == ALICE
    grant = approval.execute(now)

    assert grant is not None
    assert grant.user == ALICE
    assert grant.validity.duration == timedelta(minutes=45)
    assert proposal.status is ProposalStatus.APPROVED
    assert proposal.reviewers == {BOB}


def test_approved_proposal_cannot_be_approved_again(alice: Subject, bob: Subject, carol: Subject, now: datetime) -> None:
    group = _mpa_group()
    proposal = JitGroupContext(group, alice).join(now).propose(now=now)
    JitGroupContext(group, bob).approve(proposal, now).execute(now)
    with pytest.raises(StateError, match="already been approved"):
        JitGroupContext(group, carol).approve(proposal, now)


def test_expired_proposal_cannot_be_approved(alice: Subject, bob: Subject, now: datetime) -> None:
    group = _mpa_group()
    proposal = JitGroupContext(group, alice).join(now).propose(now=now)
    with pytest.raises(StateError, match="expired"):
        JitGroupContext(group, bob).approve(proposal, now + timedelta(hours=2))
    assert proposal.status is ProposalStatus.EXPIRED


def test_approval_requires_approve_permission(alice: Subject, now: datetime) -> None:
    group = _mpa_group()
    proposal = JitGroupContext(group, alice).join(now).propose(now=now)
    outsider = Subject(EndUserId("dave@example.com"))
    with pytest.raises(AccessDeniedError):
        JitGroupContext(group, outsider).approve(proposal, now).execute(now)
    assert proposal.status is ProposalStatus.PENDING


def test_approval_must_match_group(alice: Subject, bob: Subject, now: datetime) -> None:
    proposal = JitGroupContext(_mpa_group(), alice).join(now).propose(now=now)
    other = build_group("other-group", entries=[entry(BOB, PolicyPermission.APPROVE_OTHERS)])
    with pytest.raises(ValueError, match="Proposal must match group"):
        JitGroupContext(other, bob).approve(proposal, now)


def test_quorum_requires_approval_even_with_self_approve(alice: Subject, now: datetime) -> None:
    group = build_group(
        entries=[
            entry(ALICE, PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF),
            entry(BOB, PolicyPermission.APPROVE_OTHERS),
        ],
        approve=[ReviewerQuorumConstraint(min_reviewers=1)],
    )
    assert JitGroupContext(group, alice).join(now).requires_approval


def test_quorum_collects_approvals_until_met(alice: Subject, bob: Subject, carol: Subject, now: datetime) -> None:
    group = _mpa_group(approve=[ReviewerQuorumConstraint(min_reviewers=2)])
    proposal = JitGroupContext(group, alice).join(now).propose(now=now)

    assert JitGroupContext(group, bob).approve(proposal, now).execute(now) is None
    assert proposal.status is ProposalStatus.PENDING
    assert proposal.reviewers == {BOB}

    # A repeated approval by the same reviewer does not count twice.
    assert JitGroupContext(group, bob).approve(proposal, now).execute(now) is None

    grant = JitGroupContext(group, carol).approve(proposal, now).execute(now)
    assert grant is not None
    assert grant.user == ALICE
    assert proposal.reviewers == {BOB, CAROL}
    assert proposal.status is ProposalStatus.APPROVED


def test_join_without_any_approver_is_disallowed(alice: Subject, now: datetime) -> None:
    group = build_group(entries=[entry(ALICE, PolicyPermission.JOIN)])
    operation = JitGroupContext(group, alice).join(now)
    assert operation.requires_approval
    assert operation.dry_run(now).decision is JoinDecision.JOIN_DISALLOWED
    with pytest.raises(AccessDeniedError, match="no principals that could approve"):
        operation.propose(now=now)


def test_join_with_unreachable_quorum_is_disallowed(alice: Subject, now: datetime) -> None:
    group = build_group(
        entries=[entry(ALICE, PolicyPermission.JOIN), entry(BOB, PolicyPermission.APPROVE_OTHERS)],
        approve=[ReviewerQuorumConstraint(min_reviewers=2)],
    )
    operation = JitGroupContext(group, alice).join(now)
    assert operation.dry_run(now).decision is JoinDecision.JOIN_DISALLOWED
    with pytest.raises(AccessDeniedError, match="requires 2 approvals, but only 1 principals"):
        operation.propose(now=now)


@pytest.mark.parametrize(
    ("extra_entries", "allow_requester"),
    [
        ([entry(GroupId("admins@example.com"), PolicyPermission.APPROVE_OTHERS)], False),
        ([entry(ALICE, PolicyPermission.APPROVE_SELF)], True),
    ],
)
def test_join_with_reachable_quorum_can_be_proposed(
    alice: Subject, now: datetime, extra_entries: list, allow_requester: bool
) -> None:
    group = build_group(
        entries=[entry(ALICE, PolicyPermission.JOIN), entry(BOB, PolicyPermission.APPROVE_OTHERS), *extra_entries],
        approve=[ReviewerQuorumConstraint(min_reviewers=2, allow_requester=allow_requester)],
    )
    operation = JitGroupContext(group, alice).join(now)
    assert operation.dry_run(now).decision is JoinDecision.JOIN_ALLOWED_WITH_APPROVAL
    assert BOB in operation.propose(now=now).recipients
