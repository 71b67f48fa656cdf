from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

import pytest

from jitgroups.core.errors import (
    AccessDeniedError,
    ConstraintEvaluationError,
    ConstraintFailedError,
    ConstraintUnsatisfiedError,
)
from jitgroups.domain.permissions import PolicyPermission
from jitgroups.domain.principals import Principal, Subject
from jitgroups.services.policy.analysis import AccessOptions, JoinDecision, PolicyAnalysis
from jitgroups.services.policy.constraints import (
    CelConstraint,
    Constraint,
    ConstraintClass,
    ExpiryConstraint,
    StringVariable,
)
from jitgroups.services.policy.model import JitGroupPolicy
from jitgroups.tests.utils.policies import build_group, entry, make_subject, user


RANGED_EXPIRY = ExpiryConstraint(timedelta(minutes=5), timedelta(hours=1))


def _joinable(*constraints: Constraint, approve: Sequence[Constraint] = ()) -> JitGroupPolicy:
    return build_group(
        entries=[entry(user("alice@example.com"), PolicyPermission.JOIN)],
        join=constraints,
        approve=approve,
    )


def _analyze(group: JitGroupPolicy, subject: Subject, now: datetime) -> PolicyAnalysis:
    return group.analyze(subject, PolicyPermission.JOIN, now).apply_constraints(ConstraintClass.JOIN)


def test_acl_denial_skips_to_join_disallowed(bob: Subject, now: datetime) -> None:
    result = _analyze(_joinable(), bob, now).execute()
    assert not result.access_allowed
    assert result.join_decision(requires_approval=False) is JoinDecision.JOIN_DISALLOWED
    with pytest.raises(AccessDeniedError) as exc_info:
        result.verify_access_allowed()
    assert type(exc_info.value) is AccessDeniedError


def test_missing_input_requires_input(alice: Subject, now: datetime) -> None:
    analysis = _analyze(_joinable(RANGED_EXPIRY), alice, now)
    result = analysis.execute()
    assert result.unsatisfied == (RANGED_EXPIRY,)
    assert [prop.name for prop in result.missing_input] == ["_expiry"]
    assert result.join_decision(requires_approval=False) is JoinDecision.INPUT_REQUIRED
    with pytest.raises(ConstraintUnsatisfiedError) as exc_info:
        result.verify_access_allowed()
    assert exc_info.value.constraint_name == "_expiry"


def test_supplied_but_invalid_input_leaves_constraint_unsatisfied(alice: Subject, now: datetime) -> None:
    analysis = _analyze(_joinable(RANGED_EXPIRY), alice, now)
    analysis.input()[0].set("PT2H")
    result = analysis.execute()
    assert result.missing_input == ()
    assert result.join_decision(requires_approval=False) is JoinDecision.CONSTRAINTS_UNSATISFIED
    assert result.is_access_allowed(AccessOptions.IGNORE_CONSTRAINTS)
    assert not result.is_access_allowed()


def test_broken_constraint_is_reported_as_failed(alice: Subject, now: datetime) -> None:
    broken = CelConstraint("broken", "Broken", [], "subject.nosuchfield == 'x'")
    result = _analyze(_joinable(broken), alice, now).execute()
    assert result.unsatisfied == (broken,)
    assert isinstance(result.failed["broken"], ConstraintEvaluationError)
    assert result.join_decision(requires_approval=False) is JoinDecision.CONSTRAINTS_FAILED
    with pytest.raises(ConstraintFailedError) as exc_info:
        result.verify_access_allowed()
    assert len(exc_info.value.errors) == 1


def test_satisfied_constraints_allow_joining(alice: Subject, now: datetime) -> None:
    analysis = _analyze(_joinable(RANGED_EXPIRY), alice, now)
    analysis.input()[0].set("PT30M")
    result = analysis.execute()
    assert result.satisfied == (RANGED_EXPIRY,)
    assert result.is_access_allowed()
    result.verify_access_allowed()
    assert result.join_decision(requires_approval=False) is JoinDecision.JOIN_ALLOWED_WITHOUT_APPROVAL
    assert result.join_decision(requires_approval=True) is JoinDecision.JOIN_ALLOWED_WITH_APPROVAL


def test_active_membership_takes_precedence(now: datetime) -> None:
    group = _joinable(RANGED_EXPIRY)
    subject = make_subject("alice@example.com", Principal(group.id, now + timedelta(minutes=10)))
    result = _analyze(group, subject, now).execute()
    assert result.active_membership == Principal(group.id, now + timedelta(minutes=10))
    assert result.join_decision(requires_approval=False) is JoinDecision.ACTIVE


def test_expired_membership_is_not_active(now: datetime) -> None:
    group = _joinable()
    subject = make_subject("alice@example.com", Principal(group.id, now - timedelta(minutes=1)))
    result = _analyze(group, subject, now).execute()
    assert result.active_membership is None


def test_constraints_see_subject_and_group_contexts(alice: Subject, now: datetime) -> None:
    constraint = CelConstraint(
        "context",
        "Context",
        [StringVariable("reason", "Reason", 1, 50)],
        "subject.email == 'alice@example.com' && group.name == 'group-1' && "
        "group.system == 'system-1' && 'alice@example.com' in subject.principals && "
        "input.reason == 'because'",
    )
    analysis = _analyze(_joinable(constraint), alice, now)
    analysis.input()[0].set("because")
    assert analysis.execute().satisfied == (constraint,)


def test_extra_contexts_are_passed_to_checks(alice: Subject, now: datetime) -> None:
    constraint = CelConstraint("ticket", "Ticket", [], "ticket.id == 42")
    analysis = _analyze(_joinable(constraint), alice, now).add_context("ticket", {"id": 42})
    assert analysis.execute().satisfied == (constraint,)


def test_analysis_requires_a_permission(alice: Subject, now: datetime) -> None:
    with pytest.raises(ValueError):
        _joinable().analyze(alice, [], now)


def test_analysis_checks_are_single_use(alice: Subject, now: datetime) -> None:
    analysis = _analyze(_joinable(RANGED_EXPIRY), alice, now)
    analysis.execute()
    assert all(check.is_evaluated for check in analysis.checks)


def test_approve_constraints_are_separate(alice: Subject, now: datetime) -> None:
    approve = CelConstraint("approve", "Approve", [], "true")
    group = _joinable(approve=[approve])
    analysis = group.analyze(alice, PolicyPermission.JOIN, now).apply_constraints(ConstraintClass.APPROVE)
    assert [check.constraint for check in analysis.checks] == [approve]
