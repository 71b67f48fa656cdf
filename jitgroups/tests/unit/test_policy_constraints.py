from __future__ import annotations

from datetime import timedelta

import pytest

from jitgroups.core.errors import CheckStateError, ConstraintEvaluationError
from jitgroups.services.policy.constraints import (
    BooleanVariable,
    CelConstraint,
    ExpiryConstraint,
    IntVariable,
    ReviewerQuorumConstraint,
    StringVariable,
)


def test_fixed_expiry_needs_no_input_and_is_satisfied() -> None:
    constraint = ExpiryConstraint(timedelta(hours=1), timedelta(hours=1))
    check = constraint.create_check()
    assert constraint.is_fixed_duration
    assert check.input() == []
    assert check.evaluate() is True
    assert constraint.extract_expiry([]) == timedelta(hours=1)
    assert constraint.display_name == "Membership expires after 1 hour"


def test_ranged_expiry_is_unsatisfied_without_input() -> None:
    constraint = ExpiryConstraint(timedelta(minutes=5), timedelta(hours=1))
    check = constraint.create_check()
    assert [prop.name for prop in check.input()] == ["_expiry"]
    assert check.missing_input == check.input()
    assert check.evaluate() is False


@pytest.mark.parametrize(
    ("value", "expected"),
    [("PT5M", True), ("PT30M", True), ("PT1H", True), ("PT4M", False), ("PT61M", False)],
)
def test_ranged_expiry_checks_bounds_in_minutes(value: str, expected: bool) -> None:
    constraint = ExpiryConstraint(timedelta(minutes=5), timedelta(hours=1))
    check = constraint.create_check()
    check.input()[0].set(value)
    assert check.evaluate() is expected


def test_ranged_expiry_extracts_chosen_duration() -> None:
    constraint = ExpiryConstraint(timedelta(minutes=5), timedelta(hours=1))
    check = constraint.create_check()
    check.input()[0].set("PT20M")
    assert constraint.extract_expiry(check.input()) == timedelta(minutes=20)
    assert constraint.display_name == "You must choose an expiry between 5 minutes and 1 hour"


@pytest.mark.parametrize(
    ("minimum", "maximum", "message"),
    [
        (timedelta(minutes=-1), timedelta(minutes=1), "Minimum duration must be positive"),
        (timedelta(minutes=1), timedelta(minutes=-1), "Maximum duration must be positive"),
        (timedelta(hours=2), timedelta(hours=1), "Minimum duration must not exceed maximum duration"),
    ],
)
def test_expiry_rejects_invalid_bounds(minimum: timedelta, maximum: timedelta, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        ExpiryConstraint(minimum, maximum)


def test_check_cannot_change_after_evaluation() -> None:
    check = ExpiryConstraint(timedelta(minutes=5), timedelta(hours=1)).create_check()
    prop = check.input()[0]
    prop.set("PT10M")
    assert check.evaluate() is True
    with pytest.raises(CheckStateError):
        prop.set("PT20M")
    with pytest.raises(CheckStateError):
        check.add_context("subject")
    assert check.evaluate() is True


def _justification() -> CelConstraint:
    return CelConstraint(
        "justification",
        "Provide a ticket number",
        [StringVariable("justification", "Ticket", 1, 20)],
        "input.justification.matches('^TICKET-[0-9]+$')",
    )


def test_cel_constraint_evaluates_input() -> None:
    check = _justification().create_check()
    check.input()[0].set("TICKET-123")
    assert check.evaluate() is True

    check = _justification().create_check()
    check.input()[0].set("no ticket")
    assert check.evaluate() is False


def test_cel_constraint_is_unsatisfied_with_missing_input() -> None:
    check = _justification().create_check()
    assert [prop.name for prop in check.missing_input] == ["justification"]
    assert check.evaluate() is False


def test_cel_constraint_reads_contexts() -> None:
    constraint = CelConstraint(
        "same-domain",
        "Only example.com users",
        [IntVariable("count", "Count", 1, 10), BooleanVariable("urgent", "Urgent")],
        "subject.email.endsWith('@example.com') && input.count < 5 && !input.urgent",
    )
    check = constraint.create_check()
    check.add_context("subject").set("email", "alice@example.com")
    count, urgent = check.input()
    count.set("3")
    urgent.set("false")
    assert check.evaluate() is True


def test_cel_constraint_reserves_input_context() -> None:
    check = _justification().create_check()
    with pytest.raises(ValueError):
        check.add_context("input")


def test_cel_constraint_with_invalid_expression_fails_evaluation() -> None:
    constraint = CelConstraint("broken", "Broken", [StringVariable("x", "X", 0, 10)], "input.x.nosuchmethod()")
    check = constraint.create_check()
    check.input()[0].set("value")
    with pytest.raises(ConstraintEvaluationError, match="The expression 'input.x.nosuchmethod\\(\\)' is invalid"):
        check.evaluate()
    # The first error is final.
    with pytest.raises(ConstraintEvaluationError):
        check.evaluate()


def test_cel_constraint_requires_boolean_result() -> None:
    constraint = CelConstraint("number", "Number", [], "1 + 1")
    with pytest.raises(ConstraintEvaluationError):
        constraint.create_check().evaluate()


def test_cel_constraint_lint_reports_unknown_contexts() -> None:
    constraint = CelConstraint("ctx", "Ctx", [], "group.name == 'x'")
    assert constraint.lint(["group"]) == []
    assert len(constraint.lint()) == 1


@pytest.mark.parametrize("name", ["", "has space", "under_score"])
def test_cel_constraint_rejects_invalid_names(name: str) -> None:
    with pytest.raises(ValueError):
        CelConstraint(name, "Name", [], "true")


@pytest.mark.parametrize("name", ["1abc", "a-b", "_reserved"])
def test_variables_reject_invalid_names(name: str) -> None:
    with pytest.raises(ValueError):
        StringVariable(name, "Name", 0, 10)


def test_string_variable_rejects_inverted_lengths() -> None:
    with pytest.raises(ValueError):
        StringVariable("x", "X", 10, 1)


def test_reviewer_quorum_counts_distinct_reviewers() -> None:
    constraint = ReviewerQuorumConstraint(min_reviewers=2)
    check = constraint.create_check()
    check.add_context("approval").set("requester", "user:alice@example.com").set(
        "reviewers", ["user:bob@example.com", "user:bob@example.com"]
    )
    assert check.evaluate() is False

    check = constraint.create_check()
    check.add_context("approval").set("requester", "user:alice@example.com").set(
        "reviewers", ["user:bob@example.com", "user:carol@example.com"]
    )
    assert check.evaluate() is True


def test_reviewer_quorum_ignores_requester_unless_allowed() -> None:
    reviewers = ["user:alice@example.com"]
    check = ReviewerQuorumConstraint(min_reviewers=1).create_check()
    check.add_context("approval").set("requester", "user:alice@example.com").set("reviewers", reviewers)
    assert check.evaluate() is False

    check = ReviewerQuorumConstraint(min_reviewers=1, allow_requester=True).create_check()
    check.add_context("approval").set("requester", "user:alice@example.com").set("reviewers", reviewers)
    assert check.evaluate() is True


def test_reviewer_quorum_without_context_is_unsatisfied() -> None:
    assert ReviewerQuorumConstraint().create_check().evaluate() is False


def test_reviewer_quorum_defaults_come_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JITGROUPS_APPROVAL_MIN_REVIEWERS", "3")
    monkeypatch.setenv("JITGROUPS_APPROVAL_ALLOW_REQUESTER", "true")
    constraint = ReviewerQuorumConstraint()
    assert constraint.min_reviewers == 3
    assert constraint.allow_requester is True
    assert constraint.display_name == "The request must be approved by 3 other users"


def test_reviewer_quorum_requires_a_reviewer() -> None:
    with pytest.raises(ValueError):
        ReviewerQuorumConstraint(min_reviewers=0)
