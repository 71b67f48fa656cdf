from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from enum import Enum
import logging
import re
from typing import Any, Callable, Iterable, Sequence

from jitgroups.core.config import get_settings
from jitgroups.core.errors import CheckStateError, ConstraintEvaluationError, ExpressionError
from jitgroups.services.cel.runtime import compile_expression
from jitgroups.services.policy.properties import (
    BooleanProperty,
    DurationProperty,
    IntProperty,
    Property,
    StringProperty,
    describe_duration,
)


logger = logging.getLogger(__name__)

_CONSTRAINT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-]+$")
_VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_]+[A-Za-z0-9_]*$")

INPUT_VARIABLE = "input"


class ConstraintClass(Enum):
    JOIN = "join"
    APPROVE = "approve"


class CheckContext:
    """Named map of values that a check exposes to its constraint."""

    def __init__(self, check: Check) -> None:
        self._check = check
        self._values: dict[str, Any] = {}

    def set(self, name: str, value: Any) -> CheckContext:
        self._check._ensure_not_evaluated()
        self._values[name] = value
        return self

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)


class Check(ABC):
    """Single-use evaluation session for a constraint.

    Inputs and contexts can be changed until ``evaluate`` is called. The first
    evaluation result (or error) is final and later calls return it again.
    """

    def __init__(self, constraint: Constraint) -> None:
        self.constraint = constraint
        self._contexts: dict[str, CheckContext] = {}
        self._evaluated = False
        self._result: bool | None = None
        self._error: Exception | None = None

    def _ensure_not_evaluated(self) -> None:
        if self._evaluated:
            raise CheckStateError(f"The check for '{self.constraint.name}' has already been evaluated")

    @property
    def is_evaluated(self) -> bool:
        return self._evaluated

    def input(self) -> list[Property]:
        return []

    @property
    def missing_input(self) -> list[Property]:
        return [prop for prop in self.input() if prop.is_required and prop.value is None]

    def add_context(self, name: str) -> CheckContext:
        self._ensure_not_evaluated()
        context = CheckContext(self)
        self._contexts[name] = context
        return context

    def context(self, name: str) -> CheckContext | None:
        return self._contexts.get(name)

    def evaluate(self) -> bool:
        if not self._evaluated:
            self._evaluated = True
            try:
                self._result = self._evaluate()
            except Exception as exc:
                self._error = exc
                raise
        if self._error is not None:
            raise self._error
        return bool(self._result)

    @abstractmethod
    def _evaluate(self) -> bool:
        ...


class Constraint(ABC):
    name: str
    display_name: str

    @abstractmethod
    def create_check(self) -> Check:
        ...


class ExpiryConstraint(Constraint):
    """Bounds the lifetime of a membership.

    With equal bounds the duration is fixed and needs no input. Otherwise the
    user picks a duration within the bounds, compared in whole minutes.
    """

    NAME = "_expiry"

    def __init__(self, min_duration: timedelta, max_duration: timedelta | None = None) -> None:
        max_duration = min_duration if max_duration is None else max_duration
        if min_duration < timedelta(0):
            raise ValueError("Minimum duration must be positive")
        if max_duration < timedelta(0):
            raise ValueError("Maximum duration must be positive")
        if _minutes(min_duration) > _minutes(max_duration):
            raise ValueError("Minimum duration must not exceed maximum duration")
        self.name = self.NAME
        self.min_duration = min_duration
        self.max_duration = max_duration

    def __repr__(self) -> str:
        return f"ExpiryConstraint({self.min_duration!r}, {self.max_duration!r})"

    @property
    def is_fixed_duration(self) -> bool:
        return self.min_duration == self.max_duration

    @property
    def display_name(self) -> str:  # type: ignore[override]
        if self.is_fixed_duration:
            return f"Membership expires after {describe_duration(self.max_duration)}"
        return (
            f"You must choose an expiry between {describe_duration(self.min_duration)} "
            f"and {describe_duration(self.max_duration)}"
        )

    def create_check(self) -> Check:
        return _ExpiryCheck(self)

    def extract_expiry(self, inputs: Iterable[Property]) -> timedelta | None:
        if self.is_fixed_duration:
            return self.min_duration
        for prop in inputs:
            if isinstance(prop, DurationProperty) and prop.name == self.NAME and prop.value is not None:
                return prop.value
        return None


def _minutes(value: timedelta) -> int:
    return int(value.total_seconds() // 60)


class _ExpiryCheck(Check):
    constraint: ExpiryConstraint

    def __init__(self, constraint: ExpiryConstraint) -> None:
        super().__init__(constraint)
        self._input: list[Property] = []
        if not constraint.is_fixed_duration:
            # Out-of-range durations fail the check rather than the input.
            self._input.append(
                DurationProperty(
                    ExpiryConstraint.NAME,
                    "Expiry",
                    min_inclusive=constraint.min_duration,
                    max_inclusive=constraint.max_duration,
                    enforce_bounds=False,
                    guard=self._ensure_not_evaluated,
                )
            )

    def input(self) -> list[Property]:
        return list(self._input)

    def _evaluate(self) -> bool:
        if self.constraint.is_fixed_duration:
            return True
        chosen = self._input[0].value
        return (
            chosen is not None
            and _minutes(self.constraint.min_duration) <= _minutes(chosen) <= _minutes(self.constraint.max_duration)
        )


class Variable(ABC):
    """Input variable that a CEL constraint exposes as ``input.<name>``."""

    def __init__(self, name: str, display_name: str) -> None:
        if not _VARIABLE_NAME_PATTERN.match(name):
            raise ValueError("Variable names must be alphanumeric")
        if name.startswith("_"):
            raise ValueError("Variable names with leading underscores are reserved")
        self.name = name
        self.display_name = display_name

    @abstractmethod
    def bind(self, guard: Callable[[], None]) -> Property:
        ...


class StringVariable(Variable):
    def __init__(self, name: str, display_name: str, min_length: int, max_length: int) -> None:
        super().__init__(name, display_name)
        if min_length > max_length:
            raise ValueError("The minimum length must be smaller than the maximum length")
        self.min_length = min_length
        self.max_length = max_length

    def bind(self, guard: Callable[[], None]) -> Property:
        return StringProperty(
            self.name,
            self.display_name,
            min_length=self.min_length,
            max_length=self.max_length,
            guard=guard,
        )


class IntVariable(Variable):
    def __init__(
        self,
        name: str,
        display_name: str,
        min_inclusive: int | None = None,
        max_inclusive: int | None = None,
    ) -> None:
        super().__init__(name, display_name)
        if min_inclusive is not None and max_inclusive is not None and min_inclusive > max_inclusive:
            raise ValueError("The minimum value must be smaller than the maximum value")
        self.min_inclusive = min_inclusive
        self.max_inclusive = max_inclusive

    def bind(self, guard: Callable[[], None]) -> Property:
        return IntProperty(
            self.name,
            self.display_name,
            min_inclusive=self.min_inclusive,
            max_inclusive=self.max_inclusive,
            guard=guard,
        )


class BooleanVariable(Variable):
    def bind(self, guard: Callable[[], None]) -> Property:
        return BooleanProperty(self.name, self.display_name, guard=guard)


class CelConstraint(Constraint):
    """Constraint expressed as a boolean expression over user input and contexts."""

    def __init__(self, name: str, display_name: str, variables: Sequence[Variable], expression: str) -> None:
        if not _CONSTRAINT_NAME_PATTERN.match(name or ""):
            raise ValueError("Constraint names must only contain letters, numbers, and hyphens")
        if not expression or not expression.strip():
            raise ValueError("The expression must not be empty")
        self.name = name
        self.display_name = display_name
        self.variables = tuple(variables)
        self.expression = expression

    def __repr__(self) -> str:
        return f"{self.name} [{self.expression}]"

    def create_check(self) -> Check:
        return _CelCheck(self)

    def lint(self, contexts: Iterable[str] = ()) -> list[str]:
        # Compile without evaluating and report the issues found.
        try:
            compile_expression(self.expression, {INPUT_VARIABLE, *contexts})
        except ExpressionError as exc:
            return [str(exc)]
        return []


class _CelCheck(Check):
    constraint: CelConstraint

    def __init__(self, constraint: CelConstraint) -> None:
        super().__init__(constraint)
        self._input = [variable.bind(self._ensure_not_evaluated) for variable in constraint.variables]

    def input(self) -> list[Property]:
        return list(self._input)

    def add_context(self, name: str) -> CheckContext:
        if name == INPUT_VARIABLE:
            raise ValueError(f"The context name '{INPUT_VARIABLE}' is reserved")
        return super().add_context(name)

    def _evaluate(self) -> bool:
        if self.missing_input:
            return False

        bindings: dict[str, Any] = {name: context.as_dict() for name, context in self._contexts.items()}
        bindings[INPUT_VARIABLE] = {prop.name: prop.value for prop in self._input}
        expression = self.constraint.expression
        try:
            result = compile_expression(expression, bindings.keys()).evaluate(bindings)
        except ExpressionError as exc:
            logger.warning("constraint_expression_invalid constraint=%s", self.constraint.name, exc_info=exc)
            raise ConstraintEvaluationError(f"The expression '{expression}' is invalid: {exc}") from exc
        if not isinstance(result, bool):
            raise ConstraintEvaluationError(f"The expression '{expression}' did not evaluate to a boolean")
        return result


class ReviewerQuorumConstraint(Constraint):
    """Approval-time constraint that requires a number of distinct reviewers.

    Reads the ``approval`` context: ``requester`` and ``reviewers``.
    """

    NAME = "_reviewers"
    CONTEXT = "approval"

    def __init__(self, min_reviewers: int | None = None, allow_requester: bool | None = None) -> None:
        settings = get_settings()
        if min_reviewers is None:
            min_reviewers = settings.approval_min_reviewers
        if allow_requester is None:
            allow_requester = settings.approval_allow_requester
        if min_reviewers < 1:
            raise ValueError("At least one reviewer must be required")
        self.name = self.NAME
        self.min_reviewers = min_reviewers
        self.allow_requester = allow_requester

    def __repr__(self) -> str:
        return f"ReviewerQuorumConstraint({self.min_reviewers}, allow_requester={self.allow_requester})"

    @property
    def display_name(self) -> str:  # type: ignore[override]
        if self.min_reviewers == 1:
            return "The request must be approved by another user"
        return f"The request must be approved by {self.min_reviewers} other users"

    def create_check(self) -> Check:
        return _QuorumCheck(self)


class _QuorumCheck(Check):
    constraint: ReviewerQuorumConstraint

    def _evaluate(self) -> bool:
        context = self.context(ReviewerQuorumConstraint.CONTEXT)
        if context is None:
            return False
        requester = context.get("requester")
        reviewers = {str(reviewer) for reviewer in context.get("reviewers") or ()}
        if not self.constraint.allow_requester and requester is not None:
            reviewers.discard(str(requester))
        return len(reviewers) >= self.constraint.min_reviewers
