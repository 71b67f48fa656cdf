from __future__ import annotations


class JitGroupsError(Exception):
    """Base error for jitgroups."""


class ExpressionError(JitGroupsError):
    """Expression could not be compiled or evaluated."""


class ExpressionCompileError(ExpressionError):
    """Expression is syntactically invalid or references unknown symbols."""


class ExpressionEvaluationError(ExpressionError):
    """Expression compiled but failed at runtime."""


class NotATemporaryConditionError(ValueError):
    """Condition does not follow the temporary access template."""

    def __init__(self, condition: str | None = None) -> None:
        super().__init__("Condition is not a temporary condition")
        self.condition = condition


class PropertyValueError(ValueError):
    """User-supplied value for a property is missing, malformed, or out of range."""


class CheckStateError(JitGroupsError):
    """Check was mutated after it had been evaluated."""


class ConstraintEvaluationError(JitGroupsError):
    """Constraint is broken, as opposed to merely unsatisfied."""


class AccessError(JitGroupsError):
    """Base error for access decisions."""


class AccessDeniedError(AccessError):
    """Subject lacks the permission required for an operation."""


class ConstraintUnsatisfiedError(AccessDeniedError):
    """Subject is permitted but has not satisfied a constraint yet."""

    def __init__(self, constraint_name: str, message: str) -> None:
        super().__init__(message)
        self.constraint_name = constraint_name


class ConstraintFailedError(AccessError):
    """One or more constraints failed to execute."""

    def __init__(self, errors: list[Exception]) -> None:
        super().__init__("One or more constraints failed to execute")
        self.errors = errors


class UnsupportedOperationError(JitGroupsError):
    """Operation is structurally not allowed on this object."""


class StateError(JitGroupsError):
    """Operation is not valid in the current state."""


class EmailMappingError(JitGroupsError):
    """Email mapping expression failed to produce an address."""
