from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from jitgroups.core.errors import ExpressionEvaluationError
from jitgroups.services.cel.parser import parse, unparse
from jitgroups.services.cel.runtime import compile_expression


def split_and(condition: str) -> list[str]:
    """Split a condition into its top-level ``&&`` clauses.

    ``&&`` only splits when it appears outside parentheses and outside string
    literals. ``//`` comments are dropped up to the end of their line. Clauses
    keep their surrounding whitespace; an input without a top-level ``&&``
    comes back as a single clause.
    """
    clauses: list[str] = []
    current: list[str] = []
    depth = 0
    quote: str | None = None
    i = 0
    length = len(condition)
    while i < length:
        char = condition[i]
        if quote is not None:
            current.append(char)
            if char == "\\" and i + 1 < length:
                current.append(condition[i + 1])
                i += 2
                continue
            if char == quote:
                quote = None
            i += 1
            continue

        if char == "/" and condition.startswith("//", i):
            newline = condition.find("\n", i)
            if newline < 0:
                break
            i = newline
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "&" and depth == 0 and condition.startswith("&&", i):
            clauses.append("".join(current))
            current = []
            i += 2
            continue
        current.append(char)
        i += 1

    if current:
        clauses.append("".join(current))
    return clauses


@dataclass(frozen=True)
class IamCondition:
    """Boolean IAM-style condition expression.

    The only variable available by default is ``request``, whose ``time``
    field is bound to the evaluation instant.
    """

    condition: str

    def __str__(self) -> str:
        return self.condition

    @classmethod
    def and_(cls, clauses: Iterable[IamCondition | str]) -> IamCondition:
        # Parenthesize each clause so that embedded || keeps its meaning.
        parts = [f"({str(clause).strip()})" for clause in clauses]
        if not parts:
            raise ValueError("At least one clause is required")
        return cls(" && ".join(parts))

    def split_and(self) -> list[IamCondition]:
        return [IamCondition(clause) for clause in split_and(self.condition)]

    def reformat(self) -> IamCondition:
        """Return the condition in canonical formatting.

        Raises ExpressionCompileError if the condition is malformed.
        """
        return IamCondition(unparse(parse(self.condition)))

    def evaluate(self, now: datetime | None = None, variables: Mapping[str, Any] | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        bindings: dict[str, Any] = dict(variables or {})
        request = {"time": now}
        request.update(bindings.get("request") or {})
        bindings["request"] = request

        compiled = compile_expression(self.condition, bindings.keys())
        result = compiled.evaluate(bindings)
        if not isinstance(result, bool):
            raise ExpressionEvaluationError(
                f"Condition '{self.condition}' evaluated to a non-boolean value"
            )
        return result
