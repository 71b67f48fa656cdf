from __future__ import annotations

import re
from typing import Any

from jitgroups.core.errors import ExpressionError
from jitgroups.services.cel.runtime import compile_expression, to_string


_TEMPLATE_PATTERN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)


class StringTemplate:
    """Text with embedded ``{{ expression }}`` placeholders.

    Each context added through ``add_context`` becomes a map variable that the
    embedded expressions can refer to.
    """

    def __init__(self, template: str) -> None:
        self.template = template
        self._variables: dict[str, dict[str, Any]] = {}

    def __str__(self) -> str:
        return self.template

    def add_context(self, name: str) -> dict[str, Any]:
        context: dict[str, Any] = {}
        self._variables[name] = context
        return context

    def evaluate(self) -> str:
        output: list[str] = []
        last_index = 0
        for match in _TEMPLATE_PATTERN.finditer(self.template):
            output.append(self.template[last_index:match.start()])
            expression = match.group(1).strip()
            try:
                value = compile_expression(expression, self._variables.keys()).evaluate(self._variables)
                output.append(to_string(value) if value is not None else "null")
            except ExpressionError as exc:
                raise ExpressionError(f"The expression '{expression}' is invalid: {exc}") from exc
            last_index = match.end()
        output.append(self.template[last_index:])
        return "".join(output)
