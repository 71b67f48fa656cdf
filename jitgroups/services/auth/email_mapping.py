from __future__ import annotations

import logging

from jitgroups.core.config import get_settings
from jitgroups.core.errors import EmailMappingError, ExpressionError
from jitgroups.domain.principals import EndUserId, GroupId
from jitgroups.services.cel.runtime import compile_expression


logger = logging.getLogger(__name__)

_MAPPING_ERROR = "The email mapping expression failed to transform the principal ID '{id}' into a valid email address"


class EmailMapping:
    """Derive email addresses from principal IDs.

    Without an expression the principal's own value is used. Otherwise the
    expression sees ``user.email`` and ``principal.type`` / ``principal.id``
    and must produce a string.
    """

    def __init__(self, expression: str | None = None) -> None:
        self.expression = expression

    @classmethod
    def from_settings(cls) -> EmailMapping:
        return cls(get_settings().email_mapping_expression)

    def email_for(self, principal: EndUserId | GroupId) -> str:
        if self.expression is None or not self.expression.strip():
            return principal.value

        bindings = {
            # user.email is kept for expressions written against older releases.
            "user": {"email": principal.value},
            "principal": {"type": principal.type, "id": principal.value},
        }
        try:
            result = compile_expression(self.expression, bindings.keys()).evaluate(bindings)
        except ExpressionError as exc:
            logger.warning("email_mapping_failed principal=%s", principal, exc_info=exc)
            raise EmailMappingError(_MAPPING_ERROR.format(id=principal)) from exc

        if result is None:
            raise EmailMappingError(f"{_MAPPING_ERROR.format(id=principal)}: Result is null")
        if not isinstance(result, str):
            raise EmailMappingError(
                f"{_MAPPING_ERROR.format(id=principal)}: Result is of type '{type(result).__name__}' instead of a string"
            )
        return result
