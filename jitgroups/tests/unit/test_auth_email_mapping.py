from __future__ import annotations

import pytest

from jitgroups.core.errors import EmailMappingError
from jitgroups.domain.principals import EndUserId, GroupId
from jitgroups.services.auth.email_mapping import EmailMapping


@pytest.mark.parametrize("expression", [None, "", "  "])
def test_without_expression_the_principal_value_is_used(expression: str | None) -> None:
    mapping = EmailMapping(expression)
    assert mapping.email_for(EndUserId("alice@example.com")) == "alice@example.com"
    assert mapping.email_for(GroupId("team@example.com")) == "team@example.com"


def test_expression_transforms_user_ids() -> None:
    mapping = EmailMapping("user.email.extract('{handle}@example.com') + '@test.example.com'")
    assert mapping.email_for(EndUserId("alice@example.com")) == "alice@test.example.com"


def test_expression_sees_principal_type() -> None:
    mapping = EmailMapping(
        "principal.type == 'group' ? principal.id : principal.id.replace('@example.com', '@corp.example.com')"
    )
    assert mapping.email_for(EndUserId("alice@example.com")) == "alice@corp.example.com"
    assert mapping.email_for(GroupId("team@example.com")) == "team@example.com"


@pytest.mark.parametrize(
    ("expression", "message"),
    [
        ("1 + 1", "instead of a string"),
        ("user.nosuchfield", "failed to transform"),
        ("user.email +", "failed to transform"),
    ],
)
def test_invalid_results_raise(expression: str, message: str) -> None:
    with pytest.raises(EmailMappingError, match=message):
        EmailMapping(expression).email_for(EndUserId("alice@example.com"))


def test_mapping_reads_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JITGROUPS_EMAIL_MAPPING_EXPRESSION", "'admin@example.com'")
    assert EmailMapping.from_settings().email_for(EndUserId("alice@example.com")) == "admin@example.com"
