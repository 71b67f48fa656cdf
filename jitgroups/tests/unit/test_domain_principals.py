from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from jitgroups.domain import permissions
from jitgroups.domain.permissions import PolicyPermission
from jitgroups.domain.principals import (
    AUTHENTICATED_USERS,
    INTERNAL_USERS,
    EndUserId,
    GroupId,
    JitGroupId,
    Principal,
    Subject,
    parse_principal_id,
)


def test_end_user_ids_are_lower_case() -> None:
    assert EndUserId("Alice@Example.com") == EndUserId("alice@example.com")
    assert str(EndUserId("alice@example.com")) == "user:alice@example.com"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("user:alice@example.com", EndUserId("alice@example.com")),
        (" USER:Alice@Example.com ", EndUserId("alice@example.com")),
        ("group:team@example.com", GroupId("team@example.com")),
        ("class:authenticatedUsers", AUTHENTICATED_USERS),
        ("CLASS:INTERNALUSERS", INTERNAL_USERS),
        ("jit-group:env.system.group", JitGroupId("env", "system", "group")),
        ("env.system.group", JitGroupId("env", "system", "group")),
        ("serviceAccount:sa@project.iam.gserviceaccount.com", None),
        ("domain:example.com", None),
        ("user:", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_principal_id(text: str | None, expected: object) -> None:
    assert parse_principal_id(text) == expected


def test_jit_group_id_requires_lower_case_parts() -> None:
    with pytest.raises(ValueError):
        JitGroupId("Env", "system", "group")
    assert JitGroupId("env", "system", "group").value == "env.system.group"


def test_subject_always_includes_the_user() -> None:
    subject = Subject(EndUserId("alice@example.com"))
    assert Principal(EndUserId("alice@example.com")) in subject.principals


def test_subject_membership_respects_expiry() -> None:
    now = datetime(2024, 1, 1)
    group = JitGroupId("env", "system", "group")
    subject = Subject(EndUserId("alice@example.com"), frozenset({Principal(group, now + timedelta(minutes=1))}))
    assert subject.membership(group, now) is not None
    assert subject.membership(group, now + timedelta(minutes=1)) is None
    assert group not in subject.principal_ids(now + timedelta(minutes=1))


def test_permission_masks_include_view() -> None:
    for permission in PolicyPermission:
        assert permission.mask & PolicyPermission.VIEW.mask
    mask = permissions.to_mask([PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF])
    assert permissions.from_mask(mask) == {PolicyPermission.VIEW, PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF}


def test_parse_and_format_permissions() -> None:
    parsed = permissions.parse("join, approve_self")
    assert parsed == {PolicyPermission.JOIN, PolicyPermission.APPROVE_SELF}
    assert permissions.to_string(parsed) == "JOIN, APPROVE_SELF"
    assert permissions.to_string(PolicyPermission.EXPORT.mask) == "VIEW, EXPORT"


@pytest.mark.parametrize("text", ["", " , ", "JOIN, FLY"])
def test_parse_permissions_rejects_invalid_lists(text: str) -> None:
    with pytest.raises(ValueError):
        permissions.parse(text)
