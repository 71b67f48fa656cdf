from __future__ import annotations

from datetime import datetime, timezone

import pytest

from jitgroups.core.config import get_settings
from jitgroups.domain.principals import Subject
from jitgroups.tests.utils.policies import make_subject


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Settings are cached per process; tests that patch the environment need a fresh copy.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def alice() -> Subject:
    return make_subject("alice@example.com")


@pytest.fixture
def bob() -> Subject:
    return make_subject("bob@example.com")


@pytest.fixture
def carol() -> Subject:
    return make_subject("carol@example.com")
