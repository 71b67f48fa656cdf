from __future__ import annotations

import pytest

from jitgroups.core.lazy import Lazy


def test_lazy_runs_initializer_once() -> None:
    calls = []

    def initialize() -> str:
        calls.append(1)
        return "value"

    lazy = Lazy(initialize)
    assert not lazy.is_done
    assert lazy.get() == "value"
    assert lazy.get() == "value"
    assert lazy.is_done
    assert calls == [1]


def test_lazy_remembers_initializer_errors() -> None:
    calls = []

    def initialize() -> str:
        calls.append(1)
        raise ValueError("broken")

    lazy = Lazy(initialize)
    with pytest.raises(ValueError, match="broken"):
        lazy.get()
    assert lazy.is_done
    with pytest.raises(ValueError, match="broken"):
        lazy.get()
    assert calls == [1]
