from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar


T = TypeVar("T")

_UNSET = object()


class Lazy(Generic[T]):
    """Once-cell that runs its initializer at most once.

    Concurrent callers of ``get()`` block until the first call has finished and
    then observe the same value. If the initializer raised, every later call
    re-raises that same exception without running the initializer again.
    """

    def __init__(self, initialize: Callable[[], T]) -> None:
        self._initialize = initialize
        self._lock = threading.Lock()
        self._value: object = _UNSET
        self._error: BaseException | None = None

    @property
    def is_done(self) -> bool:
        return self._value is not _UNSET or self._error is not None

    def get(self) -> T:
        # Fast path avoids the lock once the value is published.
        value = self._value
        if value is not _UNSET:
            return value  # type: ignore[return-value]
        with self._lock:
            if self._error is not None:
                raise self._error
            if self._value is _UNSET:
                try:
                    self._value = self._initialize()
                except Exception as exc:
                    self._error = exc
                    raise
            return self._value  # type: ignore[return-value]
