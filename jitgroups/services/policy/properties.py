from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
import re
from typing import Callable, ClassVar, Generic, TypeVar

from jitgroups.core.errors import PropertyValueError


T = TypeVar("T")

_ISO_DURATION_PATTERN = re.compile(
    r"^([-+]?)P(?:([-+]?\d+)D)?(?:T(?:([-+]?\d+)H)?(?:([-+]?\d+)M)?(?:([-+]?\d+(?:\.\d{1,6})?)S)?)?$",
    re.IGNORECASE,
)


def parse_iso_duration(text: str) -> timedelta:
    """Parse an ISO-8601 duration such as ``PT1H30M`` or ``P1DT2H``.

    Plain integers are read as a number of minutes.
    """
    text = text.strip()
    if re.fullmatch(r"[-+]?\d+", text):
        return timedelta(minutes=int(text))
    match = _ISO_DURATION_PATTERN.match(text)
    if match is None or text.upper().endswith("T") or text.upper() in ("P", "-P", "+P"):
        raise ValueError(f"'{text}' is not a valid ISO-8601 duration")
    sign, days, hours, minutes, seconds = match.groups()
    value = timedelta(
        days=int(days or 0),
        hours=int(hours or 0),
        minutes=int(minutes or 0),
        seconds=float(seconds or 0),
    )
    return -value if sign == "-" else value


def format_iso_duration(value: timedelta) -> str:
    # Same shape as java.time.Duration#toString: hours, minutes and seconds only.
    if not value:
        return "PT0S"
    sign = "-" if value < timedelta(0) else ""
    total = abs(value)
    seconds = total.days * 86400 + total.seconds
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    parts = ["PT"]
    if hours:
        parts.append(f"{sign}{hours}H")
    if minutes:
        parts.append(f"{sign}{minutes}M")
    if seconds or total.microseconds:
        fraction = f".{total.microseconds:06d}".rstrip("0") if total.microseconds else ""
        parts.append(f"{sign}{seconds}{fraction}S")
    return "".join(parts)


def describe_duration(value: timedelta) -> str:
    """Human-readable duration such as ``1 hour, 30 minutes``."""
    minutes_total = int(value.total_seconds() // 60)
    days, remainder = divmod(minutes_total, 1440)
    hours, minutes = divmod(remainder, 60)
    parts = []
    for amount, unit in ((days, "day"), (hours, "hour"), (minutes, "minute")):
        if amount:
            parts.append(f"{amount} {unit}" if amount == 1 else f"{amount} {unit}s")
    if not parts:
        seconds = int(value.total_seconds())
        return f"{seconds} second" if seconds == 1 else f"{seconds} seconds"
    return ", ".join(parts)


class Property(ABC, Generic[T]):
    """Typed, named input that a user supplies as text.

    ``set`` parses and range-checks the text before storing it. A ``guard``
    callable, if given, runs before every change and may refuse it. With
    ``enforce_bounds=False`` the bounds are only advertised, not checked.
    """

    type: ClassVar[str]

    def __init__(
        self,
        name: str,
        display_name: str,
        *,
        is_required: bool = True,
        min_inclusive: T | None = None,
        max_inclusive: T | None = None,
        enforce_bounds: bool = True,
        guard: Callable[[], None] | None = None,
    ) -> None:
        self.name = name
        self.display_name = display_name
        self.is_required = is_required
        self._min = min_inclusive
        self._max = max_inclusive
        self._enforce_bounds = enforce_bounds
        self._guard = guard
        self._value: T | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, value={self.get()!r})"

    @property
    def min_inclusive(self) -> str | None:
        return self._format(self._min) if self._min is not None else None

    @property
    def max_inclusive(self) -> str | None:
        return self._format(self._max) if self._max is not None else None

    @property
    def value(self) -> T | None:
        return self._value

    @abstractmethod
    def _parse(self, text: str) -> T:
        ...

    @abstractmethod
    def _format(self, value: T) -> str:
        ...

    def _validate(self, value: T | None) -> None:
        if self.is_required and value is None:
            raise PropertyValueError(f"No value provided for '{self.display_name}'")
        if value is None or not self._enforce_bounds:
            return
        if self._min is not None and value < self._min:  # type: ignore[operator]
            raise PropertyValueError(f"The value for '{self.display_name}' is too small")
        if self._max is not None and value > self._max:  # type: ignore[operator]
            raise PropertyValueError(f"The value for '{self.display_name}' is too large")

    def set(self, text: str | None) -> None:
        if self._guard is not None:
            self._guard()
        try:
            value = self._parse(text) if text is not None else None
        except (TypeError, ValueError) as exc:
            raise PropertyValueError(f"The value for '{self.display_name}' is invalid") from exc
        self._validate(value)
        self._value = value

    def get(self) -> str | None:
        return self._format(self._value) if self._value is not None else None


class DurationProperty(Property[timedelta]):
    type = "duration"

    def _parse(self, text: str) -> timedelta:
        return parse_iso_duration(text)

    def _format(self, value: timedelta) -> str:
        return format_iso_duration(value)


class IntProperty(Property[int]):
    type = "int"

    def _parse(self, text: str) -> int:
        return int(text.strip())

    def _format(self, value: int) -> str:
        return str(value)


class BooleanProperty(Property[bool]):
    type = "bool"

    def _parse(self, text: str) -> bool:
        return text.strip().lower() in ("true", "on", "yes")

    def _format(self, value: bool) -> str:
        return "true" if value else "false"


class StringProperty(Property[str]):
    type = "string"

    def __init__(
        self,
        name: str,
        display_name: str,
        *,
        min_length: int = 0,
        max_length: int = 1024,
        is_required: bool = True,
        guard: Callable[[], None] | None = None,
    ) -> None:
        super().__init__(name, display_name, is_required=is_required, guard=guard)
        self.min_length = min_length
        self.max_length = max_length

    @property
    def min_inclusive(self) -> str | None:
        return str(self.min_length)

    @property
    def max_inclusive(self) -> str | None:
        return str(self.max_length)

    def _parse(self, text: str) -> str:
        return text.strip()

    def _format(self, value: str) -> str:
        return value

    def _validate(self, value: str | None) -> None:
        super()._validate(value)
        if value is not None and len(value) < self.min_length:
            raise PropertyValueError(f"The value for '{self.display_name}' is too short")
        if value is not None and len(value) > self.max_length:
            raise PropertyValueError(f"The value for '{self.display_name}' is too long")
