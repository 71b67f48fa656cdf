from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import total_ordering
import re

from jitgroups.core.errors import ExpressionEvaluationError, NotATemporaryConditionError
from jitgroups.services.cel.conditions import IamCondition
from jitgroups.services.cel.runtime import format_timestamp, parse_timestamp


_CONDITION_TEMPLATE = '(request.time >= timestamp("{start}") && request.time < timestamp("{end}"))'
_CONDITION_PATTERN = re.compile(
    r'^\s*(\(+)request\.time >= timestamp\("([^"]*)"\) && request\.time < timestamp\("([^"]*)"\)(\)+)\s*$'
)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@total_ordering
@dataclass(frozen=True)
class TimeSpan:
    """Closed-open validity window ``[start, end)``, ordered by end."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _utc(self.start))
        object.__setattr__(self, "end", _utc(self.end))
        if self.start > self.end:
            raise ValueError("The start time must not be after the end time")

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TimeSpan):
            return NotImplemented
        return (self.end, self.start) < (other.end, other.start)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, instant: datetime) -> bool:
        return self.start <= _utc(instant) < self.end

    def __str__(self) -> str:
        return f"{format_timestamp(self.start)} - {format_timestamp(self.end)}"


def encode(start: datetime, end: datetime | timedelta) -> str:
    """Build the condition that holds from ``start`` until ``end`` (exclusive).

    ``end`` may also be a duration relative to ``start``.
    """
    if isinstance(end, timedelta):
        end = start + end
    span = TimeSpan(start, end)
    return _CONDITION_TEMPLATE.format(start=format_timestamp(span.start), end=format_timestamp(span.end))


def _match(text: str | None) -> re.Match[str] | None:
    # Redundant wrapping parentheses are fine as long as they balance.
    if text is None:
        return None
    match = _CONDITION_PATTERN.match(text)
    if match is None or len(match.group(1)) != len(match.group(4)):
        return None
    return match


def is_temporary_condition(text: str | None) -> bool:
    return _match(text) is not None


def decode(text: str | None) -> TimeSpan:
    match = _match(text)
    if match is None:
        raise NotATemporaryConditionError(text)
    try:
        return TimeSpan(parse_timestamp(match.group(2)), parse_timestamp(match.group(3)))
    except (ExpressionEvaluationError, ValueError) as exc:
        raise NotATemporaryConditionError(text) from exc


def evaluate(text: str | None, now: datetime) -> bool:
    # Only conditions that follow the template count, even if an equivalent one would hold.
    if not is_temporary_condition(text):
        return False
    return IamCondition(text).evaluate(now)
