from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import re
from typing import Any, Callable, Iterable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jitgroups.core.errors import ExpressionCompileError, ExpressionEvaluationError
from jitgroups.services.cel.parser import (
    Binary,
    Call,
    Conditional,
    Ident,
    Index,
    ListExpr,
    Literal,
    MapExpr,
    Node,
    Select,
    Unary,
    parse,
)


_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1

_TIMESTAMP_PATTERN = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?([Zz]|[+-]\d{2}:\d{2})$"
)
_DURATION_PART_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(h|ms|us|ns|m|s)")
_DURATION_UNITS = {
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
    "s": timedelta(seconds=1),
    "ms": timedelta(milliseconds=1),
    "us": timedelta(microseconds=1),
    "ns": timedelta(microseconds=0.001),
}

# Macros bind a loop variable and are expanded at evaluation time.
_MEMBER_MACROS = {"all": (2,), "exists": (2,), "exists_one": (2,), "map": (2, 3), "filter": (2,)}

# Allowed argument counts per function.
_GLOBAL_FUNCTIONS: dict[str, tuple[int, ...]] = {
    "has": (1,),
    "timestamp": (1,),
    "duration": (1,),
    "size": (1,),
    "int": (1,),
    "uint": (1,),
    "double": (1,),
    "string": (1,),
    "bool": (1,),
    "dyn": (1,),
    "matches": (2,),
}
_MEMBER_FUNCTIONS: dict[str, tuple[int, ...]] = {
    "contains": (1,),
    "startsWith": (1,),
    "endsWith": (1,),
    "matches": (1,),
    "lowerAscii": (0,),
    "upperAscii": (0,),
    "trim": (0,),
    "replace": (2, 3),
    "split": (1, 2),
    "substring": (1, 2),
    "indexOf": (1, 2),
    "extract": (1,),
    "join": (0, 1),
    "size": (0,),
    "getFullYear": (0, 1),
    "getMonth": (0, 1),
    "getDayOfMonth": (0, 1),
    "getDate": (0, 1),
    "getDayOfWeek": (0, 1),
    "getDayOfYear": (0, 1),
    "getHours": (0, 1),
    "getMinutes": (0, 1),
    "getSeconds": (0, 1),
    "getMilliseconds": (0, 1),
}


def _error(message: str) -> ExpressionEvaluationError:
    return ExpressionEvaluationError(message)


def _kind(value: Any) -> str:
    # CEL type name of a runtime value.
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "timestamp"
    if isinstance(value, timedelta):
        return "duration"
    if isinstance(value, (list, tuple)):
        return "list"
    if isinstance(value, Mapping):
        return "map"
    return type(value).__name__


def _checked_int(value: int) -> int:
    if value < _INT_MIN or value > _INT_MAX:
        raise _error("integer overflow")
    return value


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    match = _TIMESTAMP_PATTERN.match(text.strip()) if isinstance(text, str) else None
    if match is None:
        raise _error(f"invalid timestamp '{text}'")
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    microsecond = int((fraction or "0").ljust(9, "0")[:6])
    if offset in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = 1 if offset[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6])))
    try:
        value = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second), microsecond, tz)
    except ValueError as exc:
        raise _error(f"invalid timestamp '{text}'") from exc
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format an instant as RFC 3339 UTC, with fractional seconds only when non-zero."""
    value = _as_utc(value)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    return text + "Z"


def parse_duration(text: str) -> timedelta:
    # Durations use the Go format: an optional sign followed by number/unit pairs.
    if not isinstance(text, str) or not text.strip():
        raise _error(f"invalid duration '{text}'")
    body = text.strip()
    sign = 1
    if body[0] in "+-":
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    total = timedelta()
    pos = 0
    for match in _DURATION_PART_PATTERN.finditer(body):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(body):
        raise _error(f"invalid duration '{text}'")
    return sign * total


def format_duration(value: timedelta) -> str:
    seconds = value.total_seconds()
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{seconds:.9f}".rstrip("0") + "s"


def extract(value: str, template: str) -> str:
    """Return the part of ``value`` that the ``{...}`` placeholder in ``template`` covers.

    A template without braces returns the value unchanged. If the prefix or
    suffix around the placeholder does not match, the result is empty.
    """
    open_brace = template.find("{")
    close_brace = template.find("}", open_brace + 1) if open_brace >= 0 else -1
    if open_brace < 0 or close_brace < 0:
        return value
    prefix = template[:open_brace]
    suffix = template[close_brace + 1:]

    start = value.find(prefix) if prefix else 0
    if start < 0:
        return ""
    start += len(prefix)
    if not suffix:
        return value[start:]
    end = value.find(suffix, start)
    if end < 0:
        return ""
    return value[start:end]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize(value: Any) -> Any:
    # Bring host values into the shapes the evaluator expects.
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (set, frozenset)):
        return [_normalize(item) for item in sorted(value, key=str)]
    if isinstance(value, tuple):
        return [_normalize(item) for item in value]
    return value


@dataclass(frozen=True)
class CompiledExpression:
    """A parsed and checked expression ready for repeated evaluation."""

    source: str
    ast: Node
    variables: frozenset[str] = field(default_factory=frozenset)

    def evaluate(self, bindings: Mapping[str, Any] | None = None) -> Any:
        bindings = dict(bindings or {})
        for name in self.variables:
            if name not in bindings:
                raise _error(f"no value bound for variable '{name}'")
        return _Evaluator().eval(self.ast, {name: _normalize(value) for name, value in bindings.items()})


def compile_expression(text: str, variables: Iterable[str] = ()) -> CompiledExpression:
    """Parse ``text`` and check it against the declared top-level variables.

    Raises ExpressionCompileError on syntax errors, references to undeclared
    variables and calls to unknown functions.
    """
    declared = frozenset(variables)
    ast = parse(text)
    _check(ast, declared)
    return CompiledExpression(source=text, ast=ast, variables=declared)


def _check(node: Node, scope: frozenset[str]) -> None:
    if isinstance(node, Literal):
        return
    if isinstance(node, Ident):
        if node.name not in scope:
            raise ExpressionCompileError(f"undeclared reference to '{node.name}'")
        return
    if isinstance(node, Select):
        _check(node.operand, scope)
        return
    if isinstance(node, Index):
        _check(node.operand, scope)
        _check(node.index, scope)
        return
    if isinstance(node, ListExpr):
        for item in node.items:
            _check(item, scope)
        return
    if isinstance(node, MapExpr):
        for key, value in node.entries:
            _check(key, scope)
            _check(value, scope)
        return
    if isinstance(node, Unary):
        _check(node.operand, scope)
        return
    if isinstance(node, Binary):
        _check(node.left, scope)
        _check(node.right, scope)
        return
    if isinstance(node, Conditional):
        _check(node.condition, scope)
        _check(node.then, scope)
        _check(node.otherwise, scope)
        return
    if isinstance(node, Call):
        _check_call(node, scope)
        return
    raise ExpressionCompileError(f"unsupported expression node {type(node).__name__}")


def _check_call(node: Call, scope: frozenset[str]) -> None:
    if node.target is None:
        arities = _GLOBAL_FUNCTIONS.get(node.function)
        if arities is None:
            raise ExpressionCompileError(f"undeclared reference to function '{node.function}'")
        if len(node.args) not in arities:
            raise ExpressionCompileError(f"wrong number of arguments for '{node.function}'")
        if node.function == "has" and not isinstance(node.args[0], Select):
            raise ExpressionCompileError("invalid argument to has() macro")
        for arg in node.args:
            _check(arg, scope)
        return

    _check(node.target, scope)
    if node.function in _MEMBER_MACROS:
        if len(node.args) not in _MEMBER_MACROS[node.function]:
            raise ExpressionCompileError(f"wrong number of arguments for '{node.function}'")
        variable = node.args[0]
        if not isinstance(variable, Ident):
            raise ExpressionCompileError(f"argument to '{node.function}' must be a simple name")
        inner = scope | {variable.name}
        for arg in node.args[1:]:
            _check(arg, inner)
        return
    arities = _MEMBER_FUNCTIONS.get(node.function)
    if arities is None:
        raise ExpressionCompileError(f"undeclared reference to function '{node.function}'")
    if len(node.args) not in arities:
        raise ExpressionCompileError(f"wrong number of arguments for '{node.function}'")
    for arg in node.args:
        _check(arg, scope)


class _Evaluator:
    """Tree-walking evaluator for checked expressions."""

    def eval(self, node: Node, env: Mapping[str, Any]) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Ident):
            if node.name not in env:
                raise _error(f"no value bound for variable '{node.name}'")
            return env[node.name]
        if isinstance(node, Select):
            return self._select(self.eval(node.operand, env), node.field)
        if isinstance(node, Index):
            return self._index(self.eval(node.operand, env), self.eval(node.index, env))
        if isinstance(node, ListExpr):
            return [self.eval(item, env) for item in node.items]
        if isinstance(node, MapExpr):
            result: dict[Any, Any] = {}
            for key_node, value_node in node.entries:
                key = self.eval(key_node, env)
                if key in result:
                    raise _error(f"duplicate map key '{key}'")
                result[key] = self.eval(value_node, env)
            return result
        if isinstance(node, Unary):
            return self._unary(node.op, self.eval(node.operand, env))
        if isinstance(node, Binary):
            if node.op in ("&&", "||"):
                return self._logical(node, env)
            return _binary(node.op, self.eval(node.left, env), self.eval(node.right, env))
        if isinstance(node, Conditional):
            condition = self.eval(node.condition, env)
            if not isinstance(condition, bool):
                raise _error("ternary condition must be a bool")
            return self.eval(node.then if condition else node.otherwise, env)
        if isinstance(node, Call):
            return self._call(node, env)
        raise _error(f"unsupported expression node {type(node).__name__}")

    def _select(self, operand: Any, name: str) -> Any:
        if isinstance(operand, Mapping):
            if name not in operand:
                raise _error(f"no such key: {name}")
            return _normalize(operand[name])
        raise _error(f"type '{_kind(operand)}' does not support field selection")

    def _index(self, operand: Any, index: Any) -> Any:
        if isinstance(operand, list):
            if _kind(index) not in ("int", "double") or int(index) != index:
                raise _error("list index must be an integer")
            if index < 0 or index >= len(operand):
                raise _error(f"index out of range: {index}")
            return operand[int(index)]
        if isinstance(operand, Mapping):
            if index not in operand:
                raise _error(f"no such key: {index}")
            return _normalize(operand[index])
        raise _error(f"type '{_kind(operand)}' does not support indexing")

    def _unary(self, op: str, value: Any) -> Any:
        if op == "!":
            if not isinstance(value, bool):
                raise _error(f"no such overload: !{_kind(value)}")
            return not value
        kind = _kind(value)
        if kind == "int":
            return _checked_int(-value)
        if kind in ("double", "duration"):
            return -value
        raise _error(f"no such overload: -{kind}")

    def _logical(self, node: Binary, env: Mapping[str, Any]) -> bool:
        # A decisive operand wins over an error in the other operand.
        decisive = node.op == "||"
        error: ExpressionEvaluationError | None = None
        for operand in (node.left, node.right):
            try:
                value = self.eval(operand, env)
            except ExpressionEvaluationError as exc:
                error = error or exc
                continue
            if not isinstance(value, bool):
                error = error or _error(f"no such overload: {_kind(value)} {node.op} ...")
                continue
            if value is decisive:
                return decisive
        if error is not None:
            raise error
        return not decisive

    def _call(self, node: Call, env: Mapping[str, Any]) -> Any:
        if node.target is None and node.function == "has":
            select = node.args[0]
            assert isinstance(select, Select)
            operand = self.eval(select.operand, env)
            if isinstance(operand, Mapping):
                return select.field in operand
            raise _error(f"type '{_kind(operand)}' does not support field presence test")
        if node.target is not None and node.function in _MEMBER_MACROS:
            return self._macro(node, env)

        args = [self.eval(arg, env) for arg in node.args]
        if node.target is None:
            handler = _GLOBAL_HANDLERS[node.function]
            return handler(*args)
        target = self.eval(node.target, env)
        handler = _MEMBER_HANDLERS[node.function]
        return handler(target, *args)

    def _macro(self, node: Call, env: Mapping[str, Any]) -> Any:
        target = self.eval(node.target, env)
        if isinstance(target, Mapping):
            items = list(target.keys())
        elif isinstance(target, list):
            items = target
        else:
            raise _error(f"type '{_kind(target)}' does not support '{node.function}'")
        variable = node.args[0]
        assert isinstance(variable, Ident)

        def apply(body: Node, item: Any) -> Any:
            scoped = dict(env)
            scoped[variable.name] = item
            return self.eval(body, scoped)

        def predicate(item: Any) -> bool:
            value = apply(node.args[1], item)
            if not isinstance(value, bool):
                raise _error(f"predicate of '{node.function}' must return a bool")
            return value

        if node.function == "all":
            return self._quantify(items, predicate, decisive=False)
        if node.function == "exists":
            return self._quantify(items, predicate, decisive=True)
        if node.function == "exists_one":
            return sum(1 for item in items if predicate(item)) == 1
        if node.function == "filter":
            return [item for item in items if predicate(item)]
        if len(node.args) == 3:
            return [apply(node.args[2], item) for item in items if predicate(item)]
        return [apply(node.args[1], item) for item in items]

    @staticmethod
    def _quantify(items: list[Any], predicate: Callable[[Any], bool], *, decisive: bool) -> bool:
        error: ExpressionEvaluationError | None = None
        for item in items:
            try:
                if predicate(item) is decisive:
                    return decisive
            except ExpressionEvaluationError as exc:
                error = error or exc
        if error is not None:
            raise error
        return not decisive


def _numeric(value: Any) -> bool:
    return _kind(value) in ("int", "double")


def _equals(left: Any, right: Any) -> bool:
    left_kind, right_kind = _kind(left), _kind(right)
    if _numeric(left) and _numeric(right):
        return left == right
    if left_kind != right_kind:
        return False
    if left_kind == "list":
        return len(left) == len(right) and all(_equals(a, b) for a, b in zip(left, right))
    if left_kind == "map":
        return left.keys() == right.keys() and all(_equals(left[k], right[k]) for k in left)
    return left == right


def _binary(op: str, left: Any, right: Any) -> Any:
    if op == "==":
        return _equals(left, right)
    if op == "!=":
        return not _equals(left, right)
    if op == "in":
        if isinstance(right, list):
            return any(_equals(left, item) for item in right)
        if isinstance(right, Mapping):
            return left in right
        raise _error(f"no such overload: {_kind(left)} in {_kind(right)}")
    left_kind, right_kind = _kind(left), _kind(right)
    if op in ("<", "<=", ">", ">="):
        comparable = (left_kind == right_kind and left_kind in ("int", "double", "string", "bool", "timestamp", "duration")) or (
            _numeric(left) and _numeric(right)
        )
        if not comparable:
            raise _error(f"no such overload: {left_kind} {op} {right_kind}")
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right

    signature = (left_kind, right_kind)
    if op == "+":
        if signature == ("int", "int"):
            return _checked_int(left + right)
        if signature in (("double", "double"), ("string", "string"), ("list", "list"), ("duration", "duration")):
            return left + right
        if signature in (("timestamp", "duration"), ("duration", "timestamp")):
            return left + right
    elif op == "-":
        if signature == ("int", "int"):
            return _checked_int(left - right)
        if signature in (("double", "double"), ("duration", "duration"), ("timestamp", "timestamp"), ("timestamp", "duration")):
            return left - right
    elif op == "*":
        if signature == ("int", "int"):
            return _checked_int(left * right)
        if signature == ("double", "double"):
            return left * right
    elif op == "/":
        if signature == ("int", "int"):
            if right == 0:
                raise _error("division by zero")
            quotient = abs(left) // abs(right)
            return _checked_int(quotient if (left >= 0) == (right >= 0) else -quotient)
        if signature == ("double", "double"):
            if right == 0:
                return float("inf") if left > 0 else float("-inf") if left < 0 else float("nan")
            return left / right
    elif op == "%":
        if signature == ("int", "int"):
            if right == 0:
                raise _error("modulus by zero")
            remainder = abs(left) % abs(right)
            return remainder if left >= 0 else -remainder
    raise _error(f"no such overload: {left_kind} {op} {right_kind}")


def _expect(value: Any, kind: str, function: str) -> Any:
    if _kind(value) != kind:
        raise _error(f"no such overload: {function}({_kind(value)})")
    return value


def _to_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return parse_timestamp(_expect(value, "string", "timestamp"))


def _to_duration(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return parse_duration(_expect(value, "string", "duration"))


def _size(value: Any) -> int:
    if _kind(value) in ("string", "list", "map"):
        return len(value)
    raise _error(f"no such overload: size({_kind(value)})")


def _to_int(value: Any) -> int:
    kind = _kind(value)
    if kind == "int":
        return value
    if kind == "double":
        if value != value or value in (float("inf"), float("-inf")):
            raise _error("double out of int range")
        return _checked_int(int(value))
    if kind == "string":
        try:
            return _checked_int(int(value, 10))
        except ValueError as exc:
            raise _error(f"cannot convert '{value}' to int") from exc
    if kind == "timestamp":
        return int(value.timestamp())
    raise _error(f"no such overload: int({kind})")


def _to_double(value: Any) -> float:
    kind = _kind(value)
    if kind in ("int", "double"):
        return float(value)
    if kind == "string":
        try:
            return float(value)
        except ValueError as exc:
            raise _error(f"cannot convert '{value}' to double") from exc
    raise _error(f"no such overload: double({kind})")


def to_string(value: Any) -> str:
    kind = _kind(value)
    if kind == "string":
        return value
    if kind == "bool":
        return "true" if value else "false"
    if kind in ("int", "double"):
        return repr(value)
    if kind == "timestamp":
        return format_timestamp(value)
    if kind == "duration":
        return format_duration(value)
    raise _error(f"no such overload: string({kind})")


def _to_bool(value: Any) -> bool:
    kind = _kind(value)
    if kind == "bool":
        return value
    if kind == "string":
        lowered = value.lower()
        if lowered in ("true", "t", "1"):
            return True
        if lowered in ("false", "f", "0"):
            return False
        raise _error(f"cannot convert '{value}' to bool")
    raise _error(f"no such overload: bool({kind})")


def _matches(value: Any, pattern: Any) -> bool:
    _expect(value, "string", "matches")
    _expect(pattern, "string", "matches")
    try:
        return re.search(pattern, value) is not None
    except re.error as exc:
        raise _error(f"invalid regular expression '{pattern}': {exc}") from exc


def _string_method(function: str, handler: Callable[..., Any]) -> Callable[..., Any]:
    def wrapper(target: Any, *args: Any) -> Any:
        _expect(target, "string", function)
        return handler(target, *args)

    return wrapper


def _replace(target: str, old: Any, new: Any, count: Any = -1) -> str:
    _expect(old, "string", "replace")
    _expect(new, "string", "replace")
    return target.replace(old, new, _expect(count, "int", "replace"))


def _split(target: str, separator: Any, limit: Any = -1) -> list[str]:
    _expect(separator, "string", "split")
    limit = _expect(limit, "int", "split")
    if limit == 0:
        return []
    if separator == "":
        parts = list(target)
        if limit > 0 and len(parts) > limit:
            parts = parts[: limit - 1] + ["".join(parts[limit - 1:])]
        return parts
    return target.split(separator, limit - 1 if limit > 0 else -1)


def _substring(target: str, start: Any, end: Any = None) -> str:
    start = _expect(start, "int", "substring")
    end = len(target) if end is None else _expect(end, "int", "substring")
    if start < 0 or end > len(target) or start > end:
        raise _error(f"substring index out of range: [{start}, {end})")
    return target[start:end]


def _index_of(target: str, substring: Any, offset: Any = 0) -> int:
    _expect(substring, "string", "indexOf")
    offset = _expect(offset, "int", "indexOf")
    if offset < 0 or offset > len(target):
        raise _error(f"indexOf offset out of range: {offset}")
    return target.find(substring, offset)


def _join(target: Any, separator: Any = "") -> str:
    _expect(target, "list", "join")
    _expect(separator, "string", "join")
    for item in target:
        _expect(item, "string", "join")
    return separator.join(target)


def _timestamp_getter(function: str, getter: Callable[[datetime], int]) -> Callable[..., int]:
    def wrapper(target: Any, tz: Any = None) -> int:
        value = _expect(target, "timestamp", function)
        if tz is not None:
            value = value.astimezone(_parse_zone(_expect(tz, "string", function)))
        return getter(value)

    return wrapper


def _parse_zone(name: str):
    match = re.match(r"^([+-])(\d{2}):(\d{2})$", name)
    if match:
        sign = 1 if match.group(1) == "+" else -1
        return timezone(sign * timedelta(hours=int(match.group(2)), minutes=int(match.group(3))))
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise _error(f"unknown time zone '{name}'") from exc


_GLOBAL_HANDLERS: dict[str, Callable[..., Any]] = {
    "timestamp": _to_timestamp,
    "duration": _to_duration,
    "size": _size,
    "int": _to_int,
    "uint": _to_int,
    "double": _to_double,
    "string": to_string,
    "bool": _to_bool,
    "dyn": lambda value: value,
    "matches": _matches,
}

_MEMBER_HANDLERS: dict[str, Callable[..., Any]] = {
    "contains": _string_method("contains", lambda s, sub: _expect(sub, "string", "contains") in s),
    "startsWith": _string_method("startsWith", lambda s, p: s.startswith(_expect(p, "string", "startsWith"))),
    "endsWith": _string_method("endsWith", lambda s, p: s.endswith(_expect(p, "string", "endsWith"))),
    "matches": _matches,
    "lowerAscii": _string_method("lowerAscii", lambda s: "".join(c.lower() if c.isascii() else c for c in s)),
    "upperAscii": _string_method("upperAscii", lambda s: "".join(c.upper() if c.isascii() else c for c in s)),
    "trim": _string_method("trim", lambda s: s.strip()),
    "replace": _string_method("replace", _replace),
    "split": _string_method("split", _split),
    "substring": _string_method("substring", _substring),
    "indexOf": _string_method("indexOf", _index_of),
    "extract": _string_method("extract", lambda s, t: extract(s, _expect(t, "string", "extract"))),
    "join": _join,
    "size": _size,
    "getFullYear": _timestamp_getter("getFullYear", lambda t: t.year),
    "getMonth": _timestamp_getter("getMonth", lambda t: t.month - 1),
    "getDayOfMonth": _timestamp_getter("getDayOfMonth", lambda t: t.day - 1),
    "getDate": _timestamp_getter("getDate", lambda t: t.day),
    "getDayOfWeek": _timestamp_getter("getDayOfWeek", lambda t: (t.weekday() + 1) % 7),
    "getDayOfYear": _timestamp_getter("getDayOfYear", lambda t: t.timetuple().tm_yday - 1),
    "getHours": _timestamp_getter("getHours", lambda t: t.hour),
    "getMinutes": _timestamp_getter("getMinutes", lambda t: t.minute),
    "getSeconds": _timestamp_getter("getSeconds", lambda t: t.second),
    "getMilliseconds": _timestamp_getter("getMilliseconds", lambda t: t.microsecond // 1000),
}
