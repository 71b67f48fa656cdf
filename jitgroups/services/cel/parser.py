from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from jitgroups.core.errors import ExpressionCompileError


# Precedence levels used by both the parser and the unparser.
_PREC_CONDITIONAL = 1
_PREC_OR = 2
_PREC_AND = 3
_PREC_RELATION = 4
_PREC_ADDITION = 5
_PREC_MULTIPLICATION = 6
_PREC_UNARY = 7
_PREC_MEMBER = 8

_BINARY_PRECEDENCE = {
    "||": _PREC_OR,
    "&&": _PREC_AND,
    "<": _PREC_RELATION,
    "<=": _PREC_RELATION,
    ">": _PREC_RELATION,
    ">=": _PREC_RELATION,
    "==": _PREC_RELATION,
    "!=": _PREC_RELATION,
    "in": _PREC_RELATION,
    "+": _PREC_ADDITION,
    "-": _PREC_ADDITION,
    "*": _PREC_MULTIPLICATION,
    "/": _PREC_MULTIPLICATION,
    "%": _PREC_MULTIPLICATION,
}

_TWO_CHAR_OPERATORS = {"<=", ">=", "==", "!=", "&&", "||"}
_ONE_CHAR_OPERATORS = set("<>!?:.,()[]{}+-*/%")
_KEYWORDS = {"true": True, "false": False, "null": None}

_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    "'": "'",
    '"': '"',
    "`": "`",
    "?": "?",
}


@dataclass(frozen=True)
class Token:
    kind: str  # int, double, string, ident, op, eof
    text: str
    value: Any
    pos: int


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Ident:
    name: str


@dataclass(frozen=True)
class Select:
    operand: "Node"
    field: str


@dataclass(frozen=True)
class Index:
    operand: "Node"
    index: "Node"


@dataclass(frozen=True)
class Call:
    function: str
    args: tuple["Node", ...]
    target: "Node | None" = None


@dataclass(frozen=True)
class ListExpr:
    items: tuple["Node", ...]


@dataclass(frozen=True)
class MapExpr:
    entries: tuple[tuple["Node", "Node"], ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Conditional:
    condition: "Node"
    then: "Node"
    otherwise: "Node"


Node = Union[Literal, Ident, Select, Index, Call, ListExpr, MapExpr, Unary, Binary, Conditional]


def _syntax_error(message: str, pos: int) -> ExpressionCompileError:
    return ExpressionCompileError(f"Syntax error at position {pos}: {message}")


def tokenize(text: str) -> list[Token]:
    """Split expression text into tokens, dropping whitespace and // comments."""
    tokens: list[Token] = []
    pos = 0
    length = len(text)
    while pos < length:
        char = text[pos]
        if char in " \t\r\n\f":
            pos += 1
            continue
        if text.startswith("//", pos):
            newline = text.find("\n", pos)
            pos = length if newline < 0 else newline + 1
            continue
        if char.isdigit():
            token, pos = _read_number(text, pos)
            tokens.append(token)
            continue
        if char in "rR" and pos + 1 < length and text[pos + 1] in "'\"":
            token, pos = _read_string(text, pos + 1, raw=True, start=pos)
            tokens.append(token)
            continue
        if char in "'\"":
            token, pos = _read_string(text, pos, raw=False, start=pos)
            tokens.append(token)
            continue
        if char.isalpha() or char == "_":
            end = pos + 1
            while end < length and (text[end].isalnum() or text[end] == "_"):
                end += 1
            word = text[pos:end]
            if word in _KEYWORDS:
                tokens.append(Token("literal", word, _KEYWORDS[word], pos))
            elif word == "in":
                tokens.append(Token("op", word, word, pos))
            else:
                tokens.append(Token("ident", word, word, pos))
            pos = end
            continue
        pair = text[pos:pos + 2]
        if pair in _TWO_CHAR_OPERATORS:
            tokens.append(Token("op", pair, pair, pos))
            pos += 2
            continue
        if char in _ONE_CHAR_OPERATORS:
            tokens.append(Token("op", char, char, pos))
            pos += 1
            continue
        raise _syntax_error(f"unexpected character '{char}'", pos)
    tokens.append(Token("eof", "", None, length))
    return tokens


def _read_number(text: str, pos: int) -> tuple[Token, int]:
    start = pos
    length = len(text)
    if text.startswith(("0x", "0X"), pos):
        pos += 2
        while pos < length and text[pos] in "0123456789abcdefABCDEF":
            pos += 1
        if pos == start + 2:
            raise _syntax_error("malformed hex literal", start)
        value = int(text[start + 2:pos], 16)
        if pos < length and text[pos] in "uU":
            pos += 1
        return Token("int", text[start:pos], value, start), pos

    while pos < length and text[pos].isdigit():
        pos += 1
    is_double = False
    if pos + 1 < length and text[pos] == "." and text[pos + 1].isdigit():
        is_double = True
        pos += 1
        while pos < length and text[pos].isdigit():
            pos += 1
    if pos < length and text[pos] in "eE":
        exponent = pos + 1
        if exponent < length and text[exponent] in "+-":
            exponent += 1
        if exponent < length and text[exponent].isdigit():
            is_double = True
            pos = exponent
            while pos < length and text[pos].isdigit():
                pos += 1
    literal = text[start:pos]
    if is_double:
        return Token("double", literal, float(literal), start), pos
    if pos < length and text[pos] in "uU":
        pos += 1
    return Token("int", text[start:pos], int(literal), start), pos


def _read_string(text: str, pos: int, *, raw: bool, start: int) -> tuple[Token, int]:
    quote = text[pos]
    triple = text.startswith(quote * 3, pos)
    delimiter = quote * 3 if triple else quote
    pos += len(delimiter)
    length = len(text)
    chars: list[str] = []
    while True:
        if pos >= length:
            raise _syntax_error("unterminated string literal", start)
        if text.startswith(delimiter, pos):
            pos += len(delimiter)
            break
        char = text[pos]
        if char == "\n" and not triple:
            raise _syntax_error("newline in string literal", pos)
        if char == "\\" and not raw:
            escaped, pos = _read_escape(text, pos, start)
            chars.append(escaped)
            continue
        chars.append(char)
        pos += 1
    return Token("string", text[start:pos], "".join(chars), start), pos


def _read_escape(text: str, pos: int, start: int) -> tuple[str, int]:
    # pos points at the backslash.
    if pos + 1 >= len(text):
        raise _syntax_error("unterminated escape sequence", start)
    code = text[pos + 1]
    if code in _ESCAPES:
        return _ESCAPES[code], pos + 2
    widths = {"x": 2, "X": 2, "u": 4, "U": 8}
    if code in widths:
        digits = text[pos + 2:pos + 2 + widths[code]]
        if len(digits) != widths[code]:
            raise _syntax_error("truncated escape sequence", pos)
        try:
            return chr(int(digits, 16)), pos + 2 + widths[code]
        except ValueError as exc:
            raise _syntax_error("invalid escape sequence", pos) from exc
    if code in "0123":
        digits = text[pos + 1:pos + 4]
        try:
            return chr(int(digits, 8)), pos + 4
        except ValueError as exc:
            raise _syntax_error("invalid octal escape", pos) from exc
    raise _syntax_error(f"invalid escape sequence '\\{code}'", pos)


class _Parser:
    def __init__(self, text: str) -> None:
        self._tokens = tokenize(text)
        self._index = 0

    def _peek(self) -> Token:
        return self._tokens[self._index]

    def _next(self) -> Token:
        token = self._tokens[self._index]
        if token.kind != "eof":
            self._index += 1
        return token

    def _accept(self, op: str) -> bool:
        token = self._peek()
        if token.kind == "op" and token.text == op:
            self._index += 1
            return True
        return False

    def _expect(self, op: str) -> Token:
        token = self._peek()
        if token.kind == "op" and token.text == op:
            return self._next()
        found = "end of input" if token.kind == "eof" else f"'{token.text}'"
        raise _syntax_error(f"expected '{op}' but found {found}", token.pos)

    def parse(self) -> Node:
        if self._peek().kind == "eof":
            raise _syntax_error("expression is empty", 0)
        node = self._expr()
        token = self._peek()
        if token.kind != "eof":
            raise _syntax_error(f"unexpected '{token.text}'", token.pos)
        return node

    def _expr(self) -> Node:
        condition = self._binary(_PREC_OR)
        if self._accept("?"):
            then = self._binary(_PREC_OR)
            self._expect(":")
            otherwise = self._expr()
            return Conditional(condition, then, otherwise)
        return condition

    def _binary(self, precedence: int) -> Node:
        # Precedence climbing over the left-associative binary operators.
        if precedence > _PREC_MULTIPLICATION:
            return self._unary()
        left = self._binary(precedence + 1)
        while True:
            token = self._peek()
            if token.kind != "op" or _BINARY_PRECEDENCE.get(token.text) != precedence:
                return left
            self._next()
            right = self._binary(precedence + 1)
            left = Binary(token.text, left, right)

    def _unary(self) -> Node:
        token = self._peek()
        if token.kind == "op" and token.text in ("!", "-"):
            self._next()
            # Only a minus written directly before a number is part of the literal.
            direct = self._peek().kind in ("int", "double")
            operand = self._unary()
            if token.text == "-" and direct and isinstance(operand, Literal) and _is_number(operand.value):
                return Literal(-operand.value)
            return Unary(token.text, operand)
        return self._member()

    def _member(self) -> Node:
        node = self._primary()
        while True:
            if self._accept("."):
                token = self._next()
                if token.kind != "ident":
                    raise _syntax_error("expected field or method name after '.'", token.pos)
                if self._accept("("):
                    node = Call(token.text, self._arguments(")"), node)
                else:
                    node = Select(node, token.text)
            elif self._accept("["):
                index = self._expr()
                self._expect("]")
                node = Index(node, index)
            else:
                return node

    def _primary(self) -> Node:
        token = self._next()
        if token.kind in ("int", "double", "string", "literal"):
            return Literal(token.value)
        if token.kind == "ident":
            if self._accept("("):
                return Call(token.text, self._arguments(")"))
            return Ident(token.text)
        if token.kind == "op":
            if token.text == "(":
                node = self._expr()
                self._expect(")")
                return node
            if token.text == "[":
                return ListExpr(self._arguments("]"))
            if token.text == "{":
                return MapExpr(self._map_entries())
        found = "end of input" if token.kind == "eof" else f"'{token.text}'"
        raise _syntax_error(f"unexpected {found}", token.pos)

    def _arguments(self, closing: str) -> tuple[Node, ...]:
        args: list[Node] = []
        if self._accept(closing):
            return tuple(args)
        while True:
            args.append(self._expr())
            if self._accept(closing):
                return tuple(args)
            self._expect(",")
            if self._accept(closing):
                return tuple(args)

    def _map_entries(self) -> tuple[tuple[Node, Node], ...]:
        entries: list[tuple[Node, Node]] = []
        if self._accept("}"):
            return tuple(entries)
        while True:
            key = self._expr()
            self._expect(":")
            entries.append((key, self._expr()))
            if self._accept("}"):
                return tuple(entries)
            self._expect(",")
            if self._accept("}"):
                return tuple(entries)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse(text: str) -> Node:
    """Parse expression text into an AST without checking any declarations."""
    if text is None:
        raise ExpressionCompileError("Expression must not be None")
    return _Parser(text).parse()


def _precedence(node: Node) -> int:
    if isinstance(node, Conditional):
        return _PREC_CONDITIONAL
    if isinstance(node, Binary):
        return _BINARY_PRECEDENCE[node.op]
    if isinstance(node, Unary):
        return _PREC_UNARY
    if isinstance(node, Literal) and _is_number(node.value) and node.value < 0:
        return _PREC_UNARY
    return _PREC_MEMBER


def _wrap(node: Node, needs_parens: bool) -> str:
    text = unparse(node)
    return f"({text})" if needs_parens else text


def _format_string(value: str) -> str:
    escaped = []
    for char in value:
        if char == "\\":
            escaped.append("\\\\")
        elif char == '"':
            escaped.append('\\"')
        elif char == "\n":
            escaped.append("\\n")
        elif char == "\r":
            escaped.append("\\r")
        elif char == "\t":
            escaped.append("\\t")
        elif ord(char) < 0x20:
            escaped.append(f"\\x{ord(char):02x}")
        else:
            escaped.append(char)
    return '"' + "".join(escaped) + '"'


def _format_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return _format_string(value)
    return repr(value)


def unparse(node: Node) -> str:
    """Render an AST in canonical form with minimal parentheses."""
    if isinstance(node, Literal):
        return _format_literal(node.value)
    if isinstance(node, Ident):
        return node.name
    if isinstance(node, Select):
        return f"{_wrap(node.operand, _precedence(node.operand) < _PREC_MEMBER)}.{node.field}"
    if isinstance(node, Index):
        operand = _wrap(node.operand, _precedence(node.operand) < _PREC_MEMBER)
        return f"{operand}[{unparse(node.index)}]"
    if isinstance(node, Call):
        args = ", ".join(unparse(arg) for arg in node.args)
        if node.target is None:
            return f"{node.function}({args})"
        target = _wrap(node.target, _precedence(node.target) < _PREC_MEMBER)
        return f"{target}.{node.function}({args})"
    if isinstance(node, ListExpr):
        return "[" + ", ".join(unparse(item) for item in node.items) + "]"
    if isinstance(node, MapExpr):
        return "{" + ", ".join(f"{unparse(k)}: {unparse(v)}" for k, v in node.entries) + "}"
    if isinstance(node, Unary):
        negative_literal = (
            node.op == "-" and isinstance(node.operand, Literal) and _is_number(node.operand.value)
            and node.operand.value < 0
        )
        return node.op + _wrap(node.operand, _precedence(node.operand) < _PREC_UNARY or negative_literal)
    if isinstance(node, Binary):
        precedence = _BINARY_PRECEDENCE[node.op]
        left = _wrap(node.left, _precedence(node.left) < precedence)
        right_precedence = _precedence(node.right)
        # Conjunctions and disjunctions are associative, so chains need no parens.
        associative = node.op in ("&&", "||") and isinstance(node.right, Binary) and node.right.op == node.op
        right = _wrap(node.right, right_precedence < precedence or (right_precedence == precedence and not associative))
        return f"{left} {node.op} {right}"
    if isinstance(node, Conditional):
        condition = _wrap(node.condition, _precedence(node.condition) <= _PREC_CONDITIONAL)
        then = _wrap(node.then, _precedence(node.then) <= _PREC_CONDITIONAL)
        return f"{condition} ? {then} : {unparse(node.otherwise)}"
    raise TypeError(f"Unsupported node: {type(node).__name__}")
