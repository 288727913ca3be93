"""
Safe boolean/arithmetic expression evaluator for conditions.

Supported:

- literals: numbers, single or double quoted strings, ``true``/``false``
- variables: ``vars.x``, ``vars.a.b`` (reads only from the supplied mapping)
- operators: ``! && || == != > >= < <= + - * /`` and parentheses

Nothing is ever passed to ``eval``; identifiers outside ``vars`` read as None.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_TWO_CHAR_OPS = ("&&", "||", "==", "!=", ">=", "<=")
_ONE_CHAR_OPS = "!+-*/()<>"


@dataclass
class Token:
    kind: str  # "op" | "num" | "str" | "id"
    value: Any


def _is_alpha(c: str) -> bool:
    return c.isascii() and (c.isalpha() or c == "_")


def _is_id_char(c: str) -> bool:
    return c.isascii() and (c.isalnum() or c == "_")


def tokenize(source: str) -> list[Token]:
    s = source.strip()
    out: list[Token] = []
    i = 0
    while i < len(s):
        c = s[i]
        if c.isspace():
            i += 1
            continue
        if s[i : i + 2] in _TWO_CHAR_OPS:
            out.append(Token("op", s[i : i + 2]))
            i += 2
            continue
        if c in _ONE_CHAR_OPS:
            out.append(Token("op", c))
            i += 1
            continue
        if c.isdigit() or (c == "." and s[i + 1 : i + 2].isdigit()):
            j = i + 1
            while j < len(s) and (s[j].isdigit() or s[j] == "."):
                j += 1
            try:
                out.append(Token("num", float(s[i:j])))
            except ValueError:
                out.append(Token("num", 0.0))
            i = j
            continue
        if c in ("'", '"'):
            j = i + 1
            chars: list[str] = []
            while j < len(s):
                if s[j] == "\\" and j + 1 < len(s):
                    chars.append(s[j + 1])
                    j += 2
                elif s[j] == c:
                    j += 1
                    break
                else:
                    chars.append(s[j])
                    j += 1
            out.append(Token("str", "".join(chars)))
            i = j
            continue
        if _is_alpha(c):
            j = i + 1
            while j < len(s) and _is_id_char(s[j]):
                j += 1
            # dotted path
            while j + 1 < len(s) and s[j] == "." and _is_alpha(s[j + 1]):
                j += 1
                while j < len(s) and _is_id_char(s[j]):
                    j += 1
            out.append(Token("id", s[i:j]))
            i = j
            continue
        # Unknown character: skip
        i += 1
    return out


def _num(v: Any) -> float:
    if not v:
        return 0.0
    try:
        return float(v)
    except (TypeError, ValueError):
        return float("nan")


def _comparable(v: Any) -> Any:
    if isinstance(v, (str, int, float, bool)):
        return v
    return "undefined" if v is None else str(v)


def _equal(a: Any, b: Any) -> bool:
    # bool is an int subclass; keep true == 1 false like a strict comparison
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _compare(op: str, a: Any, b: Any) -> bool:
    if isinstance(a, str) != isinstance(b, str):
        a, b = _num(a), _num(b)
    try:
        if op == ">":
            return a > b
        if op == ">=":
            return a >= b
        if op == "<":
            return a < b
        return a <= b
    except TypeError:
        return False


class _Parser:
    def __init__(self, tokens: list[Token], variables: dict[str, Any]) -> None:
        self.tokens = tokens
        self.pos = 0
        self.vars = variables

    def peek_op(self, *ops: str) -> str | None:
        if self.pos < len(self.tokens):
            t = self.tokens[self.pos]
            if t.kind == "op" and t.value in ops:
                return t.value
        return None

    def next(self) -> Token | None:
        if self.pos >= len(self.tokens):
            return None
        t = self.tokens[self.pos]
        self.pos += 1
        return t

    def parse_or(self) -> Any:
        v = self.parse_and()
        while self.peek_op("||"):
            self.next()
            r = self.parse_and()
            v = bool(v) or bool(r)
        return v

    def parse_and(self) -> Any:
        v = self.parse_eq()
        while self.peek_op("&&"):
            self.next()
            r = self.parse_eq()
            v = bool(v) and bool(r)
        return v

    def parse_eq(self) -> Any:
        v = self.parse_rel()
        while True:
            op = self.peek_op("==", "!=")
            if not op:
                break
            self.next()
            r = self.parse_rel()
            same = _equal(_comparable(v), _comparable(r))
            v = same if op == "==" else not same
        return v

    def parse_rel(self) -> Any:
        v = self.parse_add()
        while True:
            op = self.peek_op(">", ">=", "<", "<=")
            if not op:
                break
            self.next()
            r = self.parse_add()
            v = _compare(op, _comparable(v), _comparable(r))
        return v

    def parse_add(self) -> Any:
        v = self.parse_mul()
        while True:
            op = self.peek_op("+", "-")
            if not op:
                break
            self.next()
            r = self.parse_mul()
            v = _num(v) + _num(r) if op == "+" else _num(v) - _num(r)
        return v

    def parse_mul(self) -> Any:
        v = self.parse_unary()
        while True:
            op = self.peek_op("*", "/")
            if not op:
                break
            self.next()
            r = self.parse_unary()
            if op == "*":
                v = _num(v) * _num(r)
            else:
                denom = _num(r)
                v = _num(v) / denom if denom else float("nan")
        return v

    def parse_unary(self) -> Any:
        op = self.peek_op("!", "-")
        if op:
            self.next()
            v = self.parse_unary()
            return (not v) if op == "!" else -_num(v)
        return self.parse_primary()

    def parse_primary(self) -> Any:
        t = self.next()
        if t is None:
            return None
        if t.kind in ("num", "str"):
            return t.value
        if t.kind == "id":
            return self.lookup(t.value)
        if t.kind == "op" and t.value == "(":
            v = self.parse_or()
            if self.peek_op(")"):
                self.next()
            return v
        return None

    def lookup(self, ident: str) -> Any:
        if ident == "true":
            return True
        if ident == "false":
            return False
        parts = ident.split(".")
        if parts[0] != "vars":
            return None
        cur: Any = self.vars
        for part in parts[1:]:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(part)
        return cur


def evaluate(expr: str, variables: dict[str, Any]) -> Any:
    """Evaluate ``expr`` against ``variables``. Errors evaluate to False."""
    try:
        return _Parser(tokenize(str(expr or "")), variables).parse_or()
    except (RecursionError, OverflowError):
        return False


def evaluate_condition(condition: Any, variables: dict[str, Any]) -> bool:
    """
    Evaluate a loop or legacy ``if`` condition.

    Accepts an expression string, ``{"expression": ...}``, or
    ``{"var": name, "equals": value}`` (``equals`` omitted tests truthiness).
    """
    if isinstance(condition, str):
        return bool(condition.strip()) and bool(evaluate(condition, variables))
    if not isinstance(condition, dict):
        return False
    expression = condition.get("expression")
    if isinstance(expression, str) and expression.strip():
        return bool(evaluate(expression, variables))
    var = condition.get("var")
    if isinstance(var, str):
        value = variables.get(var)
        if "equals" in condition:
            return _js_string(value) == _js_string(condition["equals"])
        return bool(value)
    return False


def _js_string(value: Any) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
