"""
Arithmetic formulas over named row fields.

Supports ``+ - * / ( )``, unary minus, numeric literals and ``{field}``
placeholders. Evaluation uses a shunting-yard conversion to postfix and never
raises: malformed input, unresolvable placeholders and division by zero all
yield ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .coercion import to_number_loose

_BINARY_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2}
_UNARY_PRECEDENCE = 3
_LITERAL_CHARS = set("0123456789.,")


@dataclass(frozen=True)
class _Token:
    kind: str  # "num" | "op" | "neg" | "lparen" | "rparen"
    value: Any = None


class _FormulaError(ValueError):
    pass


def _tokenize(source: str, row: Mapping[str, Any]) -> list[_Token]:
    tokens: list[_Token] = []
    index = 0
    length = len(source)
    while index < length:
        char = source[index]
        if char.isspace():
            index += 1
            continue
        if char == "{":
            close = source.find("}", index + 1)
            if close == -1:
                raise _FormulaError("unterminated placeholder")
            key = source[index + 1 : close].strip()
            if not key:
                raise _FormulaError("empty placeholder")
            number = to_number_loose(row.get(key))
            if number is None:
                raise _FormulaError(f"placeholder {key!r} is not numeric")
            tokens.append(_Token("num", number))
            index = close + 1
            continue
        if char in _LITERAL_CHARS:
            end = index
            while end < length and source[end] in _LITERAL_CHARS:
                end += 1
            number = to_number_loose(source[index:end])
            if number is None:
                raise _FormulaError(f"bad literal {source[index:end]!r}")
            tokens.append(_Token("num", number))
            index = end
            continue
        if char in _BINARY_PRECEDENCE:
            tokens.append(_Token("op", char))
        elif char == "(":
            tokens.append(_Token("lparen"))
        elif char == ")":
            tokens.append(_Token("rparen"))
        else:
            raise _FormulaError(f"unexpected character {char!r}")
        index += 1
    return tokens


def _precedence(token: _Token) -> int:
    if token.kind == "neg":
        return _UNARY_PRECEDENCE
    return _BINARY_PRECEDENCE[token.value]


def _to_postfix(tokens: list[_Token]) -> list[_Token]:
    output: list[_Token] = []
    stack: list[_Token] = []
    previous: _Token | None = None
    for token in tokens:
        if token.kind == "num":
            output.append(token)
        elif token.kind == "lparen":
            stack.append(token)
        elif token.kind == "rparen":
            while stack and stack[-1].kind != "lparen":
                output.append(stack.pop())
            if not stack:
                raise _FormulaError("unbalanced parenthesis")
            stack.pop()
        else:
            unary = token.value == "-" and (previous is None or previous.kind not in {"num", "rparen"})
            current = _Token("neg") if unary else token
            while stack and stack[-1].kind != "lparen":
                top = stack[-1]
                # unary minus is right-associative
                if _precedence(top) > _precedence(current) or (
                    _precedence(top) == _precedence(current) and current.kind != "neg"
                ):
                    output.append(stack.pop())
                else:
                    break
            stack.append(current)
            token = current
        previous = token
    while stack:
        top = stack.pop()
        if top.kind == "lparen":
            raise _FormulaError("unbalanced parenthesis")
        output.append(top)
    return output


def _run_postfix(postfix: list[_Token]) -> float:
    values: list[float] = []
    for token in postfix:
        if token.kind == "num":
            values.append(token.value)
            continue
        if token.kind == "neg":
            if not values:
                raise _FormulaError("dangling unary minus")
            values.append(-values.pop())
            continue
        if len(values) < 2:
            raise _FormulaError(f"operator {token.value!r} is missing an operand")
        right = values.pop()
        left = values.pop()
        if token.value == "+":
            values.append(left + right)
        elif token.value == "-":
            values.append(left - right)
        elif token.value == "*":
            values.append(left * right)
        else:
            if right == 0:
                raise _FormulaError("division by zero")
            values.append(left / right)
    if len(values) != 1:
        raise _FormulaError("expression does not reduce to one value")
    return values[0]


def evaluate_formula(formula: str, row: Mapping[str, Any]) -> float | None:
    """Evaluate ``formula`` against ``row``; ``None`` when it cannot be computed."""

    source = (formula or "").strip()
    if not source:
        return None
    try:
        result = _run_postfix(_to_postfix(_tokenize(source, row)))
    except _FormulaError:
        return None
    if result != result or abs(result) == float("inf"):
        return None
    return result
