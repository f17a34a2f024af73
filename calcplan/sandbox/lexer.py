"""Tokenizer for the calculation script language."""

from __future__ import annotations

import json
from dataclasses import dataclass

from calcplan.core.errors import ScriptSyntaxError

NUMBER = "NUMBER"
STRING = "STRING"
IDENT = "IDENT"
OP = "OP"
NEWLINE = "NEWLINE"
EOF = "EOF"

# Longest operators first so "=>" wins over "="
OPERATORS = (
    "=>", "==", "!=", "<=", ">=", "&&", "||",
    "+", "-", "*", "/", "%", "<", ">", "!", "?", ":", ".", ",",
    "(", ")", "[", "]", "{", "}", "=",
)
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")", "]", "}"}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str | float
    pos: int


def _read_string(text: str, start: int) -> tuple[str, int]:
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "\n":
            break
        if ch == '"':
            raw = text[start : i + 1]
            try:
                return json.loads(raw), i + 1
            except json.JSONDecodeError as e:
                raise ScriptSyntaxError(f"Invalid string literal: {e.msg}", start) from e
        i += 1
    raise ScriptSyntaxError("Unterminated string literal", start)


def _is_digit(ch: str) -> bool:
    # ASCII only; str.isdigit also accepts superscripts that float() rejects
    return "0" <= ch <= "9"


def _read_number(text: str, start: int) -> tuple[float, int]:
    i = start
    while i < len(text) and _is_digit(text[i]):
        i += 1
    if i < len(text) and text[i] == "." and i + 1 < len(text) and _is_digit(text[i + 1]):
        i += 1
        while i < len(text) and _is_digit(text[i]):
            i += 1
    if i < len(text) and text[i] in "eE":
        j = i + 1
        if j < len(text) and text[j] in "+-":
            j += 1
        if j < len(text) and _is_digit(text[j]):
            i = j
            while i < len(text) and _is_digit(text[i]):
                i += 1
    if i < len(text) and (text[i].isalpha() or text[i] == "_"):
        raise ScriptSyntaxError(f"Malformed number {text[start:i + 1]!r}", start)
    return float(text[start:i]), i


def tokenize(text: str) -> list[Token]:
    """Split script text into tokens.

    Newlines are significant only outside brackets, where they end an
    assignment. ``#`` starts a comment that runs to the end of the line.
    """
    tokens: list[Token] = []
    stack: list[str] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch == "#":
            while i < n and text[i] != "\n":
                i += 1
            continue
        if ch == "\n":
            if not stack and tokens and tokens[-1].kind != NEWLINE:
                tokens.append(Token(NEWLINE, "\n", i))
            i += 1
            continue
        if ch in " \t\r":
            i += 1
            continue
        if ch == '"':
            value, i_next = _read_string(text, i)
            tokens.append(Token(STRING, value, i))
            i = i_next
            continue
        if _is_digit(ch) or (ch == "." and i + 1 < n and _is_digit(text[i + 1])):
            value, i_next = _read_number(text, i)
            tokens.append(Token(NUMBER, value, i))
            i = i_next
            continue
        if ch.isalpha() or ch in "_$":
            j = i + 1
            while j < n and (text[j].isalnum() or text[j] in "_$"):
                j += 1
            tokens.append(Token(IDENT, text[i:j], i))
            i = j
            continue

        for op in OPERATORS:
            if text.startswith(op, i):
                if op in _OPENERS:
                    stack.append(_OPENERS[op])
                elif op in _CLOSERS:
                    if not stack or stack[-1] != op:
                        raise ScriptSyntaxError(f"Unbalanced {op!r}", i)
                    stack.pop()
                tokens.append(Token(OP, op, i))
                i += len(op)
                break
        else:
            raise ScriptSyntaxError(f"Unexpected character {ch!r}", i)

    if stack:
        raise ScriptSyntaxError(f"Missing {stack[-1]!r} before end of script", n)
    if tokens and tokens[-1].kind != NEWLINE:
        tokens.append(Token(NEWLINE, "\n", n))
    tokens.append(Token(EOF, "", n))
    return tokens
