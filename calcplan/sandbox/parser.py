"""Recursive-descent parser for the calculation script language.

Grammar::

    script      := (assignment NEWLINE)* EOF
    assignment  := IDENT "=" expr
    expr        := "=>" expr | ternary
    ternary     := or ("?" expr ":" expr)?
    or          := and ("||" and)*
    and         := equality ("&&" equality)*
    equality    := compare (("==" | "!=") compare)*
    compare     := additive (("<" | "<=" | ">" | ">=") additive)*
    additive    := term (("+" | "-") term)*
    term        := unary (("*" | "/" | "%") unary)*
    unary       := ("-" | "+" | "!") unary | postfix
    postfix     := primary ("." IDENT | "[" expr "]" | "(" args? ")")*
    primary     := NUMBER | STRING | "true" | "false" | "null" | IDENT
                 | "(" expr ")" | "[" items? "]" | "{" entries? "}"
"""

from __future__ import annotations

from calcplan.core.errors import ScriptSyntaxError
from calcplan.sandbox import nodes
from calcplan.sandbox.lexer import EOF, IDENT, NEWLINE, NUMBER, OP, STRING, Token, tokenize

_BINARY_LEVELS: tuple[tuple[str, ...], ...] = (
    ("||",),
    ("&&",),
    ("==", "!="),
    ("<", "<=", ">", ">="),
    ("+", "-"),
    ("*", "/", "%"),
)
MAX_DEPTH = 64


class Parser:
    """Parser over a token list."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    # -------------------------------------------------------------------------
    # Token helpers
    # -------------------------------------------------------------------------
    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.kind != EOF:
            self.pos += 1
        return token

    def _check(self, kind: str, value: str | None = None) -> bool:
        token = self.current
        return token.kind == kind and (value is None or token.value == value)

    def _match(self, kind: str, value: str | None = None) -> bool:
        if self._check(kind, value):
            self._advance()
            return True
        return False

    def _expect(self, kind: str, value: str | None = None) -> Token:
        if not self._check(kind, value):
            wanted = value or kind
            got = self.current.value or self.current.kind
            raise ScriptSyntaxError(f"Expected {wanted!r}, got {got!r}", self.current.pos)
        return self._advance()

    # -------------------------------------------------------------------------
    # Grammar
    # -------------------------------------------------------------------------
    def parse_script(self) -> nodes.Script:
        assignments: list[nodes.Assignment] = []
        while self._match(NEWLINE):
            pass
        while not self._check(EOF):
            name = self._expect(IDENT)
            if name.value in nodes.KEYWORDS:
                raise ScriptSyntaxError(f"Cannot assign to {name.value!r}", name.pos)
            self._expect(OP, "=")
            value = self.parse_expr()
            assignments.append(nodes.Assignment(str(name.value), value))
            if not self._check(EOF):
                self._expect(NEWLINE)
            while self._match(NEWLINE):
                pass
        return nodes.Script(header="", assignments=tuple(assignments))

    def parse_expr(self) -> nodes.Expr:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise ScriptSyntaxError("Expression nested too deeply", self.current.pos)
        try:
            if self._match(OP, "=>"):
                return nodes.Deferred(self.parse_expr())
            return self._ternary()
        finally:
            self.depth -= 1

    def _ternary(self) -> nodes.Expr:
        test = self._binary(0)
        if self._match(OP, "?"):
            then = self.parse_expr()
            self._expect(OP, ":")
            orelse = self.parse_expr()
            return nodes.Conditional(test, then, orelse)
        return test

    def _binary(self, level: int) -> nodes.Expr:
        if level == len(_BINARY_LEVELS):
            return self._unary()
        left = self._binary(level + 1)
        while self.current.kind == OP and self.current.value in _BINARY_LEVELS[level]:
            op = str(self._advance().value)
            right = self._binary(level + 1)
            left = nodes.Binary(op, left, right)
        return left

    def _unary(self) -> nodes.Expr:
        if self.current.kind == OP and self.current.value in ("-", "+", "!"):
            op = str(self._advance().value)
            self.depth += 1
            if self.depth > MAX_DEPTH:
                raise ScriptSyntaxError("Expression nested too deeply", self.current.pos)
            try:
                return nodes.Unary(op, self._unary())
            finally:
                self.depth -= 1
        return self._postfix()

    def _postfix(self) -> nodes.Expr:
        node = self._primary()
        while True:
            if self._match(OP, "."):
                name = self._expect(IDENT)
                node = nodes.Member(node, str(name.value))
            elif self._match(OP, "["):
                index = self.parse_expr()
                self._expect(OP, "]")
                node = nodes.Index(node, index)
            elif self._match(OP, "("):
                args: list[nodes.Expr] = []
                if not self._check(OP, ")"):
                    args.append(self.parse_expr())
                    while self._match(OP, ","):
                        args.append(self.parse_expr())
                self._expect(OP, ")")
                node = nodes.Call(node, tuple(args))
            else:
                return node

    def _primary(self) -> nodes.Expr:
        token = self.current
        if token.kind == NUMBER:
            self._advance()
            return nodes.Number(float(token.value))
        if token.kind == STRING:
            self._advance()
            return nodes.String(str(token.value))
        if token.kind == IDENT:
            self._advance()
            if token.value == "true":
                return nodes.Bool(True)
            if token.value == "false":
                return nodes.Bool(False)
            if token.value == "null":
                return nodes.Null()
            return nodes.Name(str(token.value))
        if self._match(OP, "("):
            inner = self.parse_expr()
            self._expect(OP, ")")
            return inner
        if self._match(OP, "["):
            return self._list()
        if self._match(OP, "{"):
            return self._record()
        got = token.value or token.kind
        raise ScriptSyntaxError(f"Unexpected token {got!r}", token.pos)

    def _list(self) -> nodes.ListExpr:
        items: list[nodes.Expr] = []
        while not self._check(OP, "]"):
            items.append(self.parse_expr())
            if not self._match(OP, ","):
                break
        self._expect(OP, "]")
        return nodes.ListExpr(tuple(items))

    def _record(self) -> nodes.RecordExpr:
        entries: list[tuple[str, nodes.Expr]] = []
        seen: set[str] = set()
        while not self._check(OP, "}"):
            token = self.current
            if token.kind in (IDENT, STRING):
                self._advance()
                key = str(token.value)
            else:
                raise ScriptSyntaxError(f"Expected record key, got {token.value!r}", token.pos)
            if key in seen:
                raise ScriptSyntaxError(f"Duplicate record key {key!r}", token.pos)
            seen.add(key)
            self._expect(OP, ":")
            entries.append((key, self.parse_expr()))
            if not self._match(OP, ","):
                break
        self._expect(OP, "}")
        return nodes.RecordExpr(tuple(entries))


def parse_script(text: str) -> nodes.Script:
    """Parse full script text into a Script node."""
    return Parser(tokenize(text)).parse_script()


def parse_expression(text: str) -> nodes.Expr:
    """Parse a single expression; trailing tokens are an error."""
    parser = Parser(tokenize(text))
    expr = parser.parse_expr()
    while parser._match(NEWLINE):
        pass
    if not parser._check(EOF):
        raise ScriptSyntaxError(f"Unexpected trailing token {parser.current.value!r}", parser.current.pos)
    return expr
