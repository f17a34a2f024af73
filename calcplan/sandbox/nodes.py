"""AST node types for the calculation script language, plus unparsing.

The renderer builds these nodes and unparses them to text; the parser
produces them from text. ``Verbatim`` is renderer-only: it carries
expression text that is emitted as-is and checked when the text is parsed.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Union

IDENT_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
KEYWORDS = frozenset({"true", "false", "null"})


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class String:
    value: str


@dataclass(frozen=True)
class Bool:
    value: bool


@dataclass(frozen=True)
class Null:
    pass


@dataclass(frozen=True)
class Name:
    id: str


@dataclass(frozen=True)
class Member:
    obj: Expr
    name: str


@dataclass(frozen=True)
class Index:
    obj: Expr
    index: Expr


@dataclass(frozen=True)
class Call:
    func: Expr
    args: tuple[Expr, ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Expr


@dataclass(frozen=True)
class Binary:
    op: str
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Conditional:
    test: Expr
    then: Expr
    orelse: Expr


@dataclass(frozen=True)
class ListExpr:
    items: tuple[Expr, ...]


@dataclass(frozen=True)
class RecordExpr:
    entries: tuple[tuple[str, Expr], ...]


@dataclass(frozen=True)
class Deferred:
    body: Expr


@dataclass(frozen=True)
class Verbatim:
    text: str


@dataclass(frozen=True)
class Assignment:
    name: str
    value: Expr


@dataclass(frozen=True)
class Script:
    header: str
    assignments: tuple[Assignment, ...]


Expr = Union[
    Number, String, Bool, Null, Name, Member, Index, Call, Unary, Binary,
    Conditional, ListExpr, RecordExpr, Deferred, Verbatim,
]

# Binding power per binary operator; higher binds tighter.
PRECEDENCE: dict[str, int] = {
    "||": 1,
    "&&": 2,
    "==": 3, "!=": 3,
    "<": 4, "<=": 4, ">": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "%": 6,
}
_UNARY_PREC = 7
_POSTFIX_PREC = 8
_TERNARY_PREC = 0


# ---------------------------------------------------------------------------
# Convenience constructors used by the renderer
# ---------------------------------------------------------------------------
def lit(value) -> Expr:
    """Build a literal node from a Python value."""
    if value is None:
        return Null()
    if isinstance(value, bool):
        return Bool(value)
    if isinstance(value, (int, float)):
        return Number(float(value))
    if isinstance(value, str):
        return String(value)
    if isinstance(value, (list, tuple)):
        return ListExpr(tuple(lit(v) for v in value))
    if isinstance(value, dict):
        return RecordExpr(tuple((str(k), lit(v)) for k, v in value.items()))
    raise TypeError(f"Unsupported literal type: {type(value).__name__}")


def call(func: str, *args: Expr) -> Call:
    """Call a helper by dotted name, e.g. call('dmg.basic', ...)."""
    head, *rest = func.split(".")
    target: Expr = Name(head)
    for part in rest:
        target = Member(target, part)
    return Call(target, tuple(args))


def path(*parts: str) -> Expr:
    node: Expr = Name(parts[0])
    for part in parts[1:]:
        node = Member(node, part)
    return node


def binop(op: str, left: Expr, right: Expr) -> Binary:
    return Binary(op, left, right)


def referenced_names(node: Expr) -> set[str]:
    """Free names an expression reads (member names are not names)."""
    if isinstance(node, Name):
        return {node.id}
    if isinstance(node, (Member, Deferred)):
        return referenced_names(node.obj if isinstance(node, Member) else node.body)
    if isinstance(node, Index):
        return referenced_names(node.obj) | referenced_names(node.index)
    if isinstance(node, Call):
        names = referenced_names(node.func)
        for arg in node.args:
            names |= referenced_names(arg)
        return names
    if isinstance(node, Unary):
        return referenced_names(node.operand)
    if isinstance(node, Binary):
        return referenced_names(node.left) | referenced_names(node.right)
    if isinstance(node, Conditional):
        return referenced_names(node.test) | referenced_names(node.then) | referenced_names(node.orelse)
    if isinstance(node, ListExpr):
        return set().union(*(referenced_names(item) for item in node.items))
    if isinstance(node, RecordExpr):
        return set().union(*(referenced_names(value) for _, value in node.entries))
    return set()


# ---------------------------------------------------------------------------
# Unparsing
# ---------------------------------------------------------------------------
def format_number(value: float) -> str:
    if value != value or value in (float("inf"), float("-inf")):
        raise ValueError(f"Cannot emit non-finite number: {value}")
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def format_string(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def format_key(key: str) -> str:
    return key if IDENT_RE.match(key) and key not in KEYWORDS else format_string(key)


def _precedence(node: Expr) -> int:
    if isinstance(node, Binary):
        return PRECEDENCE[node.op]
    if isinstance(node, Conditional):
        return _TERNARY_PREC
    if isinstance(node, Unary):
        return _UNARY_PREC
    if isinstance(node, Deferred):
        return -1
    return _POSTFIX_PREC + 1


def _wrap(node: Expr, min_prec: int, indent: int) -> str:
    text = unparse_expr(node, indent)
    return f"({text})" if _precedence(node) < min_prec else text


def _is_block(node: Expr) -> bool:
    """Records holding deferred or nested records, and lists of records, span lines."""
    if isinstance(node, RecordExpr):
        return any(isinstance(v, (Deferred, RecordExpr)) for _, v in node.entries)
    if isinstance(node, ListExpr):
        return any(isinstance(v, RecordExpr) for v in node.items)
    return False


def unparse_expr(node: Expr, indent: int = 0) -> str:
    """Render an expression node as script text."""
    pad = "  " * indent
    inner = "  " * (indent + 1)

    if isinstance(node, Number):
        return format_number(node.value)
    if isinstance(node, String):
        return format_string(node.value)
    if isinstance(node, Bool):
        return "true" if node.value else "false"
    if isinstance(node, Null):
        return "null"
    if isinstance(node, Name):
        return node.id
    if isinstance(node, Verbatim):
        return f"({node.text.strip()})"
    if isinstance(node, Member):
        return f"{_wrap(node.obj, _POSTFIX_PREC, indent)}.{node.name}"
    if isinstance(node, Index):
        return f"{_wrap(node.obj, _POSTFIX_PREC, indent)}[{unparse_expr(node.index, indent)}]"
    if isinstance(node, Call):
        args = ", ".join(unparse_expr(a, indent) for a in node.args)
        return f"{_wrap(node.func, _POSTFIX_PREC, indent)}({args})"
    if isinstance(node, Unary):
        return f"{node.op}{_wrap(node.operand, _UNARY_PREC, indent)}"
    if isinstance(node, Binary):
        prec = PRECEDENCE[node.op]
        left = _wrap(node.left, prec, indent)
        # Right operand of a left-associative operator needs parens at equal precedence
        right = _wrap(node.right, prec + 1, indent)
        return f"{left} {node.op} {right}"
    if isinstance(node, Conditional):
        test = _wrap(node.test, 1, indent)
        then = _wrap(node.then, 1, indent)
        orelse = _wrap(node.orelse, _TERNARY_PREC, indent)
        return f"{test} ? {then} : {orelse}"
    if isinstance(node, Deferred):
        return f"=> {unparse_expr(node.body, indent)}"
    if isinstance(node, ListExpr):
        if not node.items:
            return "[]"
        if _is_block(node):
            rows = [f"{inner}{unparse_expr(item, indent + 1)}" for item in node.items]
            return "[\n" + ",\n".join(rows) + f"\n{pad}]"
        return "[" + ", ".join(unparse_expr(item, indent) for item in node.items) + "]"
    if isinstance(node, RecordExpr):
        if not node.entries:
            return "{}"
        if _is_block(node):
            rows = [
                f"{inner}{format_key(k)}: {unparse_expr(v, indent + 1)}" for k, v in node.entries
            ]
            return "{\n" + ",\n".join(rows) + f"\n{pad}}}"
        return "{" + ", ".join(f"{format_key(k)}: {unparse_expr(v, indent)}" for k, v in node.entries) + "}"
    raise TypeError(f"Unknown node type: {type(node).__name__}")


def unparse_script(script: Script) -> str:
    lines: list[str] = []
    if script.header:
        for line in script.header.splitlines():
            lines.append(f"# {line}" if line else "#")
    for assignment in script.assignments:
        block = _is_block(assignment.value)
        if block and lines and lines[-1] != "":
            lines.append("")
        lines.append(f"{assignment.name} = {unparse_expr(assignment.value)}")
        if block:
            lines.append("")
    return "\n".join(lines).rstrip("\n") + "\n"
