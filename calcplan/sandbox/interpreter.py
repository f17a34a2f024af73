"""Tree-walking evaluator for the calculation script language.

Values are Python ``float``, ``bool``, ``str``, ``None``, ``list`` and
``dict`` (records), plus ``Closure`` for deferred expressions,
``HelperFunction`` for whitelisted helpers and any object implementing the
``StandIn`` interface. Only helpers and stand-ins can be called; there is no
way to reach Python attributes or builtins from script text.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from calcplan.core.errors import EvaluationError
from calcplan.sandbox import nodes


class StandIn(ABC):
    """Interface for inert values that absorb member access, indexing and calls."""

    @abstractmethod
    def member(self, name: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    def index(self, key: Any) -> Any:
        raise NotImplementedError

    @abstractmethod
    def invoke(self, args: list[Any]) -> Any:
        raise NotImplementedError

    @abstractmethod
    def as_number(self) -> float:
        raise NotImplementedError

    @abstractmethod
    def truthy(self) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class HelperFunction:
    """Whitelisted callable exposed to scripts, optionally with callable members."""

    name: str
    fn: Callable[..., Any]
    members: Mapping[str, HelperFunction] = field(default_factory=dict)

    def __call__(self, *args: Any) -> Any:
        return self.fn(*args)


@dataclass(frozen=True)
class Closure:
    """A deferred expression bound to the module scope it was defined in."""

    body: nodes.Expr
    scope: Mapping[str, Any]

    def invoke(self, bindings: Mapping[str, Any]) -> Any:
        env = dict(self.scope)
        env.update(bindings)
        return Interpreter(env).evaluate(self.body)


def describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "record"
    if isinstance(value, Closure):
        return "deferred expression"
    if isinstance(value, HelperFunction):
        return f"helper {value.name}"
    if isinstance(value, StandIn):
        return "stand-in"
    return type(value).__name__


def to_number(value: Any) -> float:
    """Numeric coercion: null/false -> 0, true -> 1, stand-ins -> their number."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, StandIn):
        return value.as_number()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            raise EvaluationError(f"Cannot convert string {value!r} to a number") from None
    raise EvaluationError(f"Cannot convert {describe(value)} to a number")


def truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    if isinstance(value, StandIn):
        return value.truthy()
    return True


def _comparable(value: Any) -> Any:
    if isinstance(value, StandIn):
        return value.as_number()
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    return value


class Interpreter:
    """Evaluate expression nodes against an environment of bindings."""

    def __init__(self, env: Mapping[str, Any]):
        self.env = env

    def evaluate(self, node: nodes.Expr) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__}", None)
        if method is None:
            raise EvaluationError(f"Cannot evaluate node {type(node).__name__}")
        return method(node)

    # Literals ---------------------------------------------------------------
    def _eval_Number(self, node: nodes.Number) -> float:
        return float(node.value)

    def _eval_String(self, node: nodes.String) -> str:
        return node.value

    def _eval_Bool(self, node: nodes.Bool) -> bool:
        return node.value

    def _eval_Null(self, node: nodes.Null) -> None:
        return None

    def _eval_ListExpr(self, node: nodes.ListExpr) -> list[Any]:
        return [self.evaluate(item) for item in node.items]

    def _eval_RecordExpr(self, node: nodes.RecordExpr) -> dict[str, Any]:
        return {key: self.evaluate(value) for key, value in node.entries}

    def _eval_Deferred(self, node: nodes.Deferred) -> Closure:
        return Closure(node.body, dict(self.env))

    def _eval_Verbatim(self, node: nodes.Verbatim) -> Any:
        raise EvaluationError("Verbatim text must be parsed before evaluation")

    # Names and access -------------------------------------------------------
    def _eval_Name(self, node: nodes.Name) -> Any:
        if node.id not in self.env:
            raise EvaluationError(f"Name {node.id!r} is not defined")
        return self.env[node.id]

    def _eval_Member(self, node: nodes.Member) -> Any:
        obj = self.evaluate(node.obj)
        return self.member(obj, node.name)

    def member(self, obj: Any, name: str) -> Any:
        if isinstance(obj, StandIn):
            return obj.member(name)
        if isinstance(obj, dict):
            return obj.get(name)
        if isinstance(obj, HelperFunction):
            if name in obj.members:
                return obj.members[name]
            raise EvaluationError(f"Helper {obj.name} has no member {name!r}")
        if isinstance(obj, (list, str)) and name == "length":
            return float(len(obj))
        raise EvaluationError(f"Cannot read member {name!r} of {describe(obj)}")

    def _eval_Index(self, node: nodes.Index) -> Any:
        obj = self.evaluate(node.obj)
        key = self.evaluate(node.index)
        if isinstance(obj, StandIn):
            return obj.index(key)
        if isinstance(obj, dict):
            if not isinstance(key, str):
                raise EvaluationError(f"Record index must be a string, got {describe(key)}")
            return obj.get(key)
        if isinstance(obj, (list, str)):
            position = to_number(key)
            if not position.is_integer():
                return None
            position_int = int(position)
            return obj[position_int] if 0 <= position_int < len(obj) else None
        raise EvaluationError(f"Cannot index {describe(obj)}")

    def _eval_Call(self, node: nodes.Call) -> Any:
        func = self.evaluate(node.func)
        args = [self.evaluate(a) for a in node.args]
        if isinstance(func, HelperFunction):
            try:
                return func(*args)
            except TypeError as e:
                raise EvaluationError(f"Bad call to {func.name}: {e}") from e
        if isinstance(func, StandIn):
            return func.invoke(args)
        raise EvaluationError(f"{describe(func)} is not callable")

    # Operators --------------------------------------------------------------
    def _eval_Unary(self, node: nodes.Unary) -> Any:
        value = self.evaluate(node.operand)
        if node.op == "!":
            return not truthy(value)
        number = to_number(value)
        return -number if node.op == "-" else number

    def _eval_Binary(self, node: nodes.Binary) -> Any:
        op = node.op
        if op == "&&":
            left = self.evaluate(node.left)
            return self.evaluate(node.right) if truthy(left) else left
        if op == "||":
            left = self.evaluate(node.left)
            return left if truthy(left) else self.evaluate(node.right)

        left = self.evaluate(node.left)
        right = self.evaluate(node.right)

        if op == "+" and (isinstance(left, str) or isinstance(right, str)):
            return self._text(left) + self._text(right)
        if op in ("==", "!="):
            equal = _comparable(left) == _comparable(right)
            return equal if op == "==" else not equal
        if op in ("<", "<=", ">", ">="):
            if isinstance(left, str) and isinstance(right, str):
                a, b = left, right
            else:
                a, b = to_number(left), to_number(right)
            return {"<": a < b, "<=": a <= b, ">": a > b, ">=": a >= b}[op]

        a, b = to_number(left), to_number(right)
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        # Division and modulo by zero are total and yield 0
        if op == "/":
            return a / b if b else 0.0
        if op == "%":
            return math.fmod(a, b) if b else 0.0
        raise EvaluationError(f"Unknown operator {op!r}")

    def _eval_Conditional(self, node: nodes.Conditional) -> Any:
        if truthy(self.evaluate(node.test)):
            return self.evaluate(node.then)
        return self.evaluate(node.orelse)

    def _text(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return nodes.format_number(value) if math.isfinite(value) else str(value)
        if isinstance(value, StandIn):
            return nodes.format_number(value.as_number())
        raise EvaluationError(f"Cannot convert {describe(value)} to text")


# ---------------------------------------------------------------------------
# Pure helpers shared by every calc context
# ---------------------------------------------------------------------------
def _num(value: Any = None) -> float:
    if isinstance(value, (list, dict)):
        return 0.0
    try:
        number = to_number(value)
    except EvaluationError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _pick(value: Any, position: Any = 0.0) -> Any:
    """Element of a list-valued table, or the value itself when scalar."""
    if isinstance(value, list):
        idx = int(to_number(position))
        return value[idx] if 0 <= idx < len(value) else None
    return value


def _sum(value: Any) -> float:
    if isinstance(value, list):
        return sum(_num(v) for v in value)
    return _num(value)


def _is_list(value: Any) -> bool:
    return isinstance(value, list)


def _min(*values: Any) -> float:
    if not values:
        raise EvaluationError("min() needs at least one argument")
    return min(to_number(v) for v in values)


def _max(*values: Any) -> float:
    if not values:
        raise EvaluationError("max() needs at least one argument")
    return max(to_number(v) for v in values)


def _round(value: Any, digits: Any = 0.0) -> float:
    return float(round(to_number(value), int(to_number(digits))))


PURE_HELPERS: dict[str, HelperFunction] = {
    "num": HelperFunction("num", _num),
    "pick": HelperFunction("pick", _pick),
    "sum": HelperFunction("sum", _sum),
    "isList": HelperFunction("isList", _is_list),
    "min": HelperFunction("min", _min),
    "max": HelperFunction("max", _max),
    "round": HelperFunction("round", _round),
}
