"""Calculation contexts that scripts are evaluated against.

``CalcContext`` is the interface a damage engine implements. ``ZeroCalcContext``
is its no-op implementation for the sandbox: every table, attribute and
parameter is a ``ZeroStandIn`` and every damage helper returns a zero result.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from calcplan.core.models import Game
from calcplan.sandbox.interpreter import PURE_HELPERS, HelperFunction, StandIn, to_number


class ZeroStandIn(StandIn):
    """Absorbs any member access, index or call and coerces to zero.

    ``truthy`` controls how the stand-in behaves in boolean tests, so a
    runtime pass can drive both arms of a conditional.
    """

    def __init__(self, truthy: bool = False):
        self._truthy = truthy

    def member(self, name: str) -> Any:
        return self

    def index(self, key: Any) -> Any:
        return self

    def invoke(self, args: list[Any]) -> Any:
        return self

    def as_number(self) -> float:
        return 0.0

    def truthy(self) -> bool:
        return self._truthy

    def __repr__(self) -> str:
        return f"ZeroStandIn(truthy={self._truthy})"


class TableStandIn(ZeroStandIn):
    """Talent table stand-in; string-keyed lookups yield list-shaped values when asked."""

    def __init__(self, truthy: bool = False, array_tables: bool = False):
        super().__init__(truthy)
        self._array_tables = array_tables

    def member(self, name: str) -> Any:
        return TableStandIn(self._truthy, self._array_tables)

    def index(self, key: Any) -> Any:
        if self._array_tables and isinstance(key, str):
            return [ZeroStandIn(self._truthy), ZeroStandIn(self._truthy)]
        return ZeroStandIn(self._truthy)


def zero_result() -> dict[str, float]:
    return {"dmg": 0.0, "avg": 0.0}


class CalcContext(ABC):
    """Context for evaluating deferred script expressions.

    Subclasses provide the engine-facing helpers; ``bindings`` exposes them to
    scripts under fixed names alongside the talent/attr/params data.
    """

    def __init__(
        self,
        game: Game = Game.GS,
        talent: Any = None,
        attr: Any = None,
        params: Any = None,
        cons: int = 0,
        weapon: Any = None,
        trees: Any = None,
        element: str = "",
        current_talent: str = "",
    ):
        self.game = game
        self.talent = talent if talent is not None else {}
        self.attr = attr if attr is not None else {}
        self.params = params if params is not None else {}
        self.cons = cons
        self.weapon = weapon if weapon is not None else {}
        self.trees = trees if trees is not None else {}
        self.element = element
        self.current_talent = current_talent

    # Engine helpers ---------------------------------------------------------
    @abstractmethod
    def damage(self, pct: Any, key: Any = None, ele: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def basic_damage(self, base: Any, key: Any = None, ele: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def heal(self, amount: Any) -> Any:
        raise NotImplementedError

    @abstractmethod
    def shield(self, amount: Any) -> Any:
        raise NotImplementedError

    @abstractmethod
    def reaction(self, reaction_id: Any) -> Any:
        raise NotImplementedError

    def calc(self, value: Any) -> float:
        """Resolve an attribute entry ({base, plus, pct}) or plain number to a total."""
        if isinstance(value, dict):
            base = to_number(value.get("base"))
            plus = to_number(value.get("plus"))
            pct = to_number(value.get("pct"))
            return base * (1 + pct / 100) + plus
        return to_number(value)

    def to_ratio(self, value: Any) -> float:
        """Table percentages: GS stores whole percents, SR stores ratios."""
        if isinstance(value, list):
            value = value[0] if value else 0.0
        number = to_number(value)
        return number / 100 if self.game == Game.GS else number

    # Script bindings --------------------------------------------------------
    def bindings(self) -> dict[str, Any]:
        dmg = HelperFunction(
            "dmg",
            self.damage,
            members={"basic": HelperFunction("dmg.basic", self.basic_damage)},
        )
        env: dict[str, Any] = dict(PURE_HELPERS)
        env.update({
            "talent": self.talent,
            "attr": self.attr,
            "params": self.params,
            "cons": float(self.cons),
            "weapon": self.weapon,
            "trees": self.trees,
            "element": self.element,
            "currentTalent": self.current_talent,
            "dmg": dmg,
            "heal": HelperFunction("heal", self.heal),
            "shield": HelperFunction("shield", self.shield),
            "reaction": HelperFunction("reaction", self.reaction),
            "calc": HelperFunction("calc", self.calc),
            "toRatio": HelperFunction("toRatio", self.to_ratio),
        })
        return env


class ZeroCalcContext(CalcContext):
    """No-op context: zero-valued stand-ins everywhere, zero damage results."""

    def __init__(
        self,
        game: Game = Game.GS,
        truthy: bool = False,
        array_tables: bool = False,
        cons: int = 0,
    ):
        super().__init__(
            game=game,
            talent=TableStandIn(truthy, array_tables),
            attr=ZeroStandIn(truthy),
            params=ZeroStandIn(truthy),
            cons=cons,
            weapon=ZeroStandIn(truthy),
            trees=ZeroStandIn(truthy),
            element="",
            current_talent="",
        )

    def damage(self, pct: Any = None, key: Any = None, ele: Any = None) -> dict[str, float]:
        to_number(pct)
        return zero_result()

    def basic_damage(self, base: Any = None, key: Any = None, ele: Any = None) -> dict[str, float]:
        to_number(base)
        return zero_result()

    def heal(self, amount: Any = None) -> dict[str, float]:
        to_number(amount)
        return zero_result()

    def shield(self, amount: Any = None) -> dict[str, float]:
        to_number(amount)
        return zero_result()

    def reaction(self, reaction_id: Any = None) -> dict[str, float]:
        return zero_result()

    def calc(self, value: Any = None) -> float:
        if isinstance(value, dict):
            return super().calc(value)
        return to_number(value)
