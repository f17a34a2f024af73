"""Two-pass sandbox validation of rendered calculation scripts."""

from __future__ import annotations

import itertools
import math
import re
from dataclasses import dataclass, field
from typing import Any

from calcplan.core.errors import (
    EvaluationError,
    RuntimeCheckError,
    SandboxError,
    ScriptSyntaxError,
    StaticCheckError,
)
from calcplan.core.models import Game
from calcplan.sandbox.context import ZeroCalcContext
from calcplan.sandbox.interpreter import Closure, Interpreter, describe
from calcplan.sandbox.parser import parse_script
from calcplan.utils.logger import setup_logger

logger = setup_logger(__name__)

REQUIRED_EXPORTS = ("details", "defDmgIdx", "defDmgKey", "mainAttr", "buffs", "createdBy", "game")


@dataclass
class LoadedScript:
    """Module-scope values of a script after the static pass."""

    game: Game
    details: list[dict[str, Any]]
    buffs: list[dict[str, Any]]
    def_dmg_idx: int
    def_dmg_key: str
    main_attr: str
    created_by: str
    exports: dict[str, Any] = field(default_factory=dict)


def load_script(text: str) -> LoadedScript:
    """Parse the script and evaluate its module scope with no external bindings."""
    try:
        script = parse_script(text)
    except ScriptSyntaxError as e:
        raise StaticCheckError(f"syntax error: {e}") from e

    env: dict[str, Any] = {}
    for assignment in script.assignments:
        if assignment.name in env:
            raise StaticCheckError(f"export {assignment.name!r} assigned twice")
        try:
            env[assignment.name] = Interpreter(env).evaluate(assignment.value)
        except EvaluationError as e:
            raise StaticCheckError(f"module scope, {assignment.name}: {e}") from e

    missing = [name for name in REQUIRED_EXPORTS if name not in env]
    if missing:
        raise StaticCheckError(f"missing exports: {', '.join(missing)}")

    try:
        game = Game(env["game"])
    except ValueError:
        raise StaticCheckError(f"game export must be one of gs|sr, got {env['game']!r}") from None

    details = env["details"]
    buffs = env["buffs"]
    if not isinstance(details, list) or not all(isinstance(d, dict) for d in details):
        raise StaticCheckError("details must be a list of records")
    if not isinstance(buffs, list) or not all(isinstance(b, dict) for b in buffs):
        raise StaticCheckError("buffs must be a list of records")
    for name in ("defDmgKey", "mainAttr", "createdBy"):
        if not isinstance(env[name], str):
            raise StaticCheckError(f"{name} must be a string, got {describe(env[name])}")
    idx = env["defDmgIdx"]
    if not isinstance(idx, float) or not idx.is_integer():
        raise StaticCheckError(f"defDmgIdx must be an integer, got {describe(idx)}")
    if details and not 0 <= idx < len(details):
        raise StaticCheckError(f"defDmgIdx {int(idx)} out of range for {len(details)} details")

    for i, detail in enumerate(details):
        if not isinstance(detail.get("title"), str) or not detail["title"]:
            raise StaticCheckError(f"details[{i}] has no title")
        if not isinstance(detail.get("dmg"), Closure):
            raise StaticCheckError(f"details[{i}] ({detail['title']}) dmg must be a deferred expression")
        check = detail.get("check")
        if check is not None and not isinstance(check, Closure):
            raise StaticCheckError(f"details[{i}] check must be a deferred expression")
    for i, buff in enumerate(buffs):
        if not isinstance(buff.get("title"), str) or not buff["title"]:
            raise StaticCheckError(f"buffs[{i}] has no title")
        data = buff.get("data", {})
        if not isinstance(data, dict):
            raise StaticCheckError(f"buffs[{i}] data must be a record")

    return LoadedScript(
        game=game,
        details=details,
        buffs=buffs,
        def_dmg_idx=int(idx),
        def_dmg_key=env["defDmgKey"],
        main_attr=env["mainAttr"],
        created_by=env["createdBy"],
        exports=env,
    )


# ---------------------------------------------------------------------------
# Buff literal sanity bounds
# ---------------------------------------------------------------------------
_PERCENT_LIKE = re.compile(r"(Pct|Dmg|Enemydmg|Cdmg|Cpct|Multi|Def|Ignore)$|^(cpct|cdmg|dmg|enemydmg|heal|shield|recharge|kx|fykx|phy)$")


def check_buff_bounds(game: Game, buffs: list[dict[str, Any]]) -> None:
    """Reject literal buff values far outside what any real kit grants."""
    for i, buff in enumerate(buffs):
        data = buff.get("data") or {}
        for key, value in data.items():
            if not isinstance(value, float) or key.startswith("_"):
                continue
            where = f"buffs[{i}] ({buff.get('title')}) {key}={value:g}"
            if not math.isfinite(value):
                raise StaticCheckError(f"{where}: not finite")
            if key == "cpct" and value > 100:
                raise StaticCheckError(f"{where}: crit rate above 100")
            if key == "kx" and game == Game.SR and value > 100:
                raise StaticCheckError(f"{where}: resistance shred above 100")
            if key == "enemyDef" and value > 120:
                raise StaticCheckError(f"{where}: defense shred above 120")
            if key.lower().endswith("enemydmg") and value > 250:
                raise StaticCheckError(f"{where}: vulnerability above 250")
            if _PERCENT_LIKE.search(key):
                limit = 5000 if game == Game.SR and key.endswith("Dmg") else 500
                if value > limit:
                    raise StaticCheckError(f"{where}: percent value above {limit}")
                if value < -80:
                    raise StaticCheckError(f"{where}: negative percent below -80")


# ---------------------------------------------------------------------------
# Runtime pass
# ---------------------------------------------------------------------------
def _check_number(value: Any, where: str) -> None:
    if value is None or isinstance(value, bool):
        return
    if isinstance(value, float) and math.isfinite(value):
        return
    raise RuntimeCheckError(f"{where}: expected a number, got {describe(value)}")


def _check_result(value: Any, where: str) -> None:
    if not isinstance(value, dict):
        raise RuntimeCheckError(f"{where}: expected a damage result record, got {describe(value)}")
    dmg = value.get("dmg")
    if not isinstance(dmg, float) or not math.isfinite(dmg):
        raise RuntimeCheckError(f"{where}: damage result has no finite dmg value")
    avg = value.get("avg")
    if avg is not None and not (isinstance(avg, float) and math.isfinite(avg)):
        raise RuntimeCheckError(f"{where}: damage result avg is not finite")


def _invoke(closure: Closure, bindings: dict[str, Any], where: str) -> Any:
    try:
        return closure.invoke(bindings)
    except EvaluationError as e:
        raise RuntimeCheckError(f"{where}: {e}") from e
    except (ArithmeticError, RecursionError) as e:
        raise RuntimeCheckError(f"{where}: {type(e).__name__}: {e}") from e


def _context_variants(game: Game) -> list[ZeroCalcContext]:
    return [
        ZeroCalcContext(game=game, truthy=truthy, array_tables=array_tables, cons=cons)
        for truthy, array_tables, cons in itertools.product((False, True), (False, True), (0, 6))
    ]


class SandboxValidator:
    """Static and runtime checks on rendered script text."""

    def static_check(self, text: str) -> LoadedScript:
        """Load with no bindings and verify the export contract."""
        loaded = load_script(text)
        check_buff_bounds(loaded.game, loaded.buffs)
        return loaded

    def runtime_check(self, text: str) -> int:
        """Invoke every entry point with zero stand-ins; returns the number of invocations."""
        loaded = load_script(text)
        invocations = 0

        for ctx in _context_variants(loaded.game):
            bindings = ctx.bindings()
            for i, detail in enumerate(loaded.details):
                where = f"details[{i}] ({detail['title']})"
                if detail.get("check") is not None:
                    _invoke(detail["check"], bindings, f"{where} check")
                    invocations += 1
                _check_result(_invoke(detail["dmg"], bindings, f"{where} dmg"), where)
                invocations += 1

            for i, buff in enumerate(loaded.buffs):
                where = f"buffs[{i}] ({buff['title']})"
                if isinstance(buff.get("check"), Closure):
                    _invoke(buff["check"], bindings, f"{where} check")
                    invocations += 1
                for key, value in (buff.get("data") or {}).items():
                    if isinstance(value, Closure):
                        value = _invoke(value, bindings, f"{where} data.{key}")
                        invocations += 1
                    _check_number(value, f"{where} data.{key}")

        return invocations

    def validate(self, text: str) -> None:
        """Run both passes; raises a SandboxError subclass on the first failure."""
        try:
            self.static_check(text)
            count = self.runtime_check(text)
        except SandboxError as e:
            logger.debug(f"Sandbox rejected script: {e}")
            raise
        logger.debug(f"Sandbox passed ({count} invocations)")
