"""Compile a validated Plan into calculation script text."""

from __future__ import annotations

from typing import Any

from calcplan.core.errors import RenderError
from calcplan.core.models import Buff, Detail, DetailKind, Plan, PlanInput, Provenance
from calcplan.render.expressions import (
    reaction_call,
    support_amount,
    support_call,
    table_damage,
)
from calcplan.sandbox.nodes import (
    Assignment,
    Deferred,
    Expr,
    ListExpr,
    Number,
    RecordExpr,
    Script,
    String,
    Verbatim,
    lit,
    unparse_script,
)
from calcplan.utils.logger import setup_logger

logger = setup_logger(__name__)


def default_damage_key(plan: Plan) -> str:
    """Explicit plan key, else the first detail's key, else 'e'."""
    if plan.default_damage_key:
        return plan.default_damage_key
    for detail in plan.details:
        if detail.kind == DetailKind.DMG and detail.damage_key:
            return detail.damage_key
    return "e"


def default_damage_index(plan: Plan, key: str) -> int:
    for i, detail in enumerate(plan.details):
        if detail.kind == DetailKind.DMG and detail.damage_key == key:
            return i
    for i, detail in enumerate(plan.details):
        if detail.kind == DetailKind.DMG:
            return i
    return 0


class CodeRenderer:
    """Pure function of (plan, input, provenance) to script text."""

    HEADER_TEMPLATE = "Auto-generated by {provenance}.\n{name} ({game})"

    def render(self, plan: Plan, input: PlanInput, provenance: Provenance | str = Provenance.HEURISTIC) -> str:
        tag = provenance.value if isinstance(provenance, Provenance) else str(provenance)
        try:
            script = self.build_script(plan, input, tag)
            return unparse_script(script)
        except (TypeError, ValueError) as e:
            raise RenderError(f"failed to render plan for {input.name}: {e}") from e

    def build_script(self, plan: Plan, input: PlanInput, tag: str) -> Script:
        key = default_damage_key(plan)
        assignments = (
            Assignment("game", String(input.game.value)),
            Assignment("createdBy", String(tag)),
            Assignment("mainAttr", String(plan.main_attr_list)),
            Assignment("defDmgKey", String(key)),
            Assignment("defDmgIdx", Number(float(default_damage_index(plan, key)))),
            Assignment("details", ListExpr(tuple(self.detail_record(d, input) for d in plan.details))),
            Assignment("buffs", ListExpr(tuple(self.buff_record(b) for b in plan.buffs))),
        )
        header = self.HEADER_TEMPLATE.format(provenance=tag, name=input.name, game=input.game.value)
        return Script(header=header, assignments=assignments)

    # -------------------------------------------------------------------------
    # Details
    # -------------------------------------------------------------------------
    def detail_record(self, detail: Detail, input: PlanInput) -> RecordExpr:
        entries: list[tuple[str, Expr]] = [
            ("title", String(detail.title)),
            ("kind", String(detail.kind.value)),
        ]
        if detail.talent:
            entries.append(("talent", String(detail.talent)))
        if detail.kind != DetailKind.REACTION:
            entries.append(("dmgKey", String(detail.damage_key)))
        if detail.params:
            entries.append(("params", lit(_plain_params(detail.params))))
        if detail.cons is not None:
            entries.append(("cons", Number(float(detail.cons))))
        if detail.check_expr:
            entries.append(("check", Deferred(Verbatim(detail.check_expr))))
        entries.append(("dmg", Deferred(self.detail_expr(detail, input))))
        return RecordExpr(tuple(entries))

    def detail_expr(self, detail: Detail, input: PlanInput) -> Expr:
        if detail.raw_expr:
            return Verbatim(detail.raw_expr)
        if detail.kind == DetailKind.REACTION:
            return reaction_call(detail.reaction or "")
        if detail.kind in (DetailKind.HEAL, DetailKind.SHIELD):
            amount = support_amount(input, detail.talent, detail.table, detail.scale_stat)
            return support_call(detail.kind, amount)
        return table_damage(
            input,
            detail.talent,
            detail.table,
            detail.damage_key,
            element=detail.element,
            pick=detail.pick,
            scale_stat=detail.scale_stat,
            title=detail.title,
        )

    # -------------------------------------------------------------------------
    # Buffs
    # -------------------------------------------------------------------------
    def buff_record(self, buff: Buff) -> RecordExpr:
        entries: list[tuple[str, Expr]] = [("title", String(buff.title))]
        if buff.sort is not None:
            entries.append(("sort", Number(float(buff.sort))))
        if buff.constellation_req is not None:
            entries.append(("cons", Number(float(buff.constellation_req))))
        if buff.trace_req is not None:
            entries.append(("tree", Number(float(buff.trace_req))))
        if buff.check_expr:
            entries.append(("check", Deferred(Verbatim(buff.check_expr))))
        data: list[tuple[str, Expr]] = []
        for key, value in buff.data.items():
            if isinstance(value, str):
                data.append((key, Deferred(Verbatim(value))))
            else:
                data.append((key, Number(float(value))))
        entries.append(("data", RecordExpr(tuple(data))))
        return RecordExpr(tuple(entries))


def _plain_params(params: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if isinstance(v, (bool, int, float, str))}
