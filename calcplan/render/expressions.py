"""Builders for the helper-call expressions a detail row renders to.

Both the renderer and the enrichment rules use these, so a derived composite
row and a plain row read their tables exactly the same way.
"""

from __future__ import annotations

import re

from calcplan.core.models import DetailKind, Game, PlanInput
from calcplan.core.vocabulary import SCALE_STATS
from calcplan.planning.scaling import (
    infer_array_table_schema,
    infer_damage_stat,
    infer_support_stat,
)
from calcplan.sandbox.nodes import (
    Binary,
    Conditional,
    Expr,
    Index,
    Member,
    Name,
    Number,
    String,
    binop,
    call,
    lit,
    path,
)

TOTAL_TITLE_MARKER = re.compile(r"总|合计|total", re.IGNORECASE)

# Heal/shield values above this are flat amounts, not percentages
FLAT_THRESHOLD = {Game.GS: 200.0, Game.SR: 5.0}


def table_ref(talent: str, table: str) -> Expr:
    """``talent.<key>["<table>"]``"""
    return Index(Member(Name("talent"), talent), String(table))


def table_value(talent: str, table: str, position: int = 0) -> Expr:
    """Numeric element of a table that may be scalar or list-valued."""
    return call("num", call("pick", table_ref(talent, table), lit(position)))


def stat_total(stat: str) -> Expr:
    return call("calc", path("attr", stat))


def to_ratio(value: Expr) -> Expr:
    return call("toRatio", value)


def damage_call(amount: Expr, key: str, element: str | None = None, basic: bool = False) -> Expr:
    args: list[Expr] = [amount, String(key)]
    if element:
        args.append(String(element))
    return call("dmg.basic" if basic else "dmg", *args)


def scaled_damage(pct: Expr, stat: str, key: str, element: str | None = None) -> Expr:
    """``dmg(pct, ...)`` for attack scaling, else ``dmg.basic(calc(attr.stat) * toRatio(pct), ...)``."""
    if stat == "atk":
        return damage_call(pct, key, element)
    return damage_call(binop("*", stat_total(stat), to_ratio(pct)), key, element, basic=True)


def resolve_damage_stat(input: PlanInput, talent: str, table: str, scale_stat: str | None) -> str:
    if scale_stat in SCALE_STATS and scale_stat != "atk":
        return scale_stat
    return infer_damage_stat(input, talent, table)


def table_damage(
    input: PlanInput,
    talent: str,
    table: str,
    key: str,
    element: str | None = None,
    pick: int | None = None,
    scale_stat: str | None = None,
    title: str = "",
) -> Expr:
    """Damage expression for one table, shaped by the table's inferred schema."""
    stat = resolve_damage_stat(input, talent, table, scale_stat)
    ref = table_ref(talent, table)

    if pick is not None:
        return scaled_damage(table_value(talent, table, pick), stat, key, element)

    scalar = scaled_damage(table_value(talent, table, 0), stat, key, element)
    schema = infer_array_table_schema(input, talent, table)
    if schema is None:
        return scalar

    if schema.kind == "stat_stat":
        s0, s1 = schema.stats
        amount = binop(
            "+",
            binop("*", stat_total(s0), to_ratio(call("pick", ref, lit(0)))),
            binop("*", stat_total(s1), to_ratio(call("pick", ref, lit(1)))),
        )
        return Conditional(call("isList", ref), damage_call(amount, key, element, basic=True), scalar)

    if schema.kind == "stat_flat":
        amount = binop(
            "+",
            binop("*", stat_total(schema.stat), to_ratio(call("pick", ref, lit(0)))),
            table_value(talent, table, 1),
        )
        return Conditional(call("isList", ref), damage_call(amount, key, element, basic=True), scalar)

    if schema.kind == "stat_times":
        pct: Expr = table_value(talent, table, 0)
        if TOTAL_TITLE_MARKER.search(title):
            hits = Conditional(call("isList", ref), table_value(talent, table, 1), Number(1.0))
            pct = binop("*", pct, hits)
        return scaled_damage(pct, schema.stat if stat == "atk" else stat, key, element)

    if schema.kind == "pct_list":
        return scaled_damage(call("sum", ref), schema.stat if stat == "atk" else stat, key, element)

    return scalar


# ---------------------------------------------------------------------------
# Heal / shield
# ---------------------------------------------------------------------------
_GS_BASE_RE = re.compile(r"基础")
_GS_ADD_RE = re.compile(r"附加")
_SR_PCT_RE = re.compile(r"百分比生命|生命值百分比|百分比防御|防御力百分比|攻击力百分比|百分比|percent", re.IGNORECASE)
_SR_FLAT_RE = re.compile(r"固定值|flat", re.IGNORECASE)


def _support_pair(input: PlanInput, talent: str, table: str) -> tuple[str, str] | None:
    """(percent table, flat table) when a support formula is split over two tables."""
    tables = input.tables.get(talent, [])
    if input.game == Game.GS:
        if _GS_BASE_RE.search(table):
            add = _GS_BASE_RE.sub("附加", table)
            if add in tables:
                return add, table
        if _GS_ADD_RE.search(table):
            base = _GS_ADD_RE.sub("基础", table)
            if base in tables:
                return table, base
        return None
    if _SR_PCT_RE.search(table) and not _SR_FLAT_RE.search(table):
        flat = next((t for t in tables if _SR_FLAT_RE.search(t)), None)
        if flat:
            return table, flat
    if _SR_FLAT_RE.search(table):
        pct = next((t for t in tables if _SR_PCT_RE.search(t) and not _SR_FLAT_RE.search(t)), None)
        if pct:
            return pct, table
    return None


def support_amount(input: PlanInput, talent: str, table: str, scale_stat: str | None = None) -> Expr:
    """Heal or shield amount: ``[pct, flat]`` lists, split tables, or a percent-vs-flat scalar."""
    stat = scale_stat if scale_stat in SCALE_STATS else infer_support_stat(input, talent, table)
    base = stat_total(stat)

    pair = _support_pair(input, talent, table)
    if pair:
        pct_table, flat_table = pair
        flat_position = 1 if input.game == Game.GS else 0
        return binop(
            "+",
            binop("*", base, to_ratio(table_value(talent, pct_table, 0))),
            table_value(talent, flat_table, flat_position),
        )

    ref = table_ref(talent, table)
    as_list = binop(
        "+",
        binop("*", base, to_ratio(call("pick", ref, lit(0)))),
        table_value(talent, table, 1),
    )
    scalar = call("num", ref)
    as_scalar = Conditional(
        Binary(">", scalar, Number(FLAT_THRESHOLD[input.game])),
        scalar,
        binop("*", base, to_ratio(scalar)),
    )
    return Conditional(call("isList", ref), as_list, as_scalar)


def support_call(kind: DetailKind, amount: Expr) -> Expr:
    return call("heal" if kind == DetailKind.HEAL else "shield", amount)


def reaction_call(reaction: str) -> Expr:
    return call("reaction", String(reaction))
