"""Scaling-stat and array-table shape inference from unit hints and value text."""

from __future__ import annotations

import re
from dataclasses import dataclass

from calcplan.core.models import Game, PlanInput
from calcplan.utils.text import normalize_prompt_text, strip_table_suffix

_MASTERY_RE = re.compile(r"元素精通|精通|elemental mastery|mastery|\bem\b", re.IGNORECASE)
_HP_RE = re.compile(r"生命上限|生命值上限|最大生命值|生命值|\bmax hp\b|\bhp\b", re.IGNORECASE)
_DEF_RE = re.compile(r"防御力|\bdef\b|defense", re.IGNORECASE)
_ATK_RE = re.compile(r"攻击力|攻击|\batk\b|attack", re.IGNORECASE)
_PCT_RE = re.compile(r"[%％]")
_TIMES_RE = re.compile(r"[*×xX]\s*\d+")
_PLUS_SPLIT_RE = re.compile(r"[+＋]")

# "based on Max HP" style phrases near a damage word
_DESC_DMG_CONTEXT = {
    "hp": re.compile(
        r"(基于|根据).{0,12}生命值.{0,12}伤害|生命值上限.{0,8}(提升|造成).{0,12}伤害|"
        r"based on .{0,24}max hp|dmg .{0,24}max hp",
        re.IGNORECASE,
    ),
    "def": re.compile(
        r"(基于|根据).{0,12}防御力.{0,12}伤害|防御力.{0,8}(提升|造成).{0,12}伤害|"
        r"based on .{0,24}def|dmg .{0,24}\bdef\b",
        re.IGNORECASE,
    ),
    "mastery": re.compile(
        r"(基于|根据).{0,12}元素精通.{0,12}伤害|based on .{0,24}elemental mastery",
        re.IGNORECASE,
    ),
}

_HEAL_HP_RE = re.compile(r"生命值上限|最大生命值|max hp", re.IGNORECASE)
_HEAL_DEF_RE = re.compile(r"防御力|\bdef\b", re.IGNORECASE)
_HEAL_ATK_RE = re.compile(r"攻击力|\batk\b", re.IGNORECASE)


@dataclass(frozen=True)
class TableSchema:
    """Shape of an array-valued table.

    - ``stat_flat``: ``[pct, flat]`` e.g. "%HP + 800"
    - ``stat_stat``: ``[pct of stats[0], pct of stats[1]]``
    - ``pct_list``: multi-hit percentages to be summed
    - ``stat_times``: ``[pct, hits]`` e.g. "80%ATK×3"
    """

    kind: str
    stat: str = "atk"
    stats: tuple[str, str] | None = None


def stat_from_text(text: str) -> str | None:
    if not text:
        return None
    if _MASTERY_RE.search(text):
        return "mastery"
    if _HP_RE.search(text):
        return "hp"
    if _DEF_RE.search(text):
        return "def"
    if _ATK_RE.search(text):
        return "atk"
    return None


def lookup_unit(input: PlanInput, talent: str, table: str) -> str:
    units = input.table_units.get(talent, {})
    return normalize_prompt_text(units.get(table) or units.get(strip_table_suffix(table)))


def lookup_text_sample(input: PlanInput, talent: str, table: str) -> str:
    samples = input.table_text_samples.get(talent, {})
    return normalize_prompt_text(samples.get(table) or samples.get(strip_table_suffix(table)))


def stat_from_description(desc: str) -> str | None:
    """Conservative: only explicit 'damage based on X' wording counts."""
    text = normalize_prompt_text(desc)
    if not text:
        return None
    for stat, pattern in _DESC_DMG_CONTEXT.items():
        if pattern.search(text):
            return stat
    return None


def infer_damage_stat(input: PlanInput, talent: str, table: str) -> str:
    """Scaling stat for a damage table: unit hint, then text sample, then description, then atk."""
    unit = lookup_unit(input, talent, table)
    sample = lookup_text_sample(input, talent, table)

    unit_stat = stat_from_text(unit)
    # Mixed tables like "98.7%ATK + 1.69%" labelled with a HP unit keep atk
    mixed = (
        unit_stat not in (None, "atk")
        and bool(sample)
        and bool(_PLUS_SPLIT_RE.search(sample))
        and stat_from_text(sample) == "atk"
    )
    if unit_stat and not mixed:
        return unit_stat

    sample_stat = stat_from_text(sample)
    if sample_stat:
        return sample_stat

    has_per_table_hint = bool(unit or sample)
    plain_pct = (unit and _PCT_RE.search(unit)) or (sample and _PCT_RE.search(sample))
    if (input.game == Game.GS and not has_per_table_hint) or plain_pct:
        return "atk"
    # Normal attacks mix mechanics too often for a description match to be safe
    if input.game == Game.GS and talent == "a":
        return "atk"
    return stat_from_description(input.talent_desc.get(talent, "")) or "atk"


def infer_support_stat(input: PlanInput, talent: str, table: str) -> str:
    """Scaling stat for heal/shield tables; defaults to hp."""
    unit = lookup_unit(input, talent, table)
    for text in (unit, lookup_text_sample(input, talent, table)):
        stat = stat_from_text(text)
        if stat:
            return stat
    desc = normalize_prompt_text(input.talent_desc.get(talent, ""))
    if _HEAL_HP_RE.search(desc):
        return "hp"
    if _HEAL_DEF_RE.search(desc):
        return "def"
    if _HEAL_ATK_RE.search(desc):
        return "atk"
    return "hp"


def infer_array_table_schema(input: PlanInput, talent: str, table: str) -> TableSchema | None:
    """Infer how an array-valued table should be combined, from its value text."""
    text = normalize_prompt_text(input.table_text_samples.get(talent, {}).get(table))
    if not text:
        return None

    if _TIMES_RE.search(text) and _PCT_RE.search(text):
        sample = input.table_samples.get(talent, {}).get(table)
        if isinstance(sample, (list, tuple)) and len(sample) >= 2 and isinstance(sample[1], (int, float)):
            times = float(sample[1])
            if times.is_integer() and 1 < times <= 20:
                return TableSchema("stat_times", stat_from_text(text) or "atk")

    parts = [p.strip() for p in _PLUS_SPLIT_RE.split(text) if p.strip()]
    if len(parts) < 2:
        return None

    unit_stat = stat_from_text(lookup_unit(input, talent, table))

    if all(_PCT_RE.search(p) for p in parts):
        stats = [s for s in (stat_from_text(p) for p in parts) if s]
        stat = stats[0] if stats else "atk"
        if all(s == stat for s in stats):
            if len(parts) == 2 and unit_stat:
                s0, s1 = stat_from_text(parts[0]), stat_from_text(parts[1])
                if s0 and not s1 and unit_stat != s0:
                    return TableSchema("stat_stat", stats=(s0, unit_stat))
                if s1 and not s0 and unit_stat != s1:
                    return TableSchema("stat_stat", stats=(unit_stat, s1))
            return TableSchema("pct_list", stat)

    p0, p1 = parts[0], parts[1]
    s0, s1 = stat_from_text(p0), stat_from_text(p1)
    if s0 and s1 and _PCT_RE.search(p0) and _PCT_RE.search(p1):
        return TableSchema("stat_stat", stats=(s0, s1))
    if s0 and _PCT_RE.search(p0) and not s1 and re.search(r"\d", p1) and not _PCT_RE.search(p1):
        return TableSchema("stat_flat", s0)
    return None
