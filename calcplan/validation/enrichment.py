"""Deterministic enrichment rules that fill gaps a sparse plan tends to leave.

Every rule adds rows through a ``DetailBudget`` so the row cap and the
eviction policy hold no matter how many rules fire.
"""

from __future__ import annotations

import re

from calcplan.core.models import Detail, DetailKind, Game, PlanInput
from calcplan.core.vocabulary import (
    CORE_TALENTS,
    ELEMENT_AMP_REACTION,
    ELEMENT_TRANSFORMATIVE_REACTION,
    MAX_DETAILS,
    REACTION_TITLES,
)
from calcplan.planning.heuristic import CJK_RE, HEAL_MARKER, SHIELD_MARKER, is_damage_table, pick_damage_table
from calcplan.planning.scaling import infer_array_table_schema, infer_support_stat
from calcplan.render.expressions import TOTAL_TITLE_MARKER, resolve_damage_stat, scaled_damage, table_damage, table_value
from calcplan.sandbox.nodes import Member, Number, RecordExpr, binop, unparse_expr
from calcplan.utils.logger import setup_logger
from calcplan.utils.text import compact_text, normalize_prompt_text, strip_table_suffix
from calcplan.validation.eviction import DetailBudget, EvictionPolicy
from calcplan.validation.pruning import EM_MARKER, REACTION_WORD_MARKER, has_reaction_evidence

logger = setup_logger(__name__)

# -----------------------------------------------------------------------------
# Vocabulary
# -----------------------------------------------------------------------------
REACTION_SUFFIX_ZH = {"vaporize": "蒸发", "melt": "融化", "aggravate": "超激化", "spread": "激化"}
REACTION_SUFFIX_EN = {"vaporize": "Vaporize", "melt": "Melt", "aggravate": "Aggravate", "spread": "Spread"}
REACTION_TITLES_ZH = {
    "swirl": "扩散反应伤害",
    "crystallize": "结晶反应伤害",
    "bloom": "绽放伤害",
    "hyperBloom": "超绽放伤害",
    "burgeon": "烈绽放伤害",
    "shatter": "碎冰反应伤害",
}
TALENT_PREFIX = {"a": "A", "e": "E", "q": "Q", "t": "T"}

CHARGED_TABLE_RE = re.compile(r"重击.*伤害|charged attack.*dmg|charged attack", re.IGNORECASE)
PLUNGE_TABLE_RE = re.compile(r"高空坠地冲击伤害|坠地冲击伤害|high plunge dmg|plunge dmg|plunging", re.IGNORECASE)

BURST_ATTACK_WORDS = re.compile(r"普通攻击|普攻|重击|下落攻击|normal attack|charged attack|plunging attack", re.IGNORECASE)
BURST_CONVERT_WORDS = re.compile(
    r"转为|转化为|转换为|附魔|替换为|变为|变成|convert|infus|replaced|become", re.IGNORECASE
)
BURST_COUNTS_AS_BURST = re.compile(
    r"(视为|视作).{0,24}元素爆发伤害|considered (elemental )?burst dmg|count as (elemental )?burst dmg",
    re.IGNORECASE,
)
_ZH_SEGMENTS = "一二三四五六七八九十"

MAIN_TARGET_RE = re.compile(r"主目标|主目標|main target", re.IGNORECASE)
ADJACENT_TARGET_RE = re.compile(r"相邻目标|adjacent", re.IGNORECASE)
COMPLETE_RE = re.compile(r"完整|complete", re.IGNORECASE)
_BLAST_MARKER_GROUP_RE = re.compile(
    r"\s*[(（]\s*(主目标|主目標|相邻目标|完整[^)）]*|main targets?|adjacent targets?|complete[^)）]*)\s*[)）]",
    re.IGNORECASE,
)
REPEAT_RE = re.compile(r"(?:可重复|重复)\s*(\d{1,2})\s*次|repeats?(?:ed)?\s*(\d{1,2})\s*times?", re.IGNORECASE)

HIT_COUNT_UNIT = r"(?:次|段|枚)"
HIT_COUNT_UNIT_EN = r"(?:hits?|times|instances|waves)"


def _is_cjk(text: str | None) -> bool:
    return bool(text) and bool(CJK_RE.search(text))


def _plain_dmg_row(detail: Detail) -> bool:
    return detail.kind == DetailKind.DMG and not detail.raw_expr and detail.talent is not None


def blast_base_title(title: str) -> str:
    return _BLAST_MARKER_GROUP_RE.sub("", title).strip()


def infer_repeat_count(desc: str | None) -> int:
    """'repeat N times' multiplier for a blast, bounded to 2..6; 1 otherwise."""
    match = REPEAT_RE.search(normalize_prompt_text(desc))
    if not match:
        return 1
    n = int(match.group(1) or match.group(2))
    return n if 2 <= n <= 6 else 1


def infer_hit_count(desc: str | None, token: str) -> int | None:
    """Hit count stated next to a table token ('3次X', 'X…3段', '3 hits of X')."""
    text = normalize_prompt_text(desc)
    token = token.strip()
    if not text or len(token) < 2:
        return None
    esc = re.escape(token)
    patterns = (
        rf"(\d{{1,3}})\s*{HIT_COUNT_UNIT}\s*{esc}",
        rf"{esc}[^\d]{{0,16}}?(\d{{1,3}})\s*{HIT_COUNT_UNIT}",
        rf"(\d{{1,3}})\s*{HIT_COUNT_UNIT_EN}\s+of\s+{esc}",
        rf"{esc}[^\d]{{0,24}}?(\d{{1,3}})\s*{HIT_COUNT_UNIT_EN}",
    )
    for pattern in patterns:
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            n = int(match.group(1))
            return n if 2 <= n <= 60 else None
    return None


def table_token(table: str) -> str:
    token = strip_table_suffix(table)
    token = re.sub(r"伤害|\bdmg\b|\bdamage\b", "", token, flags=re.IGNORECASE)
    return token.strip()


def scaled_result(expr, times: int) -> str:
    """``{dmg: X.dmg * n, avg: X.avg * n}`` as script text."""
    record = RecordExpr((
        ("dmg", binop("*", Member(expr, "dmg"), Number(float(times)))),
        ("avg", binop("*", Member(expr, "avg"), Number(float(times)))),
    ))
    return unparse_expr(record)


class PlanEnricher:
    """Apply the enrichment rule families in a fixed order."""

    def __init__(self, policy: EvictionPolicy | None = None, cap: int = MAX_DETAILS):
        self.policy = policy
        self.cap = cap

    def enrich(self, details: list[Detail], input: PlanInput) -> list[Detail]:
        budget = DetailBudget(details, cap=self.cap, policy=self.policy)
        before = len(budget)

        if input.game == Game.GS:
            self.map_burst_state(budget, input)
        self.add_core_rows(budget, input)
        self.add_support_rows(budget, input)
        if input.game == Game.GS:
            self.add_alias_rows(budget, input)
            self.add_reaction_variants(budget, input)
        self.add_multi_hit_totals(budget, input)
        self.add_blast_totals(budget, input)
        if input.game == Game.GS:
            self.add_transformative_row(budget, input)

        logger.debug(
            f"Enrichment for {input.name}: {before} -> {len(budget)} details, {len(budget.evicted)} evicted"
        )
        return budget.details

    # -------------------------------------------------------------------------
    # Core and support rows
    # -------------------------------------------------------------------------
    def add_core_rows(self, budget: DetailBudget, input: PlanInput) -> None:
        """At least one damage row per core ability that has a damage table."""
        for talent in CORE_TALENTS[input.game]:
            if budget.find(kind=DetailKind.DMG, talent=talent):
                continue
            table = pick_damage_table(input.tables.get(talent, []))
            if not table:
                continue
            prefix = TALENT_PREFIX.get(talent, talent.upper())
            title = f"{prefix}伤害" if _is_cjk(table) else f"{prefix} DMG"
            element = None
            if input.game == Game.GS and talent == "a" and (input.weapon or "").lower() not in ("catalyst", "法器"):
                element = "phy"
            budget.add(Detail(title=title, talent=talent, table=table, key=talent, element=element))

    def add_support_rows(self, budget: DetailBudget, input: PlanInput) -> None:
        """Heal/shield showcase rows when matching tables exist but were omitted."""
        for kind, marker in ((DetailKind.HEAL, HEAL_MARKER), (DetailKind.SHIELD, SHIELD_MARKER)):
            for talent in ("e", "q"):
                if budget.find(kind=kind, talent=talent):
                    continue
                candidates = [
                    t for t in input.tables.get(talent, [])
                    if marker.search(t) and not re.search(r"加成|bonus|冷却|cooldown|持续|duration", t, re.IGNORECASE)
                ]
                if not candidates:
                    continue
                if input.game == Game.GS:
                    table = next((t for t in candidates if t.endswith("2")), candidates[0])
                else:
                    table = next((t for t in candidates if re.search(r"百分比|percent|%", t, re.IGNORECASE)), candidates[0])
                title = strip_table_suffix(table).replace("治疗量", "治疗").replace("护盾吸收量", "护盾量")
                prefix = TALENT_PREFIX[talent]
                title = f"{prefix}{title}" if _is_cjk(title) else f"{prefix} {title}"
                budget.add(Detail(
                    title=title,
                    kind=kind,
                    talent=talent,
                    table=table,
                    key=talent,
                    scale_stat=infer_support_stat(input, talent, table),
                ))

    # -------------------------------------------------------------------------
    # Alias rows
    # -------------------------------------------------------------------------
    def add_alias_rows(self, budget: DetailBudget, input: PlanInput) -> None:
        """Charged attack under key a2, plunge under key a3."""
        a_tables = input.tables.get("a", [])
        aliases = (
            ("a2", CHARGED_TABLE_RE, "重击伤害", "Charged Attack DMG"),
            ("a3", PLUNGE_TABLE_RE, "下落攻击伤害", "Plunge DMG"),
        )
        for key, pattern, zh, en in aliases:
            candidates = [t for t in a_tables if pattern.search(t) and is_damage_table(t)]
            if not candidates or budget.find(kind=DetailKind.DMG, talent="a", key=key):
                continue
            table = candidates[0]
            element = None if (input.weapon or "").lower() in ("catalyst", "法器") else "phy"
            if key == "a2" and (input.weapon or "").lower() in ("bow", "弓"):
                element = None
            budget.add(Detail(
                title=zh if _is_cjk(table) else en,
                talent="a",
                table=table,
                key=key,
                element=element,
            ))

    # -------------------------------------------------------------------------
    # Reaction variants
    # -------------------------------------------------------------------------
    def add_reaction_variants(self, budget: DetailBudget, input: PlanInput) -> None:
        """Amplifying/catalyzing variants for a scored subset of rows, only with hint evidence."""
        reaction = ELEMENT_AMP_REACTION.get((input.element or "").strip().lower())
        if reaction is None or not has_reaction_evidence(input, reaction):
            return

        bases = [d for d in budget if _plain_dmg_row(d) and not d.element]
        picked: list[Detail] = []
        if reaction in ("vaporize", "melt"):
            charged = next((d for d in bases if d.talent == "a" and (d.damage_key == "a2" or CHARGED_TABLE_RE.search(d.title))), None)
            if charged:
                picked.append(charged)
        picked.extend([d for d in bases if d.talent == "e"][:2])
        picked.extend([d for d in bases if d.talent == "q"][:1])

        for base in picked:
            variant = base.model_copy(update={"title": self._variant_title(base.title, reaction), "element": reaction})
            budget.add(variant)

    def _variant_title(self, title: str, reaction: str) -> str:
        if _is_cjk(title):
            suffix = REACTION_SUFFIX_ZH[reaction]
            if suffix in title:
                return title
            return title[: -len("伤害")] + suffix if title.endswith("伤害") else f"{title}{suffix}"
        return f"{title} ({REACTION_SUFFIX_EN[reaction]})"

    # -------------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------------
    def add_multi_hit_totals(self, budget: DetailBudget, input: PlanInput) -> None:
        """Total rows for [pct, hits] tables and for 'N hits' description text."""
        for base in list(budget):
            if not _plain_dmg_row(base) or base.pick is not None or base.element:
                continue
            if TOTAL_TITLE_MARKER.search(base.title):
                continue
            schema = infer_array_table_schema(input, base.talent, base.table)
            if schema is not None and schema.kind == "stat_times":
                title = self._total_title(base.title)
                total = table_damage(
                    input, base.talent, base.table, base.damage_key,
                    scale_stat=base.scale_stat, title=title,
                )
                budget.add(base.model_copy(update={"title": title, "raw_expr": unparse_expr(total)}))
                continue
            if base.talent not in ("e", "q"):
                continue
            times = infer_hit_count(input.talent_desc.get(base.talent), table_token(base.table))
            if times is None:
                continue
            call_expr = table_damage(
                input, base.talent, base.table, base.damage_key,
                scale_stat=base.scale_stat, title=base.title,
            )
            budget.add(base.model_copy(update={
                "title": self._total_title(base.title, times),
                "raw_expr": scaled_result(call_expr, times),
            }))

    def _total_title(self, title: str, times: int | None = None) -> str:
        if _is_cjk(title):
            stem = title[: -len("伤害")] if title.endswith("伤害") else title
            return f"{stem}总伤害" if times is None else f"{stem}总伤害·{times}段"
        return f"{title} Total" if times is None else f"{title} Total ({times} hits)"

    def add_blast_totals(self, budget: DetailBudget, input: PlanInput) -> None:
        """'(complete)' rows for main + adjacent target pairs: r1 + 2*r2 in one helper call."""
        groups: dict[str, list[Detail]] = {}
        for d in budget:
            if d.kind == DetailKind.DMG and d.talent:
                groups.setdefault(compact_text(blast_base_title(d.title)).lower(), []).append(d)

        for rows in groups.values():
            adjacent = next((d for d in rows if self._is_adjacent(d) and not d.raw_expr), None)
            if adjacent is None:
                continue
            main = next((d for d in rows if MAIN_TARGET_RE.search(d.title) and not d.raw_expr), None)
            if main is None:
                main = next(
                    (d for d in rows if d is not adjacent and not self._is_adjacent(d)
                     and not COMPLETE_RE.search(d.title) and not d.raw_expr),
                    None,
                )
            if main is None or main.talent != adjacent.talent:
                continue

            talent = main.talent
            ratio = binop(
                "+",
                table_value(talent, main.table, main.pick or 0),
                binop("*", table_value(talent, adjacent.table, adjacent.pick or 0), Number(2.0)),
            )
            stat = resolve_damage_stat(input, talent, main.table, main.scale_stat)
            combined = scaled_damage(ratio, stat, main.damage_key, main.element)
            repeat = infer_repeat_count(input.talent_desc.get(talent))
            raw = scaled_result(combined, repeat) if repeat > 1 else unparse_expr(combined)

            base_title = blast_base_title(main.title)
            full_title = f"{base_title}(完整)" if _is_cjk(base_title) else f"{base_title} (Complete)"
            full = main.model_copy(update={"title": full_title, "raw_expr": raw, "pick": None})

            existing = next((d for d in rows if COMPLETE_RE.search(d.title)), None)
            if existing is not None:
                budget.replace(existing, full)
            elif budget.full:
                budget.replace(adjacent, full)
            else:
                budget.add(full)
            logger.debug(f"Derived blast total {full_title!r} (repeat={repeat})")

    def _is_adjacent(self, detail: Detail) -> bool:
        return bool(ADJACENT_TARGET_RE.search(detail.title) or ADJACENT_TARGET_RE.search(detail.table or ""))

    # -------------------------------------------------------------------------
    # State-gated rows
    # -------------------------------------------------------------------------
    def map_burst_state(self, budget: DetailBudget, input: PlanInput) -> None:
        """Route burst-converted attack rows to a/a2/a3 with params.q = true."""
        desc = normalize_prompt_text(input.talent_desc.get("q"))
        if not desc or not BURST_ATTACK_WORDS.search(desc) or not BURST_CONVERT_WORDS.search(desc):
            return
        if BURST_COUNTS_AS_BURST.search(desc):
            return

        for d in list(budget):
            if d.kind != DetailKind.DMG or d.talent != "q" or not d.table:
                continue
            if d.damage_key.split(",")[0].strip().lower() != "q":
                continue
            mapped = self._map_burst_attack(d.table)
            if mapped is None:
                continue
            key, title = mapped
            params = dict(d.params or {})
            params.setdefault("q", True)
            budget.replace(d, d.model_copy(update={"key": key, "title": title, "params": params}))
            logger.debug(f"Burst-state row {d.title!r} -> key {key}")

    def _map_burst_attack(self, table: str) -> tuple[str, str] | None:
        seg = re.match(rf"^([{_ZH_SEGMENTS}])段伤害", table)
        if seg:
            name = "首段" if seg.group(1) == "一" else f"{seg.group(1)}段"
            return "a", f"Q状态·普攻{name}"
        hit = re.match(r"^(\d)(?:st|nd|rd|th)?[- ]hit dmg", table, re.IGNORECASE)
        if hit:
            return "a", f"Burst State: Normal Attack {hit.group(1)}-Hit"
        if "重击伤害" in table:
            return "a2", "Q状态·重击伤害"
        if re.search(r"charged attack", table, re.IGNORECASE):
            return "a2", "Burst State: Charged Attack DMG"
        for marker in ("下落攻击伤害", "坠地冲击伤害", "下坠期间伤害"):
            if marker in table:
                return "a3", f"Q状态·{marker}"
        if re.search(r"plung", table, re.IGNORECASE):
            return "a3", "Burst State: Plunge DMG"
        return None

    # -------------------------------------------------------------------------
    # Transformative reaction row
    # -------------------------------------------------------------------------
    def add_transformative_row(self, budget: DetailBudget, input: PlanInput) -> None:
        if budget.find(kind=DetailKind.REACTION) or budget.full:
            return
        text = input.hint_text()
        if not (EM_MARKER.search(text) or REACTION_WORD_MARKER.search(text)):
            return
        reaction = ELEMENT_TRANSFORMATIVE_REACTION.get((input.element or "").strip().lower())
        if reaction is None or not has_reaction_evidence(input, reaction):
            return
        cjk = any(_is_cjk(t) for tables in input.tables.values() for t in tables)
        title = REACTION_TITLES_ZH.get(reaction, "反应伤害") if cjk else REACTION_TITLES.get(reaction, "Reaction DMG")
        budget.add(Detail(title=title, kind=DetailKind.REACTION, reaction=reaction))
