"""Model-free planner producing a minimal valid plan from table names alone."""

from __future__ import annotations

import re

from calcplan.core.models import Detail, DetailKind, Game, Plan, PlanInput
from calcplan.core.vocabulary import DEFAULT_MAIN_ATTR
from calcplan.utils.logger import setup_logger
from calcplan.utils.text import normalize_prompt_text

logger = setup_logger(__name__)

DAMAGE_MARKER = re.compile(r"伤害|\bdmg\b|damage", re.IGNORECASE)
BUFF_LIKE_MARKER = re.compile(
    r"提高|提升|增加|降低|减少|加成|增伤|穿透|无视|概率|几率|命中|抵抗|击破效率|削韧|冷却|能量|回合|持续时间|"
    r"bonus|boost|increase|decrease|reduction|penetration|ignore|chance|probability|"
    r"toughness|cooldown|\bcd\b|energy|duration|\bturns?\b",
    re.IGNORECASE,
)
HEAL_MARKER = re.compile(r"治疗|回复|healing|\bheal", re.IGNORECASE)
SHIELD_MARKER = re.compile(r"护盾|shield", re.IGNORECASE)
HP_MARKER = re.compile(r"生命上限|生命值上限|最大生命值|生命值|max hp", re.IGNORECASE)
DEF_MARKER = re.compile(r"防御力|\bdef\b", re.IGNORECASE)
CJK_RE = re.compile(r"[一-鿿]")

MAX_SR_DETAILS = 12


def is_damage_table(name: str) -> bool:
    """Damage tables carry a damage marker and no buff/cooldown/energy marker."""
    return bool(DAMAGE_MARKER.search(name)) and not BUFF_LIKE_MARKER.search(name)


def pick_damage_table(tables: list[str]) -> str | None:
    """First damage-like table, skipping 'X2' value variants of an earlier candidate."""
    candidates = [t for t in tables if is_damage_table(t)]
    for table in candidates:
        if table.endswith("2") and table[:-1] in candidates:
            continue
        return table
    return candidates[0] if candidates else None


def _title(table: str, zh: str, en: str) -> str:
    return zh if CJK_RE.search(table) else en


class HeuristicPlanner:
    """Deterministic planner used as the default and as the fallback tail."""

    def plan(self, input: PlanInput) -> Plan:
        """Build a plan; details are empty only when no damage table exists."""
        if input.game == Game.GS:
            plan = self._plan_gs(input)
        else:
            plan = self._plan_sr(input)
        rows = ", ".join(f"{d.talent}:{d.table}" for d in plan.details)
        logger.debug(f"Heuristic plan for {input.name}: {len(plan.details)} details ({rows})")
        return plan

    # -------------------------------------------------------------------------
    # GS
    # -------------------------------------------------------------------------
    def _plan_gs(self, input: PlanInput) -> Plan:
        details: list[Detail] = []
        e = pick_damage_table(input.tables.get("e", []))
        q = pick_damage_table(input.tables.get("q", []))
        a = pick_damage_table(input.tables.get("a", []))

        if e:
            details.append(Detail(title=_title(e, "E伤害", "E DMG"), talent="e", table=e, key="e"))
        if q:
            details.append(Detail(title=_title(q, "Q伤害", "Q DMG"), talent="q", table=q, key="q"))
        if a:
            weapon = (input.weapon or "").lower()
            element = None if weapon in ("catalyst", "法器") else "phy"
            details.append(
                Detail(
                    title=_title(a, "普攻伤害", "Normal Attack DMG"),
                    talent="a",
                    table=a,
                    key="a",
                    element=element,
                )
            )

        return Plan(
            main_attr_list=DEFAULT_MAIN_ATTR,
            default_damage_key="e" if e else "q" if q else "a",
            details=details,
            buffs=[],
        )

    # -------------------------------------------------------------------------
    # SR
    # -------------------------------------------------------------------------
    def _plan_sr(self, input: PlanInput) -> Plan:
        details: list[Detail] = []
        desc = {k: normalize_prompt_text(v) for k, v in input.talent_desc.items()}

        a = pick_damage_table(input.tables.get("a", []))
        if a:
            details.append(Detail(title=_title(a, "普攻伤害", "Basic ATK DMG"), talent="a", table=a, key="a"))

        for talent, zh, en in (("e", "战技", "Skill"), ("q", "终结技", "Ultimate")):
            tables = input.tables.get(talent, [])
            text = desc.get(talent, "")
            has_shield = bool(SHIELD_MARKER.search(text)) or any(SHIELD_MARKER.search(t) for t in tables)
            has_heal = self._is_heal_like(text) or any(HEAL_MARKER.search(t) for t in tables)
            if has_shield:
                detail = self._support_detail(talent, tables, DetailKind.SHIELD, zh + "护盾量", en + " Shield")
            elif has_heal:
                detail = self._support_detail(talent, tables, DetailKind.HEAL, zh + "治疗量", en + " Healing")
            else:
                table = pick_damage_table(tables)
                detail = (
                    Detail(title=_title(table, zh + "伤害", en + " DMG"), talent=talent, table=table, key=talent)
                    if table
                    else None
                )
            if detail:
                details.append(detail)

        q_main = next(
            (d.table for d in details if d.talent == "q" and d.kind == DetailKind.DMG), None
        )
        for table in input.tables.get("q", []):
            if len(details) >= MAX_SR_DETAILS:
                break
            if table == q_main or not is_damage_table(table):
                continue
            title = table.replace("回合开始伤害", "附加伤害")
            details.append(Detail(title=title, talent="q", table=table, key="q"))

        t = pick_damage_table(input.tables.get("t", []))
        if t:
            title = "反击伤害" if "反击" in t else _title(t, "天赋伤害", "Talent DMG")
            details.append(Detail(title=title, talent="t", table=t, key="t"))

        main_attr = DEFAULT_MAIN_ATTR.split(",")
        eq_desc = f"{desc.get('e', '')} {desc.get('q', '')}"
        if any(d.kind == DetailKind.HEAL for d in details) or HP_MARKER.search(eq_desc):
            main_attr.append("hp")
        if any(d.kind == DetailKind.SHIELD for d in details) or DEF_MARKER.search(eq_desc):
            main_attr.append("def")

        talents = {d.talent for d in details}
        default_key = next((k for k in ("e", "q", "a") if k in talents), "e")
        return Plan(
            main_attr_list=",".join(main_attr),
            default_damage_key=default_key,
            details=details,
            buffs=[],
        )

    def _is_heal_like(self, text: str) -> bool:
        if HEAL_MARKER.search(text):
            return True
        return bool(re.search(r"恢复|restores?", text, re.IGNORECASE)) and bool(HP_MARKER.search(text))

    def _support_detail(
        self, talent: str, tables: list[str], kind: DetailKind, zh: str, en: str
    ) -> Detail | None:
        if kind == DetailKind.HEAL:
            prefer = re.compile(r"百分比生命|生命值百分比|百分比|percent|%", re.IGNORECASE)
        else:
            prefer = re.compile(r"百分比防御|防御力百分比|百分比生命|生命值百分比|百分比|percent|%", re.IGNORECASE)
        table = next((t for t in tables if prefer.search(t)), None)
        table = table or next((t for t in tables if re.search(r"固定值|flat", t, re.IGNORECASE)), None)
        if not table:
            return None
        joined = "|".join(tables)
        if HP_MARKER.search(joined):
            stat = "hp"
        elif DEF_MARKER.search(joined):
            stat = "def"
        elif re.search(r"攻击力|攻击|\batk\b", joined, re.IGNORECASE):
            stat = "atk"
        else:
            stat = "hp" if kind == DetailKind.HEAL else "def"
        return Detail(title=_title(table, zh, en), kind=kind, talent=talent, table=table, key=talent, scale_stat=stat)
