"""Drop buff data keys the buff's own evidence text does not support."""

from __future__ import annotations

import re

from calcplan.core.models import Buff, Game, PlanInput
from calcplan.utils.logger import setup_logger
from calcplan.utils.text import compact_text, normalize_prompt_text

logger = setup_logger(__name__)

CONS_HINT_RE = re.compile(r"^(?:([1-6])\s*(?:命|魂)|[CE]([1-6]))\s*[:：]", re.IGNORECASE)

ONE_SHOT_RE = re.compile(
    r"(下次|下一次|首次)|\bthe next\b|\bnext (cast|use|attack|skill|burst|normal attack|charged attack)\b",
    re.IGNORECASE,
)
CONSUMED_RE = re.compile(
    r"后移除|使用后移除|施放后移除|释放后移除|命中后移除|将在.{0,40}后移除|removed after|consumed", re.IGNORECASE
)
ORIGINAL_MULTIPLIER_RE = re.compile(r"(造成|提高为|变为|改为).{0,12}原本.{0,6}\d+|原本\s*\d+(\.\d+)?\s*%|of the original", re.IGNORECASE)
DAMAGE_INTENT_RE = re.compile(r"伤害|增伤|造成.{0,12}伤害|dmg|damage", re.IGNORECASE)
MULTIPLIER_INTENT_RE = re.compile(
    r"倍率|系数|原本|提高到|提升到|提高至|提升至|变为|变成|改为|伤害为原伤害的|"
    r"multiplier|ratio|increased to|of the original|instead",
    re.IGNORECASE,
)

SCOPED_KEY_RE = {
    Game.GS: re.compile(r"^(a|a2|a3|e|q|nightsoul)(Dmg|Pct|Multi|Plus|Cpct|Cdmg|Enemydmg|Elevated|Def|Ignore)$"),
    Game.SR: re.compile(r"^(a|a2|a3|e|q|t|me|mt|dot|break)(Dmg|Pct|Multi|Plus|Cpct|Cdmg|Enemydmg|Elevated|Def|Ignore)$"),
}
SCOPED_AMOUNT_RE = {
    Game.GS: re.compile(r"^(a|a2|a3|e|q|nightsoul)(Plus|Pct)$"),
    Game.SR: re.compile(r"^(a|a2|a3|e|q|t|me|mt|dot|break)(Plus|Pct)$"),
}


def constellation_hints(input: PlanInput) -> dict[int, str]:
    """Hint lines that start with a constellation marker ('2命:' / 'C2:'), by level."""
    hints: dict[int, str] = {}
    for line in input.buff_hints:
        text = normalize_prompt_text(line)
        match = CONS_HINT_RE.match(text)
        if not match:
            continue
        level = int(match.group(1) or match.group(2))
        hints[level] = f"{hints[level]} {text}" if level in hints else text
    return hints


def is_one_shot(evidence: str) -> bool:
    if ONE_SHOT_RE.search(evidence):
        return True
    return bool(CONSUMED_RE.search(evidence)) and bool(ORIGINAL_MULTIPLIER_RE.search(evidence))


def is_damage_like_key(game: Game, key: str) -> bool:
    if not key or key.startswith("_"):
        return False
    if key in ("dmg", "phy", "enemydmg"):
        return True
    if key.endswith("Dmg") or key.endswith("Enemydmg"):
        return True
    return bool(SCOPED_AMOUNT_RE[game].match(key))


class BuffFilter:
    """Evidence-gated key filtering for buffs."""

    def filter(self, buffs: list[Buff], input: PlanInput) -> list[Buff]:
        cons_hints = constellation_hints(input)
        kept: list[Buff] = []
        for buff in buffs:
            filtered = self.filter_buff(buff, input.game, cons_hints)
            if filtered is not None:
                kept.append(filtered)
        return kept

    def filter_buff(self, buff: Buff, game: Game, cons_hints: dict[int, str]) -> Buff | None:
        hint = cons_hints.get(buff.constellation_req, "") if buff.constellation_req else ""
        evidence = f"{normalize_prompt_text(buff.title)} {hint}".strip()
        compact = compact_text(evidence)
        damage_intent = bool(DAMAGE_INTENT_RE.search(compact))
        multiplier_intent = bool(MULTIPLIER_INTENT_RE.search(evidence))

        data = dict(buff.data)
        dropped: list[str] = []

        if evidence and is_one_shot(evidence):
            for key in list(data):
                if key.endswith("Multi") or SCOPED_KEY_RE[game].match(key):
                    dropped.append(key)
                    del data[key]

        for key in list(data):
            if key.startswith("_"):
                continue
            if key.endswith("Multi"):
                if not multiplier_intent:
                    dropped.append(key)
                    del data[key]
                continue
            if is_damage_like_key(game, key) and not damage_intent:
                dropped.append(key)
                del data[key]

        if not dropped:
            return buff
        logger.debug(f"Buff {buff.title!r}: dropped keys {', '.join(dropped)}")
        filtered = buff.model_copy(update={"data": data})
        if not filtered.effect_keys():
            logger.debug(f"Buff {buff.title!r}: no effect left, removed")
            return None
        return filtered
