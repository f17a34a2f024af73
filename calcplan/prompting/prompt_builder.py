"""Render a PlanInput into chat messages for the planning model."""

from __future__ import annotations

import json
import re
from typing import Any

from calcplan.core.models import Attempt, Game, PlanInput
from calcplan.core.vocabulary import (
    BUFF_KEY_PATTERNS,
    CONTEXT_NAMES,
    CORE_TALENTS,
    HELPER_NAMES,
    MAX_BUFFS,
    MAX_DETAILS,
    REACTIONS,
    talent_sort_key,
)
from calcplan.utils.logger import setup_logger
from calcplan.utils.text import normalize_prompt_text, shorten_text

logger = setup_logger(__name__)

BUFF_LIKE_TABLE_MARKER = re.compile(
    r"提升|增加|降低|加成|增伤|原本|倍率|抗性|防御|暴击|反应|层|枚|次数|上限|"
    r"bonus|boost|increase|multiplier|res\b|crit|stack|count|limit",
    re.IGNORECASE,
)
UNIT_HINT_MARKER = re.compile(
    r"普通攻击伤害|重击伤害|下落攻击伤害|元素战技伤害|元素爆发伤害|战技伤害|终结技伤害|天赋伤害|"
    r"normal attack dmg|charged attack dmg|skill dmg|burst dmg|ultimate dmg",
    re.IGNORECASE,
)


class PromptBuilder:
    """Build planning prompts with escalating strictness across attempts."""

    SYSTEM_PROMPT = (
        "You are a careful engineer writing damage-calculation plans for a game simulator. "
        "Output strict JSON only: no Markdown, no commentary."
    )

    TASK_TEMPLATE = """Produce a calculation plan for the {game_label} character "{name}" \
(element: {element}, weapon: {weapon}).

Rules:
- Only these talent keys may be used: {talents}
- "table" MUST be copied exactly from the allowed table list for that talent. Never invent table names.
- details: aim for 6-12 rows (at most {max_details}); cover the core damage of each ability and \
common variants, plus healing/shield rows when the kit has them.
- details[i].kind is one of dmg | heal | shield | reaction (default dmg).
- kind=dmg|heal|shield requires talent + table. kind=heal|shield should set stat (atk|hp|def|mastery).
- kind=reaction needs no table; reaction must be one of: {reactions}
- Amplifying reactions (vaporize/melt/aggravate/spread) are NOT kind=reaction: use kind=dmg with ele.
- Prefer tables whose names mention damage; never use cooldown/energy/toughness tables as damage.
- pick (0-based) selects one element of an array-valued table.
- cons (1-6) restricts a row to a constellation; params holds static state flags (number/boolean/string).
- check / dmgExpr / buff data expressions use this expression language: numbers, strings, \
+ - * / %, comparisons, && || !, a ? b : c, member access x.y, indexing x["name"], and calls to \
{helpers}. Available names: {context_names}.
- dmgExpr must return dmg(...), dmg.basic(...), heal(...), shield(...), reaction(...) or \
{{dmg: ..., avg: ...}}. dmg(pct, key, ele?) takes a percentage; dmg.basic(value, key, ele?) takes a \
final base value such as calc(attr.hp) * toRatio(pct). Never pass an array table straight into dmg().
- mainAttr is a comma-separated list of attribute keys (e.g. atk,cpct,cdmg,mastery,recharge,hp,def).
- buffs: at most {max_buffs}. data keys MUST match this vocabulary (regex): {buff_keys}
- Use buff cons (1-6) / tree (1-10) / check to gate conditional effects. Do not turn one-shot \
"next cast" effects into permanent buffs.
{sections}
Allowed tables (JSON, talent -> names):
{tables_json}

Output JSON shape:
{output_example}
"""

    COMPACT_TEMPLATE = """Produce a calculation plan for the {game_label} character "{name}" \
(element: {element}). Use only talent keys {talents}; copy table names exactly from the allowed \
list; at most {max_details} details and {max_buffs} buffs; buff data keys must match: {buff_keys}.

Allowed tables (JSON):
{tables_json}

Output JSON shape:
{output_example}
"""

    FEEDBACK_TEMPLATE = (
        "Your previous plan was rejected: {error}\n"
        "Fix exactly this problem and return the whole plan again. "
        "Remember: every table must be copied from the allowed list for its talent."
    )

    STRICT_JSON_INSTRUCTIONS = (
        "FORMAT REQUIREMENTS (final attempt): respond with a single JSON object and nothing else. "
        "No code fences, no comments, no trailing commas, double-quoted keys and strings, "
        "numbers without units. The top-level keys are mainAttr, defDmgKey, details, buffs."
    )

    OUTPUT_EXAMPLE = {
        "mainAttr": "atk,cpct,cdmg",
        "defDmgKey": "e",
        "details": [
            {"title": "Skill DMG", "kind": "dmg", "talent": "e", "table": "<allowed table>", "key": "e"},
            {"title": "Burst Healing", "kind": "heal", "talent": "q", "table": "<allowed table>", "stat": "hp"},
        ],
        "buffs": [
            {"title": "C2: Skill DMG +20%", "cons": 2, "data": {"eDmg": 20}},
            {"title": "Passive: ATK up in burst", "check": "params.q", "data": {"atkPct": 15}},
        ],
    }

    MAX_PROMPT_CHARS = 18000
    DESC_MAX_CHARS = 900
    HINT_MAX_CHARS = 520

    def build(self, input: PlanInput, attempt: Attempt | None = None) -> list[dict[str, str]]:
        """Return chat messages for an attempt; feedback and strictness escalate on retries."""
        attempt = attempt or Attempt()
        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": self.render_task(input)},
        ]
        if attempt.number > 1 and attempt.last_error:
            messages.append(
                {"role": "user", "content": self.FEEDBACK_TEMPLATE.format(error=attempt.last_error)}
            )
        if attempt.number > 1 and attempt.is_final:
            messages.append({"role": "user", "content": self.STRICT_JSON_INSTRUCTIONS})
        return messages

    def render_task(self, input: PlanInput) -> str:
        """Full task prompt, or the compact variant when it would be too long."""
        fields = self._common_fields(input)
        prompt = self.TASK_TEMPLATE.format(sections=self._sections(input, fields["talent_list"]), **fields)
        if len(prompt) > self.MAX_PROMPT_CHARS:
            logger.debug(f"Prompt for {input.name} is {len(prompt)} chars; using compact prompt")
            prompt = self.COMPACT_TEMPLATE.format(**fields)
        return prompt

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def allowed_talents(self, input: PlanInput) -> list[str]:
        talents = [k for k, v in input.tables.items() if v]
        if not talents:
            talents = list(CORE_TALENTS[input.game])
        return sorted(talents, key=lambda k: (talent_sort_key(k), k))

    def _common_fields(self, input: PlanInput) -> dict[str, Any]:
        talents = self.allowed_talents(input)
        tables = {k: input.tables.get(k, []) for k in talents}
        return {
            "game_label": "Genshin Impact (gs)" if input.game == Game.GS else "Honkai: Star Rail (sr)",
            "name": input.name,
            "element": input.element or "unknown",
            "weapon": input.weapon or "unknown",
            "talents": ",".join(talents),
            "talent_list": talents,
            "reactions": ", ".join(REACTIONS[input.game]),
            "helpers": ", ".join(HELPER_NAMES),
            "context_names": ", ".join(CONTEXT_NAMES),
            "max_details": MAX_DETAILS,
            "max_buffs": MAX_BUFFS,
            "buff_keys": " | ".join(p.pattern for p in BUFF_KEY_PATTERNS[input.game]) + " | _display",
            "tables_json": json.dumps(tables, ensure_ascii=False),
            "output_example": json.dumps(self.OUTPUT_EXAMPLE, ensure_ascii=False, indent=2),
        }

    def _sections(self, input: PlanInput, talents: list[str]) -> str:
        sections: list[tuple[str, list[str]]] = []

        desc_lines = []
        for k in talents:
            text = normalize_prompt_text(input.talent_desc.get(k))
            if text:
                desc_lines.append(f"- {k}: {shorten_text(text, self.DESC_MAX_CHARS)}")
        sections.append(("Ability descriptions:", desc_lines))

        hint_lines = [f"- {shorten_text(h, self.HINT_MAX_CHARS)}" for h in input.buff_hints]
        sections.append(("Buff hints (passives / constellations / traces):", hint_lines))

        sample_lines = []
        for k in talents:
            samples = input.table_samples.get(k)
            if samples:
                sample_lines.append(f"- {k}: {shorten_text(json.dumps(samples, ensure_ascii=False), 500)}")
        sections.append(("Table value samples (arrays mean multi-part values):", sample_lines))

        text_lines = []
        for k in talents:
            texts = input.table_text_samples.get(k)
            if texts:
                text_lines.append(f"- {k}: {shorten_text(json.dumps(texts, ensure_ascii=False), 600)}")
        sections.append(("Table value text samples:", text_lines))

        unit_lines = []
        for k in talents:
            pairs = [
                [name, shorten_text(unit, 40)]
                for name, unit in input.table_units.get(k, {}).items()
                if unit and UNIT_HINT_MARKER.search(normalize_prompt_text(unit))
            ][:12]
            if pairs:
                unit_lines.append(f"- {k}: {json.dumps(pairs, ensure_ascii=False)}")
        sections.append(
            ("Tables whose unit names a damage bucket (these are buff tables, not multipliers):", unit_lines)
        )

        buff_like_lines = []
        for k in talents:
            picks = [t for t in input.tables.get(k, []) if BUFF_LIKE_TABLE_MARKER.search(t)][:12]
            if picks:
                buff_like_lines.append(f"- {k}: {json.dumps(picks, ensure_ascii=False)}")
        sections.append(("Buff-like tables (express them in buffs.data):", buff_like_lines))

        out = []
        for heading, lines in sections:
            if lines:
                out.append(heading)
                out.extend(lines)
                out.append("")
        return "\n".join(out)
