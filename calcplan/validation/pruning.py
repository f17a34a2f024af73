"""Evidence checks and pruning of rare-mechanic rows."""

from __future__ import annotations

import re

from calcplan.core.models import Detail, DetailKind, Game, PlanInput
from calcplan.core.vocabulary import REACTION_EVIDENCE, TRANSFORMATIVE_REACTIONS
from calcplan.utils.logger import setup_logger

logger = setup_logger(__name__)

MAX_SPECIAL_ROWS = 2

EM_MARKER = re.compile(r"元素精通|精通|elemental mastery|\bmastery\b|\bem\b", re.IGNORECASE)
REACTION_WORD_MARKER = re.compile(
    r"反应|绽放|扩散|结晶|燃烧|超载|感电|超导|碎冰|击破|reaction|break", re.IGNORECASE
)

SPECIAL_EVIDENCE: dict[str, str] = {
    "elation": r"欢愉|elation",
}


def has_reaction_evidence(input: PlanInput, reaction: str) -> bool:
    """Hint or description text names this reaction, or talks about EM-driven reactions."""
    text = input.hint_text()
    if not text:
        return False
    pattern = REACTION_EVIDENCE.get(reaction) or SPECIAL_EVIDENCE.get(reaction)
    if pattern and re.search(pattern, text, re.IGNORECASE):
        return True
    # Transformative damage scales on mastery; a kit that stacks EM and mentions reactions counts
    if reaction in TRANSFORMATIVE_REACTIONS[input.game]:
        return bool(EM_MARKER.search(text)) and bool(REACTION_WORD_MARKER.search(text))
    return False


def special_mechanic(detail: Detail, game: Game) -> str | None:
    """Reaction or mechanic id if the row showcases a transformative/special mechanic."""
    special = TRANSFORMATIVE_REACTIONS[game] | frozenset(SPECIAL_EVIDENCE)
    if detail.kind == DetailKind.REACTION:
        return detail.reaction if detail.reaction in special else None
    if detail.element in special:
        return detail.element
    return None


def prune_special_rows(details: list[Detail], input: PlanInput, limit: int = MAX_SPECIAL_ROWS) -> list[Detail]:
    """Drop unevidenced special rows and keep at most ``limit`` evidenced ones."""
    kept: list[Detail] = []
    special_count = 0
    for detail in details:
        mechanic = special_mechanic(detail, input.game)
        if mechanic is None:
            kept.append(detail)
            continue
        if not has_reaction_evidence(input, mechanic):
            logger.debug(f"Pruned {detail.title!r}: no evidence for {mechanic}")
            continue
        if special_count >= limit:
            logger.debug(f"Pruned {detail.title!r}: special row limit {limit} reached")
            continue
        special_count += 1
        kept.append(detail)
    return kept
