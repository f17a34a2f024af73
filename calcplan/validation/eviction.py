"""Detail budget and the policy that picks a row to replace when it is full."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from calcplan.core.models import Detail, DetailKind
from calcplan.core.vocabulary import MAX_DETAILS
from calcplan.utils.logger import setup_logger
from calcplan.utils.text import compact_text

logger = setup_logger(__name__)

SEGMENT_MARKER = re.compile(
    r"一段|二段|三段|四段|五段|六段|七段|八段|九段|十段|段伤害|"
    r"\b\d(st|nd|rd|th)[- ]?hit\b|\bhit ?\d\b|segment",
    re.IGNORECASE,
)
CHARGED_MARKER = re.compile(r"重击|下落|坠地|瞄准|charged|plunge|plunging|aimed", re.IGNORECASE)
AGGREGATE_MARKER = re.compile(r"单次|每段|每跳|每次|总伤|总计|合计|一轮|total|per hit", re.IGNORECASE)


def _row_text(detail: Detail) -> str:
    return f"{detail.title} {detail.table or ''}"


def is_normal_attack_row(detail: Detail) -> bool:
    """Plain normal-attack damage row (not charged, plunging or an aggregate)."""
    if detail.kind != DetailKind.DMG or detail.talent != "a":
        return False
    text = _row_text(detail)
    if AGGREGATE_MARKER.search(text):
        return False
    return detail.damage_key != "a2" and not CHARGED_MARKER.search(text)


def is_segment_row(detail: Detail) -> bool:
    return is_normal_attack_row(detail) and bool(SEGMENT_MARKER.search(_row_text(detail)))


def is_charged_row(detail: Detail) -> bool:
    if detail.kind != DetailKind.DMG or detail.talent != "a":
        return False
    text = _row_text(detail)
    if AGGREGATE_MARKER.search(text):
        return False
    return detail.damage_key in ("a2", "a3") or bool(CHARGED_MARKER.search(text))


class EvictionPolicy(ABC):
    """Chooses which existing row makes room for a new one."""

    @abstractmethod
    def choose(self, details: list[Detail], incoming: Detail) -> int | None:
        """Index of the row to replace, or None to reject ``incoming``."""
        raise NotImplementedError


class DefaultEvictionPolicy(EvictionPolicy):
    """Latest low-signal row first: segment rows, then normal attacks, then charged attacks."""

    STAGES = (is_segment_row, is_normal_attack_row, is_charged_row)

    def choose(self, details: list[Detail], incoming: Detail) -> int | None:
        for stage in self.STAGES:
            for i in range(len(details) - 1, -1, -1):
                if details[i] is not incoming and stage(details[i]):
                    return i
        return None


class NoEvictionPolicy(EvictionPolicy):
    """Never replace; rows beyond the cap are rejected."""

    def choose(self, details: list[Detail], incoming: Detail) -> int | None:
        return None


class DetailBudget:
    """Capped list of details with de-duplication and policy-driven replacement."""

    def __init__(
        self,
        details: list[Detail] | None = None,
        cap: int = MAX_DETAILS,
        policy: EvictionPolicy | None = None,
    ):
        self.cap = cap
        self.policy = policy or DefaultEvictionPolicy()
        self.details: list[Detail] = list(details or [])[:cap]
        self.evicted: list[Detail] = []

    def __len__(self) -> int:
        return len(self.details)

    def __iter__(self):
        return iter(list(self.details))

    @property
    def full(self) -> bool:
        return len(self.details) >= self.cap

    def has_title(self, title: str) -> bool:
        wanted = compact_text(title).lower()
        return any(compact_text(d.title).lower() == wanted for d in self.details)

    def find(
        self,
        kind: DetailKind | None = None,
        talent: str | None = None,
        table: str | None = None,
        key: str | None = None,
        element: str | None = None,
        any_element: bool = True,
    ) -> Detail | None:
        for d in self.details:
            if kind is not None and d.kind != kind:
                continue
            if talent is not None and d.talent != talent:
                continue
            if table is not None and d.table != table:
                continue
            if key is not None and d.damage_key != key:
                continue
            if not any_element and d.element != element:
                continue
            return d
        return None

    def add(self, detail: Detail) -> bool:
        """Append, or replace a policy-chosen row when full. Returns True if kept."""
        if any(d.identity() == detail.identity() for d in self.details) or self.has_title(detail.title):
            return False
        if not self.full:
            self.details.append(detail)
            return True
        idx = self.policy.choose(self.details, detail)
        if idx is None:
            logger.debug(f"Detail budget full; dropping derived row {detail.title!r}")
            return False
        evicted = self.details[idx]
        self.evicted.append(evicted)
        self.details[idx] = detail
        logger.debug(f"Evicted {evicted.title!r} for {detail.title!r}")
        return True

    def replace(self, old: Detail, new: Detail) -> None:
        for i, d in enumerate(self.details):
            if d is old:
                self.details[i] = new
                return
        raise ValueError(f"Detail {old.title!r} is not in the budget")
