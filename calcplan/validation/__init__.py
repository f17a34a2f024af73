"""Plan validation, enrichment, eviction, pruning and buff filtering."""

from calcplan.validation.buff_filter import BuffFilter
from calcplan.validation.enrichment import PlanEnricher
from calcplan.validation.eviction import DefaultEvictionPolicy, EvictionPolicy, NoEvictionPolicy
from calcplan.validation.plan_validator import PlanValidator

__all__ = [
    "PlanValidator",
    "PlanEnricher",
    "BuffFilter",
    "EvictionPolicy",
    "DefaultEvictionPolicy",
    "NoEvictionPolicy",
]
