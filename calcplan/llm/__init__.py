"""Model orchestration and response caching."""

from calcplan.llm.cache import DiskResponseCache, InMemoryResponseCache, ResponseCache
from calcplan.llm.orchestrator import ModelOrchestrator

__all__ = ["ModelOrchestrator", "ResponseCache", "InMemoryResponseCache", "DiskResponseCache"]
