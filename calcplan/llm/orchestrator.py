"""Model call orchestration: cache read-through, transport, JSON extraction."""

from __future__ import annotations

import json
import re
from typing import Any, Callable, TypeVar

from calcplan.core.errors import CalcPlanError, ModelOutputError
from calcplan.core.models import CacheOptions
from calcplan.llm.cache import InMemoryResponseCache, ResponseCache, fingerprint
from calcplan.utils.llm_client import ModelClient
from calcplan.utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")

CACHE_PURPOSE = "calc-plan"

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def extract_json_object(text: str) -> dict[str, Any]:
    """Pull the first top-level JSON object out of a model response.

    Code fences are stripped; surrounding prose is ignored.
    """
    body = text or ""
    fenced = _FENCE_RE.search(body)
    if fenced:
        body = fenced.group(1)
    start = body.find("{")
    end = body.rfind("}")
    if start < 0 or end <= start:
        raise ModelOutputError("model output does not contain a JSON object")
    try:
        parsed = json.loads(body[start : end + 1])
    except json.JSONDecodeError as e:
        raise ModelOutputError(f"failed to parse model JSON output: {e.msg} at char {e.pos}") from e
    if not isinstance(parsed, dict):
        raise ModelOutputError("model output does not contain a JSON object")
    return parsed


class ModelOrchestrator:
    """Single model request with a validating read-through cache.

    ``request`` sends one prompt and hands the raw text to ``accept``. A cached
    response is reused only if ``accept`` takes it, and only text that ``accept``
    takes is written back. Retries are the caller's business.
    """

    def __init__(
        self,
        client: ModelClient,
        cache: ResponseCache | None = None,
        options: CacheOptions | None = None,
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ):
        self.client = client
        self.options = options or CacheOptions()
        if cache is None and self.options.enabled:
            cache = InMemoryResponseCache()
        self.cache = cache if self.options.enabled else None
        self.temperature = temperature
        self.max_tokens = max_tokens

    def request_fingerprint(self, messages: list[dict[str, str]]) -> str:
        params = {
            "model": getattr(self.client, "model", "unknown"),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        return fingerprint(self.options.version, CACHE_PURPOSE, messages, params)

    def request(self, messages: list[dict[str, str]], accept: Callable[[str], T]) -> T:
        """Return ``accept(text)`` for a cached or fresh response.

        Raises whatever ``accept`` raises for a fresh response, and any
        transport exception from the client.
        """
        fp = self.request_fingerprint(messages)

        if self.cache is not None and not self.options.force:
            cached = self.cache.get(fp)
            if cached is not None:
                try:
                    result = accept(cached)
                except CalcPlanError as e:
                    logger.debug(f"Ignoring cached response {fp[:12]}: {e}")
                else:
                    logger.debug(f"Cache hit {fp[:12]}")
                    return result

        logger.debug(f"Sending {len(messages)} messages to model {getattr(self.client, 'model', '?')}")
        text = self.client.send(messages, temperature=self.temperature)
        result = accept(text)

        if self.cache is not None:
            self.cache.put(fp, text, model=getattr(self.client, "model", None))
        return result
