import os
from abc import ABC, abstractmethod

from openai import OpenAI

from calcplan.core.models import ModelSettings


class ModelClient(ABC):
    """Chat-style model transport. Retry policy lives in the caller."""

    model: str = "unknown"

    @abstractmethod
    def send(self, messages: list[dict[str, str]], temperature: float | None = None) -> str:
        """Send chat messages and return the raw response text."""
        raise NotImplementedError


class LLMClient(ModelClient):
    """Client for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float = 30.0,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        # max_retries=0: the model orchestrator owns retries
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url,
            timeout=timeout_s,
            max_retries=0,
        )

    @classmethod
    def from_settings(cls, settings: ModelSettings) -> "LLMClient":
        """Build a client from settings, reading the key from settings.api_key_env."""
        api_key = os.getenv(settings.api_key_env) or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                f"Model is enabled but no API key found in ${settings.api_key_env} or $OPENAI_API_KEY"
            )
        return cls(
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            base_url=settings.base_url,
            api_key=api_key,
            timeout_s=settings.timeout_s,
        )

    def send(self, messages: list[dict[str, str]], temperature: float | None = None) -> str:
        """Send chat messages and return the first choice's content."""
        completion_kwargs = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if self.max_tokens is not None:
            completion_kwargs["max_tokens"] = self.max_tokens

        response = self.client.chat.completions.create(**completion_kwargs)

        return response.choices[0].message.content or ""
