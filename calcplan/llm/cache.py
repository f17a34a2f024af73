"""Response caches for model calls, keyed by a request fingerprint."""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from calcplan.utils.logger import setup_logger

logger = setup_logger(__name__)


def fingerprint(version: str, purpose: str, messages: list[dict[str, str]], params: dict[str, Any]) -> str:
    """sha256 over the sorted-key JSON of the request. Never includes credentials."""
    payload = {"version": version, "purpose": purpose, "messages": messages, "params": params}
    text = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ResponseCache(ABC):
    """Key-value store of raw model response text."""

    @abstractmethod
    def get(self, fp: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def put(self, fp: str, text: str, model: str | None = None) -> None:
        raise NotImplementedError


class InMemoryResponseCache(ResponseCache):
    def __init__(self):
        self._entries: dict[str, str] = {}

    def get(self, fp: str) -> str | None:
        return self._entries.get(fp)

    def put(self, fp: str, text: str, model: str | None = None) -> None:
        self._entries[fp] = text

    def __len__(self) -> int:
        return len(self._entries)


class DiskResponseCache(ResponseCache):
    """One JSON file per fingerprint under ``<root>/<purpose>/``.

    Unreadable or malformed entries are treated as misses. Writes go through
    a temp file and a rename so a crash never leaves a partial entry.
    """

    def __init__(self, root: str | Path, purpose: str = "calc-plan"):
        self.root = Path(root)
        self.purpose = purpose

    def path_for(self, fp: str) -> Path:
        return self.root / self.purpose / f"{fp}.json"

    def get(self, fp: str) -> str | None:
        path = self.path_for(fp)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                entry = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.debug(f"Ignoring unreadable cache entry {path.name}: {e}")
            return None
        text = entry.get("text") if isinstance(entry, dict) else None
        return text if isinstance(text, str) else None

    def put(self, fp: str, text: str, model: str | None = None) -> None:
        path = self.path_for(fp)
        entry = {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "model": model,
            "text": text,
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(entry, f, ensure_ascii=False, indent=2)
                f.write("\n")
            tmp.replace(path)
        except OSError as e:
            logger.warning(f"Could not write cache entry {path}: {e}")
