"""On-disk cache for LLM-generated conversations.

Generating a conversation costs tokens, and the same scenario is often
run many times. Conversations are cached under a sha256 of everything
that shapes the generation (persona, first message, variables, model,
temperature), one JSON file per key. A corrupt file or one whose stored
hash disagrees with its name is treated as a miss.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from parley.models.definition import TestDefinition
from parley.models.result import ConversationTurn

log = structlog.get_logger(__name__)


class CachedConversation(BaseModel):
    """One cached conversation file."""

    model_config = {"extra": "forbid"}

    hash: str
    test_name: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    model: str
    turns: list[ConversationTurn]


def conversation_cache_key(
    prompt: str,
    first_message: str,
    variables: dict[str, Any],
    model: str,
    temperature: float,
) -> str:
    """Return the sha256 hex digest identifying one generation setup."""
    content = json.dumps(
        {
            "prompt": prompt,
            "firstMessage": first_message,
            "variables": variables,
            "model": model,
            "temperature": temperature,
        },
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ConversationCache:
    """Persist generated conversations as ``{cache_dir}/{sha256}.json``.

    Writes are atomic (write to .tmp, then rename).
    """

    def __init__(self, cache_dir: Path | str = ".parley/conversations") -> None:
        self.cache_dir = Path(cache_dir)

    def key_for(self, test: TestDefinition, model: str, temperature: float) -> str:
        user = test.simulated_user
        return conversation_cache_key(
            user.prompt, user.first_message, test.dynamic_variables, model, temperature
        )

    def get(
        self, test: TestDefinition, model: str, temperature: float
    ) -> list[ConversationTurn] | None:
        """Return the cached turns for this setup, or None on a miss."""
        key = self.key_for(test, model, temperature)
        path = self.cache_dir / f"{key}.json"
        if not path.exists():
            return None
        try:
            cached = CachedConversation.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as exc:
            log.warning("cache.corrupt_entry", path=str(path), error=str(exc))
            return None
        if cached.hash != key:
            log.warning("cache.hash_mismatch", path=str(path))
            return None
        log.debug("cache.hit", test_name=test.name, key=key[:12])
        return cached.turns

    def set(
        self,
        test: TestDefinition,
        model: str,
        temperature: float,
        turns: list[ConversationTurn],
    ) -> Path:
        """Store ``turns`` for this setup and return the file path."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        key = self.key_for(test, model, temperature)
        cached = CachedConversation(hash=key, test_name=test.name, model=model, turns=turns)

        path = self.cache_dir / f"{key}.json"
        tmp_path = self.cache_dir / f"{key}.json.tmp"
        tmp_path.write_text(cached.model_dump_json(indent=2), encoding="utf-8")
        tmp_path.rename(path)
        log.debug("cache.stored", test_name=test.name, key=key[:12])
        return path

    def clear(self) -> int:
        """Delete every cached conversation and return how many were removed."""
        if not self.cache_dir.exists():
            return 0
        removed = 0
        for path in self.cache_dir.glob("*.json"):
            path.unlink()
            removed += 1
        return removed
