"""Parley storage - conversation cache and run result persistence."""

from parley.storage.conversation_cache import (
    CachedConversation,
    ConversationCache,
    conversation_cache_key,
)
from parley.storage.json_store import ResultStore, RunRecord, new_run_id, write_results_json

__all__ = [
    "CachedConversation",
    "ConversationCache",
    "ResultStore",
    "RunRecord",
    "conversation_cache_key",
    "new_run_id",
    "write_results_json",
]
