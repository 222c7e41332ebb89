"""Time-boxed in-process cache for chatbot, widget and knowledge lookups."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable, Optional

from agent_chat.log import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


class CacheNamespace(StrEnum):
    CHATBOT = "chatbot"
    WIDGET = "widget"
    KNOWLEDGE = "knowledge"


@dataclass(slots=True)
class _CacheEntry:
    value: Any
    expires_at: float


class ConfigCache:
    """Per-namespace map of chatbot id -> value with an absolute expiry.

    Expired entries are evicted lazily on read. There is no size bound: the
    keyspace is the set of chatbots served by this process, which is the
    scaling limit of this cache.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[CacheNamespace, dict[str, _CacheEntry]] = {
            ns: {} for ns in CacheNamespace
        }

    def set(
        self, namespace: CacheNamespace, key: str, value: Any, ttl: Optional[float] = None
    ) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[namespace][key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get(self, namespace: CacheNamespace, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        entries = self._entries[namespace]
        entry = entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            entries.pop(key, None)
            return None
        return entry.value

    def invalidate(self, namespace: CacheNamespace, key: str) -> None:
        self._entries[namespace].pop(key, None)

    def invalidate_all(self, key: str) -> None:
        """Drop every namespace's entry for one chatbot."""
        for entries in self._entries.values():
            entries.pop(key, None)
        logger.debug("config_cache_invalidated", chatbot_id=key)

    def clear(self) -> None:
        for entries in self._entries.values():
            entries.clear()

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())
