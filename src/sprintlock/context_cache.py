"""
Multi-tier, token-budgeted context cache.

Three tiers, hottest first: hot (small, short TTL), warm (larger, medium TTL)
and cold (durable, no TTL by default). Lookups go hot -> warm -> cold and a
hit moves the entry one tier up. Inserting into a full tier evicts its least
recently used unpinned entries, which cascade one tier down; entries evicted
from cold are dropped. Critical entries are pinned: never evicted, never
expired, and only removable after ``demote``.
"""

import json
import logging
import math
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Iterable, Optional

from .config.settings import CacheSettings
from .errors import PinnedItemError
from .models import (
    TIER_ORDER,
    CacheEntry,
    CacheIndexEntry,
    CacheLookup,
    ContextItem,
    Priority,
    Tier,
)
from .utils.jsonl_logger import get_logger, log_with_context

logger = get_logger("cache")

DEFAULT_PLACEMENT = {
    Priority.CRITICAL: Tier.COLD,
    Priority.IMPORTANT: Tier.WARM,
    Priority.OPTIONAL: Tier.HOT,
}


def estimate_tokens(payload: Any) -> int:
    """Approximate token count: one token per four characters."""
    if payload is None:
        return 0
    text = payload if isinstance(payload, str) else json.dumps(payload, sort_keys=True, default=str)
    return math.ceil(len(text) / 4)


class ContextCacheManager:
    """Serves context records under a per-tier token budget."""

    def __init__(self, settings: Optional[CacheSettings] = None, clock: Callable[[], float] = time.time):
        settings = settings or CacheSettings()
        self.clock = clock
        self.budgets = {
            Tier.HOT: settings.hot_budget,
            Tier.WARM: settings.warm_budget,
            Tier.COLD: settings.cold_budget,
        }
        self.ttls = {
            Tier.HOT: settings.hot_ttl,
            Tier.WARM: settings.warm_ttl,
            Tier.COLD: settings.cold_ttl,
        }
        self._tiers: dict[Tier, "OrderedDict[str, CacheEntry]"] = {t: OrderedDict() for t in TIER_ORDER}
        self._lock = threading.RLock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "promotions": 0,
            "evictions": 0,
            "drops": 0,
            "expirations": 0,
            "rejections": 0,
        }

    # Queries

    def get(self, key: str) -> CacheLookup:
        with self._lock:
            now = self.clock()
            found = self._find(key)
            if found is None:
                self._stats["misses"] += 1
                return CacheLookup(found=False)

            tier, entry = found
            if entry.is_expired(now):
                del self._tiers[tier][key]
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                return CacheLookup(found=False)

            self._stats["hits"] += 1
            entry.item.last_access = now
            self._tiers[tier].move_to_end(key)
            if not entry.item.pinned and tier is not Tier.HOT:
                self._promote(key, tier, now)
            return CacheLookup(found=True, payload=entry.item.payload, tier=tier)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._find(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._tiers.values())

    def tier_of(self, key: str) -> Optional[Tier]:
        with self._lock:
            found = self._find(key)
            return found[0] if found else None

    def usage(self, tier: Tier) -> int:
        with self._lock:
            return sum(e.item.size for e in self._tiers[tier].values())

    def index(self) -> list[CacheIndexEntry]:
        """Keys, tiers and sizes of every entry; no payloads."""
        with self._lock:
            return [
                CacheIndexEntry(
                    key=key,
                    tier=tier,
                    priority=entry.item.priority,
                    size=entry.item.size,
                    pinned=entry.item.pinned,
                    last_access=entry.item.last_access,
                )
                for tier in TIER_ORDER
                for key, entry in self._tiers[tier].items()
            ]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                **self._stats,
                "entries": len(self),
                "tiers": {
                    tier.value: {
                        "entries": len(self._tiers[tier]),
                        "used": self.usage(tier),
                        "budget": self.budgets[tier],
                    }
                    for tier in TIER_ORDER
                },
            }

    # Mutations

    def set(
        self,
        key: str,
        payload: Any,
        priority: Priority = Priority.OPTIONAL,
        size: Optional[int] = None,
        tier: Optional[Tier] = None,
    ) -> Optional[Tier]:
        """Insert or replace an entry.

        Returns the tier the entry landed in, or None when it fits nowhere. A
        rejected replacement leaves the existing entry as it was.

        Raises:
            PinnedItemError: If the key is pinned and the new priority is not critical
        """
        priority = Priority(priority)
        size = estimate_tokens(payload) if size is None else size
        if size < 0:
            raise ValueError("size must be non-negative")

        with self._lock:
            now = self.clock()
            existing = self._find(key)
            if existing is not None:
                old_tier, old_entry = existing
                if old_entry.item.pinned and priority is not Priority.CRITICAL:
                    raise PinnedItemError(key)
                del self._tiers[old_tier][key]

            item = ContextItem(
                key=key,
                payload=payload,
                priority=priority,
                size=size,
                last_access=now,
                pinned=priority is Priority.CRITICAL,
            )
            placed = self._insert(item, Tier(tier) if tier else DEFAULT_PLACEMENT[priority], now)
            if placed is None:
                if existing is not None:
                    # _insert touched nothing, so the old entry still fits where it was
                    self._tiers[old_tier][key] = old_entry
                self._stats["rejections"] += 1
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Context item fits no tier; not cached",
                    key=key,
                    size=size,
                    priority=priority.value,
                )
            return placed

    def invalidate(self, key: str) -> bool:
        """Remove an entry. Returns False when the key is absent.

        Raises:
            PinnedItemError: If the entry is pinned
        """
        with self._lock:
            found = self._find(key)
            if found is None:
                return False
            tier, entry = found
            if entry.item.pinned:
                raise PinnedItemError(key)
            del self._tiers[tier][key]
            return True

    def demote(self, key: str, priority: Priority = Priority.IMPORTANT) -> bool:
        """Unpin an entry and lower its priority. It stays in its current tier."""
        priority = Priority(priority)
        if priority is Priority.CRITICAL:
            raise ValueError("Cannot demote to critical")
        with self._lock:
            found = self._find(key)
            if found is None:
                return False
            tier, entry = found
            entry.item.pinned = False
            entry.item.priority = priority
            entry.expires_at = self._expiry(tier, self.clock())
            return True

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            now = self.clock() if now is None else now
            removed = 0
            for tier in TIER_ORDER:
                expired = [k for k, e in self._tiers[tier].items() if e.is_expired(now)]
                for key in expired:
                    del self._tiers[tier][key]
                removed += len(expired)
            self._stats["expirations"] += removed
            return removed

    def clear(self) -> None:
        """Drop everything, pinned entries included."""
        with self._lock:
            for entries in self._tiers.values():
                entries.clear()

    def rehydrate(
        self, index: Iterable[CacheIndexEntry], loader: Optional[Callable[[str], Any]] = None
    ) -> int:
        """Refill entries from a checkpointed index.

        ``loader`` fetches the payload of a key; keys it returns None for are
        skipped. Without a loader, only critical entries are restored, with no
        payload, so pinned keys survive a restart. Keys already cached are
        left alone.
        """
        restored = 0
        for entry in index:
            if entry.key in self:
                continue
            payload = loader(entry.key) if loader else None
            if payload is None and (loader is not None or entry.priority is not Priority.CRITICAL):
                continue
            if self.set(entry.key, payload, entry.priority, size=entry.size, tier=entry.tier):
                restored += 1
        log_with_context(logger, logging.INFO, "Rehydrated context cache", restored=restored)
        return restored

    # Internals

    def _find(self, key: str) -> Optional[tuple[Tier, CacheEntry]]:
        for tier in TIER_ORDER:
            entry = self._tiers[tier].get(key)
            if entry is not None:
                return tier, entry
        return None

    def _expiry(self, tier: Tier, now: float) -> Optional[float]:
        ttl = self.ttls[tier]
        return None if ttl is None else now + ttl

    def _pinned_usage(self, tier: Tier) -> int:
        return sum(e.item.size for e in self._tiers[tier].values() if e.item.pinned)

    def _fits(self, item: ContextItem, tier: Tier) -> bool:
        return item.size <= self.budgets[tier] - self._pinned_usage(tier)

    def _insert(self, item: ContextItem, start: Tier, now: float) -> Optional[Tier]:
        """Place an item in ``start`` or the first colder tier that can hold it."""
        for tier in TIER_ORDER[TIER_ORDER.index(start) :]:
            if not self._fits(item, tier):
                continue
            self._make_room(tier, item.size, now)
            self._tiers[tier][item.key] = CacheEntry(
                item=item, tier=tier, expires_at=self._expiry(tier, now)
            )
            return tier
        return None

    def _make_room(self, tier: Tier, size: int, now: float) -> None:
        entries = self._tiers[tier]
        used = sum(e.item.size for e in entries.values())
        while used + size > self.budgets[tier]:
            victim = next(k for k, e in entries.items() if not e.item.pinned)
            evicted = entries.pop(victim)
            used -= evicted.item.size
            self._stats["evictions"] += 1
            colder = TIER_ORDER.index(tier) + 1
            if colder == len(TIER_ORDER):
                self._stats["drops"] += 1
                log_with_context(logger, logging.DEBUG, "Dropped context item", key=victim)
            elif self._insert(evicted.item, TIER_ORDER[colder], now) is None:
                self._stats["drops"] += 1

    def _promote(self, key: str, tier: Tier, now: float) -> None:
        hotter = TIER_ORDER[TIER_ORDER.index(tier) - 1]
        entry = self._tiers[tier][key]
        if not self._fits(entry.item, hotter):
            return
        del self._tiers[tier][key]
        self._make_room(hotter, entry.item.size, now)
        self._tiers[hotter][key] = CacheEntry(
            item=entry.item, tier=hotter, expires_at=self._expiry(hotter, now)
        )
        self._stats["promotions"] += 1
