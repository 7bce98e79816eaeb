"""
Context cache models for sprintlock.

This module provides the ContextItem, CacheEntry and CacheIndexEntry models
and the priority and tier vocabularies used by the context cache.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Priority(str, Enum):
    """Priority of a context item. Critical items are pinned."""

    CRITICAL = "critical"
    IMPORTANT = "important"
    OPTIONAL = "optional"


class Tier(str, Enum):
    """Cache tiers, hottest first."""

    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


TIER_ORDER: tuple[Tier, ...] = (Tier.HOT, Tier.WARM, Tier.COLD)


class ContextItem(BaseModel):
    """A contextual record served to coordinators, mergers and workers."""

    key: str = Field(..., min_length=1)
    payload: Any = None
    priority: Priority = Priority.OPTIONAL
    size: int = Field(..., ge=0)
    last_access: float = 0.0
    pinned: bool = False


class CacheEntry(BaseModel):
    """A ContextItem stored in a tier with tier-specific expiry."""

    item: ContextItem
    tier: Tier
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        if self.item.pinned or self.expires_at is None:
            return False
        return now >= self.expires_at


class CacheIndexEntry(BaseModel):
    """Payload-free description of a cache entry, as stored in checkpoints."""

    key: str
    tier: Tier
    priority: Priority
    size: int = Field(..., ge=0)
    pinned: bool = False
    last_access: float = 0.0


class CacheLookup(BaseModel):
    """Response of a cache query."""

    found: bool
    payload: Any = None
    tier: Optional[Tier] = None
