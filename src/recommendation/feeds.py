"""
Pin feeds: personalized "for you", trending, and following.

The for-you feed ranks index candidates by the user's tag affinity and then
backfills with recently created, high-engagement pins so that even a user
with no history gets a full page.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

import pandas as pd

from config import FeedConfig
from recommendation.signals import InterestProfile, SignalAggregator
from search.facade import hydrate_ordered
from search.index_store import IndexStore
from supabase_client.supabase_service import PinStore

LOGGER = logging.getLogger(__name__)


def rank_by_engagement(
    pins: List[Dict[str, Any]],
    save_weight: float = 1.0,
    comment_weight: float = 1.0,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Stable sort by ``save_weight*saves + comment_weight*comments``, descending."""
    if not pins:
        return []
    frame = pd.DataFrame(
        {
            "position": range(len(pins)),
            "engagement": [
                save_weight * int(pin.get("save_count") or 0) + comment_weight * int(pin.get("comment_count") or 0)
                for pin in pins
            ],
        }
    )
    frame = frame.sort_values(by="engagement", ascending=False, kind="stable")
    if limit is not None:
        frame = frame.head(limit)
    return [pins[position] for position in frame["position"]]


def _without(pins: Iterable[Dict[str, Any]], exclude_ids: Set[str]) -> List[Dict[str, Any]]:
    return [pin for pin in pins if str(pin["id"]) not in exclude_ids]


class FeedService:
    def __init__(
        self,
        store: PinStore,
        index_store: IndexStore,
        aggregator: SignalAggregator,
        config: Optional[FeedConfig] = None,
    ):
        self.store = store
        self.index_store = index_store
        self.aggregator = aggregator
        self.config = config or FeedConfig()

    async def for_you(self, user_id: str) -> List[Dict[str, Any]]:
        size = self.config.size
        profile = await self.aggregator.collect(user_id)
        pins = await self._affinity_candidates(profile, size)
        if len(pins) < size:
            pins = pins + await self._backfill(profile.exclude_ids, pins, size - len(pins))
        return pins

    async def _affinity_candidates(self, profile: InterestProfile, size: int) -> List[Dict[str, Any]]:
        if profile.is_empty:
            return []
        # the index returns [] on any failure, which falls through to backfill
        candidate_ids = await self.index_store.match_weighted_tags(
            profile.top_tags,
            profile.exclude_ids,
            size=size * self.config.candidate_multiplier,
        )
        pin_ids = [pin_id for pin_id in candidate_ids if pin_id not in profile.exclude_ids][:size]
        pins = await hydrate_ordered(self.store, pin_ids)
        return _without(pins, profile.exclude_ids)[:size]

    async def _backfill(
        self, exclude_ids: Set[str], selected: List[Dict[str, Any]], remaining: int
    ) -> List[Dict[str, Any]]:
        skip = set(exclude_ids) | {str(pin["id"]) for pin in selected}
        recent = await self.store.fetch_recent_pins_excluding(
            skip, remaining * self.config.candidate_multiplier
        )
        return rank_by_engagement(_without(recent, skip), limit=remaining)

    async def trending(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Pins from the trending window ranked by ``2*saves + comments``."""
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        since = now - timedelta(days=self.config.trending_window_days)
        pins = await self.store.fetch_pins_created_since(since)
        if not pins:
            return []
        created = pd.to_datetime([pin.get("created_at") for pin in pins], utc=True, errors="coerce", format="ISO8601")
        in_window = [pin for pin, ts in zip(pins, created) if not pd.isna(ts) and ts >= pd.Timestamp(since)]
        return rank_by_engagement(in_window, save_weight=2.0, comment_weight=1.0, limit=self.config.size)

    async def following(self, user_id: str) -> List[Dict[str, Any]]:
        followed_ids = await self.store.fetch_followed_user_ids(user_id)
        if not followed_ids:
            return []
        return await self.store.fetch_pins_by_authors(followed_ids, self.config.size)

    async def record_view(self, pin_id: str, user_id: Optional[str] = None) -> None:
        """Best-effort view log; errors are never raised to the caller."""
        try:
            await self.store.record_view(pin_id, user_id)
        except Exception:
            LOGGER.debug("Failed to record view of pin %s", pin_id, exc_info=True)
