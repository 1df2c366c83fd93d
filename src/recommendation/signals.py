from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence, Set, Tuple

import pandas as pd

from config import SignalBounds, SignalWeights
from supabase_client.supabase_service import PinStore


@dataclass
class InterestProfile:
    """Per-request view of what a user engages with. Never persisted."""

    affinity: Dict[str, float] = field(default_factory=dict)
    top_tags: List[Tuple[str, float]] = field(default_factory=list)
    exclude_ids: Set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.top_tags


def tag_affinity(sources: Iterable[Tuple[float, Sequence[Dict[str, Any]]]]) -> pd.DataFrame:
    """Sum source weight per tag occurrence, highest affinity first.

    Equal affinities keep the order in which the tags were first seen.
    """
    rows = [
        {"tag": tag, "weight": float(weight)}
        for weight, pins in sources
        for pin in pins
        for tag in pin.get("tags") or []
    ]
    if not rows:
        return pd.DataFrame(columns=["tag", "affinity"])
    frame = pd.DataFrame(rows)
    agg = frame.groupby("tag", sort=False)["weight"].sum().reset_index(name="affinity")
    return agg.sort_values(by="affinity", ascending=False, kind="stable").reset_index(drop=True)


class SignalAggregator:
    def __init__(
        self,
        store: PinStore,
        weights: SignalWeights | None = None,
        bounds: SignalBounds | None = None,
        top_n: int = 10,
    ):
        self.store = store
        self.weights = weights or SignalWeights()
        self.bounds = bounds or SignalBounds()
        self.top_n = top_n

    async def collect(self, user_id: str) -> InterestProfile:
        sources, exclude_ids = await asyncio.gather(
            self._signal_sources(user_id),
            self._exclusion_set(user_id),
        )
        ranked = tag_affinity(sources)
        affinity = {str(row.tag): float(row.affinity) for row in ranked.itertuples(index=False)}
        top_tags = list(affinity.items())[: self.top_n]
        return InterestProfile(affinity=affinity, top_tags=top_tags, exclude_ids=exclude_ids)

    async def _signal_sources(self, user_id: str) -> List[Tuple[float, Sequence[Dict[str, Any]]]]:
        owned, member, authored, followed = await asyncio.gather(
            self.store.fetch_saved_pins_for_owner(user_id, self.bounds.owned_saves),
            self.store.fetch_saved_pins_for_member(user_id, self.bounds.member_saves),
            self.store.fetch_pins_by_author(user_id, self.bounds.authored),
            self._followed_pins(user_id),
        )
        return [
            (self.weights.owned_saves, owned),
            (self.weights.member_saves, member),
            (self.weights.authored, authored),
            (self.weights.followed, followed),
        ]

    async def _followed_pins(self, user_id: str) -> List[Dict[str, Any]]:
        followed_ids = await self.store.fetch_followed_user_ids(user_id, self.bounds.followed_users)
        if not followed_ids:
            return []
        per_user = await asyncio.gather(
            *(
                self.store.fetch_pins_by_author(followed_id, self.bounds.pins_per_followed_user)
                for followed_id in followed_ids
            )
        )
        return [pin for pins in per_user for pin in pins]

    async def _exclusion_set(self, user_id: str) -> Set[str]:
        # pins from followed users stay recommendable
        owned, member, authored = await asyncio.gather(
            self.store.fetch_saved_pin_ids_for_owner(user_id),
            self.store.fetch_saved_pin_ids_for_member(user_id),
            self.store.fetch_authored_pin_ids(user_id),
        )
        return {str(pin_id) for pin_id in (*owned, *member, *authored)}
