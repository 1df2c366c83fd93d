"""
Relational fallback for search reads while the index is unavailable.

Only the read contract is reproduced: results are ordered by recency with no
relevance scoring, and there are no prefix suggestions.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

import pandas as pd

from search.documents import Pagination, SearchPage
from supabase_client.supabase_service import PinStore


def count_tags(tag_lists: Sequence[Sequence[str]], limit: int) -> List[Dict[str, Any]]:
    """Tag frequencies across pins, most frequent first."""
    tags = [tag for tag_list in tag_lists for tag in tag_list or []]
    if not tags:
        return []
    counts = pd.Series(tags, dtype="object").value_counts(sort=False)
    counts = counts.sort_values(ascending=False, kind="stable").head(limit)
    return [{"tag": str(tag), "count": int(count)} for tag, count in counts.items()]


class FallbackSearch:
    def __init__(self, store: PinStore):
        self.store = store

    async def search(
        self, query_text: str, tags: Sequence[str] = (), page: int = 1, limit: int = 20
    ) -> SearchPage:
        rows, total = await self.store.search_pins(query_text, list(tags), (page - 1) * limit, limit)
        return SearchPage(pins=rows, pagination=Pagination(page=page, limit=limit, total=total))

    async def suggest(self, query_text: str, limit: int = 10) -> List[str]:
        return []

    async def popular_tags(self, limit: int = 20) -> List[Dict[str, Any]]:
        # full scan of every pin's tags; acceptable only in degraded mode
        tag_lists = await self.store.fetch_all_tag_lists()
        return count_tags(tag_lists, limit)
