from __future__ import annotations

from typing import Any, Dict, List, Protocol, Sequence

from search.documents import SearchPage
from search.fallback import FallbackSearch
from search.health import IndexHealth
from search.index_store import IndexStore
from supabase_client.supabase_service import PinStore


class SearchBackend(Protocol):
    async def search(
        self, query_text: str, tags: Sequence[str] = (), page: int = 1, limit: int = 20
    ) -> SearchPage: ...

    async def suggest(self, query_text: str, limit: int = 10) -> List[str]: ...

    async def popular_tags(self, limit: int = 20) -> List[Dict[str, Any]]: ...


async def hydrate_ordered(store: PinStore, pin_ids: Sequence[str]) -> List[Dict[str, Any]]:
    """Load full pin rows for ``pin_ids`` in exactly that order.

    Ids without a row (deleted but still indexed) are dropped.
    """
    if not pin_ids:
        return []
    rows = await store.fetch_pins_by_ids(list(dict.fromkeys(pin_ids)))
    by_id = {str(row["id"]): row for row in rows}
    return [by_id[pin_id] for pin_id in pin_ids if pin_id in by_id]


class SearchFacade:
    """Single search entry point; picks the index or the fallback per call."""

    def __init__(self, health: IndexHealth, index_store: IndexStore, fallback: FallbackSearch, store: PinStore):
        self.health = health
        self.index_store = index_store
        self.fallback = fallback
        self.store = store

    def backend(self) -> SearchBackend:
        return self.index_store if self.health.available else self.fallback

    async def search(
        self, query_text: str, tags: Sequence[str] = (), page: int = 1, limit: int = 20
    ) -> SearchPage:
        backend = self.backend()
        result = await backend.search(query_text, tags, page, limit)
        if backend is self.fallback:
            return result
        pin_ids = [str(hit["id"]) for hit in result.pins]
        pins = await hydrate_ordered(self.store, pin_ids)
        return SearchPage(pins=pins, pagination=result.pagination)

    async def suggest(self, query_text: str, limit: int = 10) -> List[str]:
        return await self.backend().suggest(query_text, limit)

    async def popular_tags(self, limit: int = 20) -> List[Dict[str, Any]]:
        return await self.backend().popular_tags(limit)
