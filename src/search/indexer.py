from __future__ import annotations

from typing import Any, Dict, Iterable

from search.documents import SearchDocument
from search.index_store import IndexStore


class PinIndexer:
    """Keeps the index in step with pin create/update/delete.

    Called after the database write has committed; failures are logged by the
    index store and never reach the caller.
    """

    def __init__(self, index_store: IndexStore):
        self.index_store = index_store

    async def pin_saved(self, pin: Dict[str, Any]) -> bool:
        return await self.index_store.index_document(SearchDocument.from_pin(pin))

    async def pins_saved(self, pins: Iterable[Dict[str, Any]]) -> int:
        return await self.index_store.bulk_index(SearchDocument.from_pin(pin) for pin in pins)

    async def pin_deleted(self, pin_id: str) -> bool:
        return await self.index_store.remove_document(pin_id)
