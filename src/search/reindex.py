"""
Rebuild the pins index from the database.

    python -m search.reindex --batch-size 500

The index is a projection of the pins table, so this sweep is also the
recovery path after index loss or drift.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from config import AppConfig
from search.documents import SearchDocument
from search.health import IndexHealth
from search.index_store import IndexStore
from supabase_client.supabase_service import PinStore

LOGGER = logging.getLogger(__name__)


async def reindex_all(store: PinStore, index_store: IndexStore, batch_size: int = 500) -> int:
    """Bulk-index every pin; returns how many documents the index accepted."""
    seen = 0
    indexed = 0
    async for rows in store.iter_pin_batches(batch_size):
        seen += len(rows)
        indexed += await index_store.bulk_index(SearchDocument.from_pin(row) for row in rows)
        LOGGER.info("Indexed %d/%d pins so far", indexed, seen)
    if seen == 0:
        LOGGER.info("No pins to index")
    elif indexed < seen:
        LOGGER.warning("Indexed %d of %d pins", indexed, seen)
    else:
        LOGGER.info("Indexed %d pins successfully", indexed)
    return indexed


async def _run(config: AppConfig, batch_size: int) -> int:
    health = IndexHealth()
    index_store = IndexStore.from_settings(config.index, health)
    try:
        if not await index_store.initialize():
            LOGGER.error("Search index at %s is not reachable, nothing was indexed", config.index.url)
            return 1
        store = await PinStore.connect(config.store)
        try:
            await reindex_all(store, index_store, batch_size)
        finally:
            await store.close()
        return 0
    finally:
        await index_store.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-index every pin into the search index.")
    parser.add_argument("--batch-size", type=int, default=500, help="Pins read and bulk-indexed per request.")
    return parser.parse_args()


def main():
    args = _parse_args()
    config = AppConfig.from_env()
    logging.basicConfig(level=config.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(_run(config, args.batch_size)))


if __name__ == "__main__":
    main()
