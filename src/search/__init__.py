"""
Pin search: an Elasticsearch projection of the pins table with a relational
fallback for when the index is unreachable.

    * ``IndexStore`` maintains and queries the index,
    * ``FallbackSearch`` answers the same reads from the database,
    * ``SearchFacade`` picks between them and hydrates index hits,
    * ``PinIndexer`` and ``reindex_all`` keep the projection current.
"""

from .documents import Pagination, SearchDocument, SearchPage
from .facade import SearchFacade, hydrate_ordered
from .fallback import FallbackSearch
from .health import IndexHealth
from .index_store import IndexStore
from .indexer import PinIndexer

__all__ = [
    "FallbackSearch",
    "IndexHealth",
    "IndexStore",
    "Pagination",
    "PinIndexer",
    "SearchDocument",
    "SearchFacade",
    "SearchPage",
    "hydrate_ordered",
]
