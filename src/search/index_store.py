"""
Elasticsearch-backed pin index.

Every public coroutine here swallows client errors: the index is a secondary,
rebuildable projection of the pins table, so a failed write must never undo
the database write that triggered it and a failed read degrades to an empty
result instead of an error.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from elasticsearch import AsyncElasticsearch

from config import IndexSettings
from search.documents import Pagination, SearchDocument, SearchPage
from search.health import IndexHealth

LOGGER = logging.getLogger(__name__)

# field -> boost for free-text queries
TEXT_FIELD_BOOSTS: Dict[str, float] = {
    "title": 3.0,
    "description": 1.0,
    "tags": 2.0,
    "username": 1.0,
}
TAG_KEYWORD_FIELD = "tags.keyword"


def index_definition(settings: IndexSettings) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Analysis settings and mappings for the pins index.

    Text fields are indexed with edge n-grams for prefix matching but searched
    with a plain lowercase/ascii-folding analyzer so queries are not expanded.
    """
    analysis = {
        "analysis": {
            "analyzer": {
                "pin_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "asciifolding", "edge_ngram_filter"],
                },
                "pin_search_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "asciifolding"],
                },
            },
            "filter": {
                "edge_ngram_filter": {
                    "type": "edge_ngram",
                    "min_gram": settings.min_gram,
                    "max_gram": settings.max_gram,
                },
            },
        }
    }
    text = {"type": "text", "analyzer": "pin_analyzer", "search_analyzer": "pin_search_analyzer"}
    mappings = {
        "properties": {
            "id": {"type": "keyword"},
            "title": {**text, "fields": {"keyword": {"type": "keyword"}}},
            "description": dict(text),
            "image_url": {"type": "keyword"},
            "tags": {**text, "fields": {"keyword": {"type": "keyword"}}},
            "user_id": {"type": "keyword"},
            "username": {"type": "keyword"},
            "created_at": {"type": "date"},
        }
    }
    return analysis, mappings


def build_search_query(query_text: str, tags: Sequence[str]) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Return the bool query and sort clause for a free-text + tag search."""
    bool_query: Dict[str, Any] = {}
    if query_text:
        bool_query["should"] = [
            {"match": {field: {"query": query_text, "boost": boost}}}
            for field, boost in TEXT_FIELD_BOOSTS.items()
        ]
        bool_query["minimum_should_match"] = 1
    if tags:
        bool_query["filter"] = [{"terms": {TAG_KEYWORD_FIELD: list(tags)}}]
    if query_text:
        sort = [{"_score": {"order": "desc"}}, {"created_at": {"order": "desc"}}]
    else:
        sort = [{"created_at": {"order": "desc"}}]
    return {"bool": bool_query}, sort


def _body(response: Any) -> Dict[str, Any]:
    # client responses wrap the decoded JSON in `.body`
    return getattr(response, "body", response) or {}


def _total_hits(hits: Dict[str, Any]) -> int:
    total = hits.get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total or 0)


class IndexStore:
    def __init__(self, client: AsyncElasticsearch, health: IndexHealth, settings: Optional[IndexSettings] = None):
        self.client = client
        self.health = health
        self.settings = settings or IndexSettings()

    @classmethod
    def from_settings(cls, settings: IndexSettings, health: IndexHealth) -> "IndexStore":
        client = AsyncElasticsearch(settings.url, request_timeout=settings.request_timeout)
        return cls(client, health, settings)

    @property
    def index_name(self) -> str:
        return self.settings.index_name

    @property
    def available(self) -> bool:
        return self.health.available

    async def close(self) -> None:
        await self.client.close()

    # ==================== LIFECYCLE ====================

    async def initialize(self) -> bool:
        """Probe the backend once and make sure the pins index exists.

        Never raises; the outcome is recorded on the shared ``IndexHealth``.
        """
        available = await self._probe_and_prepare()
        self.health.record_probe(available)
        if available:
            LOGGER.info("Search index '%s' is available", self.index_name)
        else:
            LOGGER.warning("Search index not available, search will use the database fallback")
        return available

    async def _probe_and_prepare(self) -> bool:
        try:
            if not await self.client.ping():
                return False
            if not await self.client.indices.exists(index=self.index_name):
                analysis, mappings = index_definition(self.settings)
                await self.client.indices.create(index=self.index_name, settings=analysis, mappings=mappings)
                LOGGER.info("Created search index '%s'", self.index_name)
            return True
        except Exception:
            LOGGER.debug("Search index probe failed", exc_info=True)
            return False

    # ==================== WRITES ====================

    async def index_document(self, doc: SearchDocument) -> bool:
        if not self.available:
            return False
        try:
            await self.client.index(index=self.index_name, id=doc.id, document=doc.to_source())
            return True
        except Exception:
            LOGGER.warning("Failed to index pin %s", doc.id, exc_info=True)
            return False

    async def bulk_index(self, docs: Iterable[SearchDocument]) -> int:
        """Upsert many documents; returns how many the backend accepted."""
        docs = list(docs)
        if not docs or not self.available:
            return 0
        operations: List[Dict[str, Any]] = []
        for doc in docs:
            operations.append({"index": {"_index": self.index_name, "_id": doc.id}})
            operations.append(doc.to_source())
        try:
            response = await self.client.bulk(operations=operations, refresh=True)
        except Exception:
            LOGGER.warning("Failed to bulk index %d pins", len(docs), exc_info=True)
            return 0
        failed = [
            item.get("index", {}).get("_id")
            for item in _body(response).get("items", [])
            if item.get("index", {}).get("error")
        ]
        if _body(response).get("errors") and failed:
            LOGGER.warning("Bulk index rejected %d of %d pins: %s", len(failed), len(docs), failed[:20])
        return len(docs) - len(failed)

    async def remove_document(self, pin_id: str) -> bool:
        if not self.available:
            return False
        try:
            await self.client.delete(index=self.index_name, id=pin_id)
            return True
        except Exception:
            LOGGER.warning("Failed to delete pin %s from index", pin_id, exc_info=True)
            return False

    # ==================== READS ====================

    async def search(
        self, query_text: str, tags: Sequence[str] = (), page: int = 1, limit: int = 20
    ) -> SearchPage:
        """Ranked search. Hits carry the indexed fields plus their ``score``."""
        if not self.available:
            return SearchPage.empty(page, limit)
        query, sort = build_search_query(query_text, tags)
        try:
            response = await self.client.search(
                index=self.index_name,
                from_=(page - 1) * limit,
                size=limit,
                query=query,
                sort=sort,
            )
        except Exception:
            LOGGER.warning("Search failed for query %r", query_text, exc_info=True)
            return SearchPage.empty(page, limit)
        hits = _body(response).get("hits", {})
        pins = [{**hit.get("_source", {}), "score": hit.get("_score")} for hit in hits.get("hits", [])]
        return SearchPage(pins=pins, pagination=Pagination(page=page, limit=limit, total=_total_hits(hits)))

    async def suggest(self, query_text: str, limit: int = 10) -> List[str]:
        """Titles and tags containing ``query_text``, first-match order, deduplicated."""
        if not self.available or not query_text:
            return []
        expansions = self.settings.suggest_max_expansions
        try:
            response = await self.client.search(
                index=self.index_name,
                size=limit,
                query={
                    "bool": {
                        "should": [
                            {"match_phrase_prefix": {"title": {"query": query_text, "max_expansions": expansions}}},
                            {
                                "match_phrase_prefix": {
                                    TAG_KEYWORD_FIELD: {"query": query_text, "max_expansions": expansions}
                                }
                            },
                        ]
                    }
                },
                source=["title", "tags"],
            )
        except Exception:
            LOGGER.warning("Suggestions failed for query %r", query_text, exc_info=True)
            return []

        needle = query_text.lower()
        suggestions: Dict[str, None] = {}
        for hit in _body(response).get("hits", {}).get("hits", []):
            source = hit.get("_source", {})
            title = source.get("title")
            if title and needle in title.lower():
                suggestions.setdefault(title, None)
            for tag in source.get("tags") or []:
                if needle in tag.lower():
                    suggestions.setdefault(tag, None)
        return list(suggestions)[:limit]

    async def popular_tags(self, limit: int = 20) -> List[Dict[str, Any]]:
        if not self.available:
            return []
        try:
            response = await self.client.search(
                index=self.index_name,
                size=0,
                aggs={"popular_tags": {"terms": {"field": TAG_KEYWORD_FIELD, "size": limit}}},
            )
        except Exception:
            LOGGER.warning("Failed to get popular tags", exc_info=True)
            return []
        buckets = (_body(response).get("aggregations") or {}).get("popular_tags", {}).get("buckets", [])
        return [{"tag": bucket["key"], "count": int(bucket["doc_count"])} for bucket in buckets[:limit]]

    async def match_weighted_tags(
        self, weighted_tags: Sequence[Tuple[str, float]], exclude_ids: Iterable[str], size: int
    ) -> List[str]:
        """Ids of pins matching any of the tags, each tag boosted by its weight.

        The exclusion here is best-effort; callers filter again after hydration.
        """
        if not self.available or not weighted_tags:
            return []
        bool_query: Dict[str, Any] = {
            "should": [
                {"match": {"tags": {"query": tag, "boost": weight or 1.0}}} for tag, weight in weighted_tags
            ],
            "minimum_should_match": 1,
        }
        excluded = sorted(exclude_ids)
        if excluded:
            bool_query["must_not"] = [{"terms": {"id": excluded}}]
        try:
            response = await self.client.search(
                index=self.index_name,
                size=size,
                query={"bool": bool_query},
                sort=[{"_score": {"order": "desc"}}, {"created_at": {"order": "desc"}}],
                source=["id"],
            )
        except Exception:
            LOGGER.warning("Tag recommendation query failed", exc_info=True)
            return []
        return [
            str(hit.get("_source", {}).get("id") or hit.get("_id"))
            for hit in _body(response).get("hits", {}).get("hits", [])
        ]
