from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pytest

from config import IndexSettings
from search.health import IndexHealth
from search.index_store import IndexStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_pin(
    pin_id: str,
    tags: Sequence[str] = (),
    user_id: str = "author",
    title: Optional[str] = None,
    description: Optional[str] = None,
    age: timedelta = timedelta(hours=1),
    saves: int = 0,
    comments: int = 0,
) -> Dict[str, Any]:
    return {
        "id": pin_id,
        "title": title or f"Pin {pin_id}",
        "description": description,
        "image_url": f"https://cdn.example.com/{pin_id}.jpg",
        "tags": list(tags),
        "user_id": user_id,
        "created_at": (NOW - age).isoformat(),
        "user": {"id": user_id, "username": f"user_{user_id}", "avatar_url": None},
        "save_count": saves,
        "comment_count": comments,
    }


class RelationalOutage(RuntimeError):
    pass


class FakePinStore:
    """In-memory stand-in for PinStore with the same coroutine surface."""

    def __init__(self, pins: Iterable[Dict[str, Any]] = ()):
        self.pins: Dict[str, Dict[str, Any]] = {pin["id"]: pin for pin in pins}
        self.owner_saves: Dict[str, List[str]] = {}
        self.member_saves: Dict[str, List[str]] = {}
        self.follows: Dict[str, List[str]] = {}
        self.views: List[tuple] = []
        self.fail = False
        self.fail_views = False
        self.calls: List[str] = []
        self.closed = False

    def add(self, *pins: Dict[str, Any]) -> None:
        for pin in pins:
            self.pins[pin["id"]] = pin

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail:
            raise RelationalOutage(f"database unavailable during {name}")

    def _by_recency(self, pins: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return sorted(pins, key=lambda pin: pin["created_at"], reverse=True)

    async def fetch_pins_by_ids(self, pin_ids):
        self._check("fetch_pins_by_ids")
        # natural table order, unrelated to the requested order
        return [copy.deepcopy(self.pins[pin_id]) for pin_id in sorted(pin_ids) if pin_id in self.pins]

    async def fetch_pins_by_author(self, user_id, limit):
        self._check("fetch_pins_by_author")
        return self._by_recency(p for p in self.pins.values() if p["user_id"] == user_id)[:limit]

    async def fetch_pins_by_authors(self, user_ids, limit):
        self._check("fetch_pins_by_authors")
        return self._by_recency(p for p in self.pins.values() if p["user_id"] in set(user_ids))[:limit]

    async def fetch_authored_pin_ids(self, user_id):
        self._check("fetch_authored_pin_ids")
        return [p["id"] for p in self.pins.values() if p["user_id"] == user_id]

    async def fetch_recent_pins_excluding(self, exclude_ids, limit):
        self._check("fetch_recent_pins_excluding")
        excluded = set(exclude_ids)
        return self._by_recency(p for p in self.pins.values() if p["id"] not in excluded)[:limit]

    async def fetch_pins_created_since(self, since):
        self._check("fetch_pins_created_since")
        cutoff = since.isoformat()
        return self._by_recency(p for p in self.pins.values() if p["created_at"] >= cutoff)

    async def search_pins(self, query_text, tags, offset, limit):
        self._check("search_pins")
        needle = query_text.lower()
        matches = []
        for pin in self.pins.values():
            if needle and needle not in pin["title"].lower() and needle not in (pin["description"] or "").lower():
                continue
            if tags and not set(tags) & set(pin["tags"]):
                continue
            matches.append(pin)
        ordered = self._by_recency(matches)
        return ordered[offset:offset + limit], len(ordered)

    async def fetch_all_tag_lists(self):
        self._check("fetch_all_tag_lists")
        return [list(p["tags"]) for p in self.pins.values()]

    async def iter_pin_batches(self, batch_size=500):
        self._check("iter_pin_batches")
        ordered = sorted(self.pins.values(), key=lambda pin: pin["created_at"])
        for start in range(0, len(ordered), batch_size):
            yield ordered[start:start + batch_size]

    async def fetch_saved_pins_for_owner(self, user_id, limit):
        self._check("fetch_saved_pins_for_owner")
        return [self.pins[i] for i in self.owner_saves.get(user_id, [])[:limit] if i in self.pins]

    async def fetch_saved_pins_for_member(self, user_id, limit):
        self._check("fetch_saved_pins_for_member")
        return [self.pins[i] for i in self.member_saves.get(user_id, [])[:limit] if i in self.pins]

    async def fetch_saved_pin_ids_for_owner(self, user_id):
        self._check("fetch_saved_pin_ids_for_owner")
        return list(self.owner_saves.get(user_id, []))

    async def fetch_saved_pin_ids_for_member(self, user_id):
        self._check("fetch_saved_pin_ids_for_member")
        return list(self.member_saves.get(user_id, []))

    async def fetch_followed_user_ids(self, user_id, limit=None):
        self._check("fetch_followed_user_ids")
        followed = list(self.follows.get(user_id, []))
        return followed if limit is None else followed[:limit]

    async def record_view(self, pin_id, user_id=None):
        if self.fail_views:
            raise RelationalOutage("pin_views insert failed")
        self.views.append((pin_id, user_id))

    async def close(self):
        self.closed = True


class FakeIndices:
    def __init__(self, client: "FakeElasticsearch"):
        self.client = client
        self.exists_result = False
        self.created: List[Dict[str, Any]] = []

    async def exists(self, index):
        self.client._record("indices.exists", index=index)
        return self.exists_result

    async def create(self, index, settings, mappings):
        self.client._record("indices.create", index=index)
        self.created.append({"index": index, "settings": settings, "mappings": mappings})


class FakeElasticsearch:
    """Records calls and replays canned responses, like AsyncElasticsearch."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.ping_result = True
        self.failing: set = set()
        self.indices = FakeIndices(self)
        self.search_response: Any = {"hits": {"total": {"value": 0}, "hits": []}}
        self.bulk_response: Dict[str, Any] = {"errors": False, "items": []}
        self.closed = False

    def _record(self, name: str, **kwargs) -> None:
        self.calls.append((name, kwargs))
        if name in self.failing:
            raise ConnectionError(f"{name} timed out")

    def called(self, name: str) -> List[Dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    async def ping(self):
        self._record("ping")
        return self.ping_result

    async def index(self, index, id, document):
        self._record("index", index=index, id=id, document=document)

    async def bulk(self, operations, refresh=False):
        self._record("bulk", operations=operations, refresh=refresh)
        return self.bulk_response

    async def delete(self, index, id):
        self._record("delete", index=index, id=id)

    async def search(self, **kwargs):
        self._record("search", **kwargs)
        if callable(self.search_response):
            return self.search_response(kwargs)
        return self.search_response

    async def close(self):
        self.closed = True


def hits_response(sources: Sequence[Dict[str, Any]], scores: Optional[Sequence[float]] = None, total: Optional[int] = None):
    scores = scores or [1.0] * len(sources)
    return {
        "hits": {
            "total": {"value": len(sources) if total is None else total, "relation": "eq"},
            "hits": [
                {"_id": source.get("id"), "_score": score, "_source": source}
                for source, score in zip(sources, scores)
            ],
        }
    }


@pytest.fixture
def es_client() -> FakeElasticsearch:
    return FakeElasticsearch()


@pytest.fixture
def make_index_store(es_client) -> Callable[..., IndexStore]:
    def _make(available: bool = True) -> IndexStore:
        health = IndexHealth()
        health.record_probe(available)
        return IndexStore(es_client, health, IndexSettings())

    return _make
