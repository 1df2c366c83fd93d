from __future__ import annotations

import asyncio

import pytest

from config import IndexSettings
from search.documents import SearchDocument
from search.health import IndexHealth
from search.index_store import IndexStore, build_search_query

from conftest import hits_response


def _doc(pin_id: str, **overrides) -> SearchDocument:
    fields = dict(
        id=pin_id,
        title=f"Pin {pin_id}",
        tags=["food"],
        user_id="u1",
        username="alice",
        created_at="2026-10-18T12:00:00+00:00",
    )
    fields.update(overrides)
    return SearchDocument(**fields)


def test_initialize_creates_index_with_split_analyzers(es_client):
    health = IndexHealth()
    store = IndexStore(es_client, health, IndexSettings(index_name="pins"))

    assert asyncio.run(store.initialize()) is True
    assert health.available is True

    created = es_client.indices.created[0]
    analysis = created["settings"]["analysis"]
    assert analysis["filter"]["edge_ngram_filter"]["min_gram"] == 2
    assert analysis["filter"]["edge_ngram_filter"]["max_gram"] == 20
    assert "edge_ngram_filter" in analysis["analyzer"]["pin_analyzer"]["filter"]
    assert analysis["analyzer"]["pin_search_analyzer"]["filter"] == ["lowercase", "asciifolding"]
    title = created["mappings"]["properties"]["title"]
    assert title["analyzer"] == "pin_analyzer"
    assert title["search_analyzer"] == "pin_search_analyzer"


def test_initialize_skips_creation_when_index_exists(es_client):
    es_client.indices.exists_result = True
    store = IndexStore(es_client, IndexHealth())

    asyncio.run(store.initialize())

    assert es_client.indices.created == []
    assert store.available is True


@pytest.mark.parametrize("failure", ["ping_false", "ping_raises", "create_raises"])
def test_initialize_never_raises_and_marks_unavailable(es_client, failure):
    if failure == "ping_false":
        es_client.ping_result = False
    elif failure == "ping_raises":
        es_client.failing.add("ping")
    else:
        es_client.failing.add("indices.create")
    health = IndexHealth()

    assert asyncio.run(IndexStore(es_client, health).initialize()) is False
    assert health.available is False
    assert health.probed is True


def test_availability_is_recorded_once():
    health = IndexHealth()
    health.record_probe(True)
    with pytest.raises(RuntimeError):
        health.record_probe(False)
    assert health.available is True


def test_writes_are_noops_when_unavailable(es_client, make_index_store):
    store = make_index_store(available=False)

    async def scenario():
        assert await store.index_document(_doc("p1")) is False
        assert await store.bulk_index([_doc("p1"), _doc("p2")]) == 0
        assert await store.remove_document("p1") is False

    asyncio.run(scenario())
    assert es_client.calls == []


def test_write_failures_are_swallowed_and_do_not_flip_health(es_client, make_index_store):
    es_client.failing.update({"index", "bulk", "delete"})
    store = make_index_store()

    async def scenario():
        assert await store.index_document(_doc("p1")) is False
        assert await store.bulk_index([_doc("p1")]) == 0
        assert await store.remove_document("p1") is False

    asyncio.run(scenario())
    assert store.available is True


def test_index_document_upserts_by_id(es_client, make_index_store):
    store = make_index_store()

    assert asyncio.run(store.index_document(_doc("p7", tags=["cats", "pets"]))) is True

    call = es_client.called("index")[0]
    assert call["id"] == "p7"
    assert call["document"]["tags"] == ["cats", "pets"]
    assert call["document"]["username"] == "alice"


def test_bulk_index_empty_input_is_noop(es_client, make_index_store):
    assert asyncio.run(make_index_store().bulk_index([])) == 0
    assert es_client.called("bulk") == []


def test_bulk_index_sends_action_document_pairs_and_counts_rejections(es_client, make_index_store):
    es_client.bulk_response = {
        "errors": True,
        "items": [
            {"index": {"_id": "p1", "status": 201}},
            {"index": {"_id": "p2", "status": 400, "error": {"type": "mapper_parsing_exception"}}},
        ],
    }

    accepted = asyncio.run(make_index_store().bulk_index([_doc("p1"), _doc("p2")]))

    assert accepted == 1
    operations = es_client.called("bulk")[0]["operations"]
    assert operations[0] == {"index": {"_index": "pins", "_id": "p1"}}
    assert operations[1]["id"] == "p1"
    assert operations[2] == {"index": {"_index": "pins", "_id": "p2"}}


def test_build_search_query_with_text_and_tags():
    query, sort = build_search_query("pizza", ["food", "italian"])

    should = query["bool"]["should"]
    boosts = {field: clause["match"][field]["boost"] for clause in should for field in clause["match"]}
    assert boosts == {"title": 3.0, "description": 1.0, "tags": 2.0, "username": 1.0}
    assert query["bool"]["minimum_should_match"] == 1
    assert query["bool"]["filter"] == [{"terms": {"tags.keyword": ["food", "italian"]}}]
    assert sort == [{"_score": {"order": "desc"}}, {"created_at": {"order": "desc"}}]


def test_build_search_query_without_text_sorts_by_recency_only():
    query, sort = build_search_query("", ["food"])

    assert "should" not in query["bool"]
    assert sort == [{"created_at": {"order": "desc"}}]


def test_search_returns_scored_hits_and_pagination(es_client, make_index_store):
    es_client.search_response = hits_response(
        [{"id": "p3", "title": "c"}, {"id": "p1", "title": "a"}], scores=[9.0, 5.0], total=45
    )

    page = asyncio.run(make_index_store().search("cat", [], page=3, limit=20))

    call = es_client.called("search")[0]
    assert call["from_"] == 40
    assert call["size"] == 20
    assert [hit["id"] for hit in page.pins] == ["p3", "p1"]
    assert [hit["score"] for hit in page.pins] == [9.0, 5.0]
    assert page.pagination.to_dict() == {"page": 3, "limit": 20, "total": 45, "total_pages": 3}


def test_search_failure_returns_empty_page(es_client, make_index_store):
    es_client.failing.add("search")

    page = asyncio.run(make_index_store().search("cat", [], page=2, limit=10))

    assert page.pins == []
    assert page.pagination.to_dict() == {"page": 2, "limit": 10, "total": 0, "total_pages": 0}


def test_suggest_deduplicates_and_bounds_results(es_client, make_index_store):
    sources = [{"title": f"Pizza night {i}", "tags": ["pizza", "Pizza Party"]} for i in range(15)]
    sources.append({"title": "Pizza night 3", "tags": ["pasta"]})
    es_client.search_response = hits_response(sources)

    suggestions = asyncio.run(make_index_store().suggest("pizza", 10))

    assert len(suggestions) == 10
    assert len(set(suggestions)) == len(suggestions)
    # first-match order: first title, then its matching tags
    assert suggestions[:3] == ["Pizza night 0", "pizza", "Pizza Party"]
    call = es_client.called("search")[0]
    assert call["source"] == ["title", "tags"]
    prefix = call["query"]["bool"]["should"][0]["match_phrase_prefix"]["title"]
    assert prefix["max_expansions"] == 50


def test_suggest_only_keeps_strings_containing_query(es_client, make_index_store):
    es_client.search_response = hits_response([{"title": "Sunset beach", "tags": ["Summer", "sea", "SUNNY"]}])

    assert asyncio.run(make_index_store().suggest("sun", 10)) == ["Sunset beach", "SUNNY"]


def test_popular_tags_reads_terms_aggregation(es_client, make_index_store):
    es_client.search_response = {
        "hits": {"hits": []},
        "aggregations": {
            "popular_tags": {"buckets": [{"key": "food", "doc_count": 12}, {"key": "travel", "doc_count": 4}]}
        },
    }

    tags = asyncio.run(make_index_store().popular_tags(2))

    assert tags == [{"tag": "food", "count": 12}, {"tag": "travel", "count": 4}]
    call = es_client.called("search")[0]
    assert call["size"] == 0
    assert call["aggs"]["popular_tags"]["terms"] == {"field": "tags.keyword", "size": 2}


def test_match_weighted_tags_boosts_and_excludes(es_client, make_index_store):
    es_client.search_response = hits_response([{"id": "p9"}, {"id": "p4"}])

    ids = asyncio.run(
        make_index_store().match_weighted_tags([("food", 9.0), ("cats", 3.0)], {"p1"}, size=80)
    )

    assert ids == ["p9", "p4"]
    call = es_client.called("search")[0]
    assert call["size"] == 80
    should = call["query"]["bool"]["should"]
    assert should[0] == {"match": {"tags": {"query": "food", "boost": 9.0}}}
    assert call["query"]["bool"]["must_not"] == [{"terms": {"id": ["p1"]}}]


def test_match_weighted_tags_failure_returns_no_candidates(es_client, make_index_store):
    es_client.failing.add("search")

    assert asyncio.run(make_index_store().match_weighted_tags([("food", 3.0)], set(), size=80)) == []
