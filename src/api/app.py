"""
FastAPI service for pin search and pin feeds.
Exposes REST endpoints for search, autocomplete, tag browsing, and the
for-you / trending / following feeds.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from config import AppConfig
from recommendation.feeds import FeedService
from recommendation.signals import SignalAggregator
from search.facade import SearchFacade
from search.fallback import FallbackSearch
from search.health import IndexHealth
from search.index_store import IndexStore
from search.indexer import PinIndexer
from supabase_client.supabase_service import PinStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


# Pydantic models for responses
class UserSummary(BaseModel):
    id: str
    username: str
    avatar_url: Optional[str] = None


class Pin(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    link: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    user: Optional[UserSummary] = None
    save_count: Optional[int] = None
    comment_count: Optional[int] = None


class PaginationInfo(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class SearchResponse(BaseModel):
    pins: List[Pin]
    pagination: PaginationInfo


class TagSearchResponse(SearchResponse):
    tag: str


class SuggestionsResponse(BaseModel):
    suggestions: List[str]


class TagCount(BaseModel):
    tag: str
    count: int


class PopularTagsResponse(BaseModel):
    tags: List[TagCount]


class FeedResponse(BaseModel):
    pins: List[Pin]


class ViewResponse(BaseModel):
    success: bool


class HealthResponse(BaseModel):
    status: str
    index_available: bool


@dataclass
class Services:
    config: AppConfig
    health: IndexHealth
    store: PinStore
    index_store: IndexStore
    search: SearchFacade
    feeds: FeedService
    indexer: PinIndexer

    async def close(self) -> None:
        await self.index_store.close()
        await self.store.close()


def assemble_services(config: AppConfig, health: IndexHealth, store: PinStore, index_store: IndexStore) -> Services:
    aggregator = SignalAggregator(
        store, config.signal_weights, config.signal_bounds, top_n=config.feeds.top_tags
    )
    return Services(
        config=config,
        health=health,
        store=store,
        index_store=index_store,
        search=SearchFacade(health, index_store, FallbackSearch(store), store),
        feeds=FeedService(store, index_store, aggregator, config.feeds),
        indexer=PinIndexer(index_store),
    )


async def build_services(config: AppConfig) -> Services:
    health = IndexHealth()
    index_store = IndexStore.from_settings(config.index, health)
    store = await PinStore.connect(config.store)
    await index_store.initialize()
    return assemble_services(config, health, store, index_store)


# ==================== DEPENDENCIES ====================

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_caller_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Caller identity as resolved by the upstream auth layer, if any."""
    return x_user_id or None


def require_caller_id(caller_id: Optional[str] = Depends(get_caller_id)) -> str:
    if not caller_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return caller_id


async def _or_500(awaitable: Awaitable[T], detail: str) -> T:
    try:
        return await awaitable
    except Exception:
        LOGGER.exception(detail)
        raise HTTPException(status_code=500, detail=detail)


def _split_tags(raw: Optional[str]) -> List[str]:
    return [tag.strip() for tag in (raw or "").split(",") if tag.strip()]


# ==================== SEARCH ====================

search_router = APIRouter(prefix="/search", tags=["search"])


@search_router.get("", response_model=SearchResponse)
async def search_pins(
    q: str = Query("", description="Free-text query"),
    tags: Optional[str] = Query(None, description="Comma-separated tags, any of which must match"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    services: Services = Depends(get_services),
):
    limit = min(limit, services.config.search.max_limit)
    result = await _or_500(services.search.search(q.strip(), _split_tags(tags), page, limit), "Search failed")
    return result.to_dict()


@search_router.get("/suggestions", response_model=SuggestionsResponse)
async def search_suggestions(q: str = Query(""), services: Services = Depends(get_services)):
    """Autocomplete over pin titles and tags."""
    query = q.strip()
    cfg = services.config.search
    if len(query) < cfg.min_suggest_chars:
        return {"suggestions": []}
    suggestions = await _or_500(services.search.suggest(query, cfg.suggest_limit), "Failed to get suggestions")
    return {"suggestions": suggestions}


@search_router.get("/tags/popular", response_model=PopularTagsResponse)
async def popular_tags(services: Services = Depends(get_services)):
    limit = services.config.search.popular_tags_limit
    tags = await _or_500(services.search.popular_tags(limit), "Failed to get popular tags")
    return {"tags": tags}


@search_router.get("/tags/{tag}", response_model=TagSearchResponse)
async def pins_by_tag(
    tag: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    services: Services = Depends(get_services),
):
    limit = min(limit, services.config.search.max_limit)
    result = await _or_500(services.search.search("", [tag], page, limit), "Failed to get pins by tag")
    return {"tag": tag, **result.to_dict()}


# ==================== RECOMMENDATIONS ====================

feed_router = APIRouter(prefix="/recommendations", tags=["recommendations"])


@feed_router.get("/for-you", response_model=FeedResponse)
async def for_you_feed(caller_id: str = Depends(require_caller_id), services: Services = Depends(get_services)):
    pins = await _or_500(services.feeds.for_you(caller_id), "Failed to get recommendations")
    return {"pins": pins}


@feed_router.get("/trending", response_model=FeedResponse)
async def trending_feed(services: Services = Depends(get_services)):
    pins = await _or_500(services.feeds.trending(), "Failed to get trending pins")
    return {"pins": pins}


@feed_router.get("/following", response_model=FeedResponse)
async def following_feed(caller_id: str = Depends(require_caller_id), services: Services = Depends(get_services)):
    pins = await _or_500(services.feeds.following(caller_id), "Failed to get following feed")
    return {"pins": pins}


@feed_router.post("/view/{pin_id}", response_model=ViewResponse, status_code=201)
async def record_view(
    pin_id: str,
    background_tasks: BackgroundTasks,
    caller_id: Optional[str] = Depends(get_caller_id),
    services: Services = Depends(get_services),
):
    background_tasks.add_task(services.feeds.record_view, pin_id, caller_id)
    return {"success": True}


# ==================== APP ====================

def create_app(config: Optional[AppConfig] = None, services: Optional[Services] = None) -> FastAPI:
    config = config or (services.config if services else AppConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            app.state.services = await build_services(config)
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
                app.state.services = None

    app = FastAPI(
        title="Pin Search & Recommendations API",
        description="Search, autocomplete, and personalized feeds over pins",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> Dict[str, Any]:
        current: Optional[Services] = request.app.state.services
        return {"status": "ok", "index_available": bool(current and current.health.available)}

    app.include_router(search_router)
    app.include_router(feed_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
