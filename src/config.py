from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


@dataclass
class IndexSettings:
    """Connection and analysis parameters for the pins search index."""

    url: str = "http://localhost:9200"
    index_name: str = "pins"
    min_gram: int = 2
    max_gram: int = 20
    suggest_max_expansions: int = 50
    request_timeout: float = 5.0


@dataclass
class StoreSettings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    # rows per request; keep at or below the PostgREST max_rows setting
    page_size: int = 1000


@dataclass
class SignalWeights:
    """Affinity added per tag occurrence, by the source the pin came from."""

    owned_saves: float = 3.0
    member_saves: float = 2.0
    authored: float = 2.0
    followed: float = 1.0


@dataclass
class SignalBounds:
    """How many most-recent records each signal source may read."""

    owned_saves: int = 50
    member_saves: int = 30
    authored: int = 20
    followed_users: int = 10
    pins_per_followed_user: int = 10


@dataclass
class FeedConfig:
    size: int = 40
    top_tags: int = 10
    candidate_multiplier: int = 2
    trending_window_days: int = 7


@dataclass
class SearchConfig:
    default_limit: int = 20
    max_limit: int = 50
    suggest_limit: int = 10
    min_suggest_chars: int = 2
    popular_tags_limit: int = 20


@dataclass
class AppConfig:
    index: IndexSettings = field(default_factory=IndexSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    signal_weights: SignalWeights = field(default_factory=SignalWeights)
    signal_bounds: SignalBounds = field(default_factory=SignalBounds)
    feeds: FeedConfig = field(default_factory=FeedConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> "AppConfig":
        load_dotenv()
        index = IndexSettings(
            url=os.getenv("ELASTICSEARCH_URL", IndexSettings.url),
            index_name=os.getenv("PINS_INDEX", IndexSettings.index_name),
            request_timeout=float(os.getenv("ELASTICSEARCH_TIMEOUT", IndexSettings.request_timeout)),
        )
        store = StoreSettings(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            page_size=int(os.getenv("SUPABASE_PAGE_SIZE", StoreSettings.page_size)),
        )
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        return cls(
            index=index,
            store=store,
            cors_origins=origins or ["*"],
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "info").lower(),
        )
