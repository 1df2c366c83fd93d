from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class SearchDocument:
    """Searchable projection of a pin. Always derived from a pin row."""

    id: str
    title: str
    tags: List[str]
    user_id: str
    username: str
    created_at: str
    description: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_pin(cls, pin: Dict[str, Any]) -> "SearchDocument":
        user = pin.get("user") or {}
        created_at = pin.get("created_at")
        if isinstance(created_at, datetime):
            created_at = created_at.isoformat()
        return cls(
            id=str(pin["id"]),
            title=pin.get("title") or "",
            description=pin.get("description"),
            image_url=pin.get("image_url"),
            tags=list(pin.get("tags") or []),
            user_id=str(pin.get("user_id") or user.get("id") or ""),
            username=user.get("username") or pin.get("username") or "",
            created_at=created_at or "",
        )

    def to_source(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Pagination:
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)

    def to_dict(self) -> Dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
        }


@dataclass
class SearchPage:
    """Result envelope shared by the index and the relational fallback."""

    pins: List[Dict[str, Any]] = field(default_factory=list)
    pagination: Pagination = field(default_factory=lambda: Pagination(page=1, limit=20, total=0))

    @classmethod
    def empty(cls, page: int, limit: int) -> "SearchPage":
        return cls(pins=[], pagination=Pagination(page=page, limit=limit, total=0))

    def to_dict(self) -> Dict[str, Any]:
        return {"pins": self.pins, "pagination": self.pagination.to_dict()}
