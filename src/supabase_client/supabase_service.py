from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from supabase import AsyncClient, acreate_client

from config import StoreSettings

PIN_COLUMNS = "*, user:users(id, username, avatar_url)"
PIN_ENGAGEMENT_COLUMNS = f"{PIN_COLUMNS}, saved_pins(count), comments(count)"
INDEX_COLUMNS = "id, title, description, image_url, tags, user_id, created_at, user:users(username)"


def _count(value: Any) -> int:
    # embedded aggregates come back as [{"count": n}]
    if isinstance(value, list) and value:
        return int(value[0].get("count", 0) or 0)
    if isinstance(value, int):
        return value
    return 0


def with_engagement(row: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten embedded saved_pins/comments aggregates into integer counts."""
    pin = dict(row)
    pin["save_count"] = _count(pin.pop("saved_pins", None))
    pin["comment_count"] = _count(pin.pop("comments", None))
    return pin


def _like_pattern(text: str) -> str:
    """Quoted ILIKE operand matching ``text`` as a literal substring."""
    literal = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    quoted = f"%{literal}%".replace("\\", "\\\\").replace('"', '\\"')
    return f'"{quoted}"'


class PinStore:
    """Async Supabase access for the tables search and feeds read from.

    Unbounded reads are paged with ``range`` so the server-side row cap
    never truncates them.
    """

    def __init__(self, client: AsyncClient, page_size: int = 1000):
        self.client = client
        self.page_size = page_size

    @classmethod
    async def connect(cls, settings: StoreSettings) -> "PinStore":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in environment")
        client = await acreate_client(settings.supabase_url, settings.supabase_key)
        return cls(client, page_size=settings.page_size)

    async def close(self) -> None:
        await self.client.postgrest.aclose()

    async def _pages(
        self, build: Callable[[], Any], page_size: Optional[int] = None
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """Yield consecutive pages of a fresh query from ``build()`` until one comes back empty.

        The next page starts after the rows actually returned, so a server
        cap smaller than ``page_size`` neither ends the walk nor skips rows.
        """
        size = page_size or self.page_size
        start = 0
        while True:
            response = await build().range(start, start + size - 1).execute()
            rows = response.data or []
            if not rows:
                return
            yield rows
            start += len(rows)

    async def _fetch_all(self, build: Callable[[], Any]) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        async for page in self._pages(build):
            rows.extend(page)
        return rows

    # ==================== PINS ====================

    async def fetch_pins_by_ids(self, pin_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch pins with their author. Row order is whatever the database returns."""
        if not pin_ids:
            return []
        response = await self.client.table("pins").select(PIN_COLUMNS).in_("id", list(pin_ids)).execute()
        return response.data or []

    async def fetch_pins_by_author(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        response = await (
            self.client.table("pins")
            .select("id, tags, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    async def fetch_pins_by_authors(self, user_ids: Sequence[str], limit: int) -> List[Dict[str, Any]]:
        if not user_ids:
            return []
        response = await (
            self.client.table("pins")
            .select(PIN_COLUMNS)
            .in_("user_id", list(user_ids))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    async def fetch_authored_pin_ids(self, user_id: str) -> List[str]:
        rows = await self._fetch_all(
            lambda: self.client.table("pins").select("id").eq("user_id", user_id).order("id")
        )
        return [row["id"] for row in rows]

    async def fetch_recent_pins_excluding(
        self, exclude_ids: Iterable[str], limit: int
    ) -> List[Dict[str, Any]]:
        """Most recent pins not in ``exclude_ids``, with save/comment counts.

        The exclusion is applied here rather than in the request URL, which
        has no room for an arbitrarily large id list.
        """
        excluded = {str(pin_id) for pin_id in exclude_ids}
        if limit <= 0:
            return []
        page_size = min(self.page_size, limit + len(excluded))
        pins: List[Dict[str, Any]] = []
        pages = self._pages(
            lambda: (
                self.client.table("pins")
                .select(PIN_ENGAGEMENT_COLUMNS)
                .order("created_at", desc=True)
                .order("id")
            ),
            page_size,
        )
        async for rows in pages:
            pins.extend(with_engagement(row) for row in rows if str(row["id"]) not in excluded)
            if len(pins) >= limit:
                break
        return pins[:limit]

    async def fetch_pins_created_since(self, since: datetime) -> List[Dict[str, Any]]:
        """Every pin created at or after ``since``, newest first, with counts."""
        rows = await self._fetch_all(
            lambda: (
                self.client.table("pins")
                .select(PIN_ENGAGEMENT_COLUMNS)
                .gte("created_at", since.isoformat())
                .order("created_at", desc=True)
                .order("id")
            )
        )
        return [with_engagement(row) for row in rows]

    def _search_query(self, columns: str, query_text: str, tags: Sequence[str], **select_options):
        query = self.client.table("pins").select(columns, **select_options)
        if query_text:
            pattern = _like_pattern(query_text)
            query = query.or_(f"title.ilike.{pattern},description.ilike.{pattern}")
        if tags:
            query = query.overlaps("tags", list(tags))
        return query

    async def search_pins(
        self, query_text: str, tags: Sequence[str], offset: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Case-insensitive substring match on title/description plus tag overlap."""
        counted = await self._search_query("id", query_text, tags, count="exact", head=True).execute()
        total = int(counted.count or 0)
        # PostgREST rejects a range that starts past the end of a counted result
        if offset >= total:
            return [], total
        response = await (
            self._search_query(PIN_COLUMNS, query_text, tags)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return response.data or [], total

    async def fetch_all_tag_lists(self) -> List[List[str]]:
        rows = await self._fetch_all(lambda: self.client.table("pins").select("tags").order("id"))
        return [row.get("tags") or [] for row in rows]

    async def iter_pin_batches(self, batch_size: int = 500) -> AsyncIterator[List[Dict[str, Any]]]:
        pages = self._pages(
            lambda: self.client.table("pins").select(INDEX_COLUMNS).order("created_at").order("id"),
            batch_size,
        )
        async for rows in pages:
            yield rows

    # ==================== SAVED PINS ====================

    async def fetch_saved_pins_for_owner(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        """Pins saved to boards ``user_id`` owns, most recent save first."""
        response = await (
            self.client.table("saved_pins")
            .select("pin_id, created_at, pin:pins!inner(id, tags), board:boards!inner(user_id)")
            .eq("board.user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [row["pin"] for row in response.data or [] if row.get("pin")]

    async def fetch_saved_pins_for_member(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        """Pins saved to boards ``user_id`` belongs to as a member."""
        response = await (
            self.client.table("saved_pins")
            .select(
                "pin_id, created_at, pin:pins!inner(id, tags), "
                "board:boards!inner(members:board_members!inner(user_id))"
            )
            .eq("board.members.user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [row["pin"] for row in response.data or [] if row.get("pin")]

    async def fetch_saved_pin_ids_for_owner(self, user_id: str) -> List[str]:
        rows = await self._fetch_all(
            lambda: (
                self.client.table("saved_pins")
                .select("id, pin_id, board:boards!inner(user_id)")
                .eq("board.user_id", user_id)
                .order("id")
            )
        )
        return [row["pin_id"] for row in rows]

    async def fetch_saved_pin_ids_for_member(self, user_id: str) -> List[str]:
        rows = await self._fetch_all(
            lambda: (
                self.client.table("saved_pins")
                .select("id, pin_id, board:boards!inner(members:board_members!inner(user_id))")
                .eq("board.members.user_id", user_id)
                .order("id")
            )
        )
        return [row["pin_id"] for row in rows]

    # ==================== FOLLOWS ====================

    async def fetch_followed_user_ids(self, user_id: str, limit: Optional[int] = None) -> List[str]:
        def build():
            return (
                self.client.table("follows")
                .select("following_id")
                .eq("follower_id", user_id)
                .order("created_at", desc=True)
                .order("following_id")
            )

        if limit is None:
            rows = await self._fetch_all(build)
        else:
            response = await build().limit(limit).execute()
            rows = response.data or []
        return [row["following_id"] for row in rows]

    # ==================== VIEWS ====================

    async def record_view(self, pin_id: str, user_id: Optional[str] = None) -> None:
        await self.client.table("pin_views").insert({"pin_id": pin_id, "user_id": user_id}).execute()
