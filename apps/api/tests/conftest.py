from typing import Any, Dict, List

import copy
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from streamsense_core.types import ContentItem, MediaType

TEST_USER_ID = "00000000-0000-0000-0000-000000000000"


def _norm(value: Any) -> Any:
    # ISO timestamps compare as datetimes ("Z" and "+00:00" are the same instant)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and len(value) >= 19 and value[4] == "-" and value[10] == "T":
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


class _Resp:
    def __init__(self, data):
        self.data = data


class _FakeQuery:
    """Just enough of the PostgREST builder chain for the repositories."""

    def __init__(self, db: "FakeSupabaseClient", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: str = ""
        self._filters: List[Any] = []
        self._order: List[tuple] = []
        self._limit: int | None = None
        self._range: tuple[int, int] | None = None

    # ---- operations ----
    def select(self, _cols: str = "*"):
        return self

    def insert(self, rows):
        self._op, self._payload = "insert", rows if isinstance(rows, list) else [rows]
        return self

    def upsert(self, rows, on_conflict: str = "", returning: str | None = None):
        self._op, self._payload = "upsert", rows if isinstance(rows, list) else [rows]
        self._on_conflict = on_conflict
        return self

    def update(self, values: Dict[str, Any]):
        self._op, self._payload = "update", values
        return self

    def delete(self):
        self._op = "delete"
        return self

    # ---- filters ----
    def _where(self, col: str, pred):
        self._filters.append(lambda row: pred(_norm(row.get(col))))
        return self

    def eq(self, col: str, value):
        v = _norm(value)
        return self._where(col, lambda x: x == v)

    def neq(self, col: str, value):
        v = _norm(value)
        return self._where(col, lambda x: x != v)

    def in_(self, col: str, values):
        vs = [_norm(v) for v in values]
        return self._where(col, lambda x: x in vs)

    def is_(self, col: str, value):
        if value is None or value == "null":
            return self._where(col, lambda x: x is None)
        return self._where(col, lambda x: x is value)

    def gt(self, col: str, value):
        v = _norm(value)
        return self._where(col, lambda x: x is not None and x > v)

    def gte(self, col: str, value):
        v = _norm(value)
        return self._where(col, lambda x: x is not None and x >= v)

    def lt(self, col: str, value):
        v = _norm(value)
        return self._where(col, lambda x: x is not None and x < v)

    def lte(self, col: str, value):
        v = _norm(value)
        return self._where(col, lambda x: x is not None and x <= v)

    # ---- modifiers ----
    def order(self, col: str, desc: bool = False):
        self._order.append((col, desc))
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    # ---- execute ----
    def _matches(self, row: Dict[str, Any]) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self):
        self._db.calls.append((self._table, self._op))
        if self._table in self._db.failing:
            raise RuntimeError(f"table {self._table} unavailable")
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "insert":
            added = [copy.deepcopy(r) for r in self._payload]
            rows.extend(added)
            return _Resp(copy.deepcopy(added))

        if self._op == "upsert":
            keys = [k.strip() for k in self._on_conflict.split(",") if k.strip()]
            out = []
            for new in self._payload:
                hit = None
                if keys:
                    hit = next(
                        (r for r in rows if all(_norm(r.get(k)) == _norm(new.get(k)) for k in keys)),
                        None,
                    )
                if hit is None:
                    hit = copy.deepcopy(new)
                    rows.append(hit)
                else:
                    hit.update(copy.deepcopy(new))
                out.append(copy.deepcopy(hit))
            return _Resp(out)

        if self._op == "update":
            out = []
            for r in rows:
                if self._matches(r):
                    r.update(copy.deepcopy(self._payload))
                    out.append(copy.deepcopy(r))
            return _Resp(out)

        if self._op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self._db.tables[self._table] = [r for r in rows if not self._matches(r)]
            return _Resp(copy.deepcopy(removed))

        found = [copy.deepcopy(r) for r in rows if self._matches(r)]
        for col, desc in reversed(self._order):
            found.sort(key=lambda r: (_norm(r.get(col)) is None, _norm(r.get(col))), reverse=desc)
        if self._range is not None:
            start, end = self._range
            found = found[start : end + 1]
        if self._limit is not None:
            found = found[: self._limit]
        return _Resp(found)


class FakeSupabaseClient:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.failing: set[str] = set()

    def table(self, name: str):
        # Return a new chain object per call to keep state separate
        return _FakeQuery(self, name)

    def seed(self, name: str, rows: List[Dict[str, Any]]) -> None:
        self.tables.setdefault(name, []).extend(copy.deepcopy(rows))


def make_item(
    item_id: int,
    genre_ids: List[int] | None = None,
    media_type: str = "movie",
    vote_average: float = 7.8,
    vote_count: int = 1500,
    popularity: float = 50.0,
) -> ContentItem:
    return ContentItem(
        id=item_id,
        media_type=MediaType(media_type),
        title=f"Title {item_id}",
        genre_ids=[28] if genre_ids is None else genre_ids,
        vote_average=vote_average,
        vote_count=vote_count,
        popularity=popularity,
        release_date="2019-05-01",
    )


class FakeCatalog:
    """Candidate source over fixed pages; records every call."""

    def __init__(self, pages: Dict[int, List[ContentItem]] | None = None, trending=None):
        self.pages = pages or {}
        self.trending = trending or []
        self.calls: List[Dict[str, Any]] = []
        self.fail = False
        self.delay = 0.0

    async def fetch_candidates(self, *, user_id, media_kind, top_categories, page=1):
        import anyio

        self.calls.append({"user_id": user_id, "media_kind": media_kind, "page": page})
        if self.delay:
            await anyio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("catalog down")
        items = self.pages.get(page, [])
        if media_kind != "mixed":
            items = [i for i in items if i.media_type.value == media_kind]
        return list(items)

    async def fetch_trending(self, media_kind, limit):
        items = self.trending
        if media_kind != "mixed":
            items = [i for i in items if i.media_type.value == media_kind]
        return list(items)[:limit]

    async def fetch_items(self, keys):
        by_id = {i.id: i for page in self.pages.values() for i in page}
        by_id.update({i.id: i for i in self.trending})
        return [by_id[mid] for _, mid in keys if mid in by_id]


class RankingStack:
    def __init__(self, sb: FakeSupabaseClient, catalog: FakeCatalog, **orchestrator_kw):
        from streamsense_core.background import BestEffortWriter
        from streamsense_recommendation.events import RecordingEmitter
        from streamsense_recommendation.orchestrator import RankingOrchestrator
        from streamsense_user.affinity.affinity_repo import SupabaseAffinityRepo
        from streamsense_user.affinity.affinity_service import AffinityTracker
        from streamsense_user.exclusions.exclusion_service import ExclusionService
        from streamsense_user.exclusions.skip_store import InMemorySkipLogStore
        from streamsense_user.impressions.impressions_repo import SupabaseImpressionsRepo
        from streamsense_user.impressions.negative_signals import NegativeSignalTracker
        from streamsense_watchlist.supabase_repo import SupabaseWatchlistRepo
        from streamsense_watchlist.watchlist_service import WatchlistService

        self.sb = sb
        self.catalog = catalog
        self.writer = BestEffortWriter("test")
        self.watchlist = WatchlistService(SupabaseWatchlistRepo(sb))
        self.affinity = AffinityTracker(SupabaseAffinityRepo(sb))
        self.negatives = NegativeSignalTracker(SupabaseImpressionsRepo(sb), writer=self.writer)
        self.skip_store = InMemorySkipLogStore()
        self.exclusions = ExclusionService(
            listed=self.watchlist,
            impressions=self.negatives,
            skip_store=self.skip_store,
            writer=self.writer,
        )
        self.events = RecordingEmitter()
        self.orchestrator = RankingOrchestrator(
            candidates=catalog,
            affinity=self.affinity,
            negatives=self.negatives,
            exclusions=self.exclusions,
            events=self.events,
            **orchestrator_kw,
        )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def fake_sb():
    return FakeSupabaseClient()


@pytest.fixture()
def catalog():
    # 30 candidates across 6 genres, plus a second page and trending titles
    genres = [28, 35, 18, 12, 27, 878]
    page1 = [
        make_item(100 + i, [genres[i % 6]], popularity=100.0 - i) for i in range(30)
    ]
    page2 = [
        make_item(200 + i, [genres[i % 6]], popularity=60.0 - i) for i in range(30)
    ]
    trending = [make_item(900 + i, [genres[i % 6]], popularity=500.0 - i) for i in range(30)]
    return FakeCatalog(pages={1: page1, 2: page2}, trending=trending)


@pytest.fixture()
def stack(fake_sb, catalog):
    return RankingStack(fake_sb, catalog)


@pytest.fixture()
def test_client(stack, monkeypatch):
    monkeypatch.setenv("STREAMSENSE_SKIP_ENGINE_INIT", "1")

    # Import after env is set so the lifespan skips the real wiring
    from app.deps.deps import get_affinity_tracker, get_logger, get_orchestrator  # type: ignore
    from app.deps.supabase_client import get_current_user_id  # type: ignore
    from app.main import app  # type: ignore
    from streamsense_logging.rec_logger import TelemetryLogger

    telemetry = TelemetryLogger("", "")  # disabled: no URL, no key

    app.dependency_overrides[get_current_user_id] = lambda: TEST_USER_ID
    app.dependency_overrides[get_orchestrator] = lambda: stack.orchestrator
    app.dependency_overrides[get_affinity_tracker] = lambda: stack.affinity
    app.dependency_overrides[get_logger] = lambda: telemetry

    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
