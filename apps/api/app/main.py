import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.infrastructure.cache.state_store import make_skip_store
from .routers import all_routers

log = logging.getLogger(__name__)


class Settings(BaseSettings):
    app_name: str = "StreamSense Ranking API"
    # credentials
    supabase_url: str | None = None
    supabase_api_key: str | None = None
    tmdb_api_key: str | None = None
    # skip-log store config
    use_redis_state_store: bool = False
    redis_url: str | None = None
    state_namespace: str = "streamsense:skips:"
    state_ttl_sec: int = 7 * 24 * 3600
    # telemetry
    telemetry_sample: float = 1.0
    # env conifg
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def _should_init_engine() -> bool:
    flag = os.getenv("STREAMSENSE_SKIP_ENGINE_INIT", "")
    return flag.strip().lower() not in {"1", "true", "yes"}


def _init_ranking_stack(app: FastAPI) -> None:
    from supabase import create_client

    from streamsense_catalog.candidate_source import TMDBCandidateSource
    from streamsense_catalog.tmdb_client import TMDBClient
    from streamsense_core.background import BestEffortWriter
    from streamsense_factorization.cache_repo import SupabaseSvdCacheRepo
    from streamsense_factorization.latent_factor_service import LatentFactorService
    from streamsense_logging.rec_logger import TelemetryLogger
    from streamsense_recommendation.orchestrator import RankingOrchestrator
    from streamsense_recommendation.sources import WatchlistCollaborativeSource
    from streamsense_user.affinity.affinity_repo import SupabaseAffinityRepo
    from streamsense_user.affinity.affinity_service import AffinityTracker
    from streamsense_user.exclusions.exclusion_service import ExclusionService
    from streamsense_user.impressions.impressions_repo import SupabaseImpressionsRepo
    from streamsense_user.impressions.negative_signals import NegativeSignalTracker
    from streamsense_user.interactions.interactions_repo import SupabaseInteractionsRepo
    from streamsense_watchlist.supabase_repo import SupabaseWatchlistRepo
    from streamsense_watchlist.watchlist_service import WatchlistService

    startup_t0 = time.perf_counter()
    settings = app.state.settings

    required = {
        "SUPABASE_URL": settings.supabase_url,
        "SUPABASE_API_KEY": settings.supabase_api_key,
        "TMDB_API_KEY": settings.tmdb_api_key,
    }
    missing = [
        name for name, value in required.items() if not (value and value.strip())
    ]
    if missing:
        raise RuntimeError(
            "Missing API keys in environment: " + ", ".join(sorted(missing))
        )

    # service-scoped client: per-user state outlives a single request
    sb = create_client(settings.supabase_url, settings.supabase_api_key)
    writer = BestEffortWriter("ranking-state")

    tmdb = TMDBClient(api_key=settings.tmdb_api_key)
    catalog = TMDBCandidateSource(tmdb)
    watchlist = WatchlistService(SupabaseWatchlistRepo(sb))
    negatives = NegativeSignalTracker(SupabaseImpressionsRepo(sb), writer=writer)
    exclusions = ExclusionService(
        listed=watchlist,
        impressions=negatives,
        skip_store=make_skip_store(
            use_redis=settings.use_redis_state_store,
            redis_url=settings.redis_url,
            namespace=settings.state_namespace,
            absolute_ttl_sec=settings.state_ttl_sec,
        ),
        writer=writer,
    )
    latent = LatentFactorService(SupabaseInteractionsRepo(sb), SupabaseSvdCacheRepo(sb))
    affinity = AffinityTracker(SupabaseAffinityRepo(sb))

    app.state.supabase = sb
    app.state.tmdb = tmdb
    app.state.writer = writer
    app.state.affinity = affinity
    app.state.latent = latent
    app.state.orchestrator = RankingOrchestrator(
        candidates=catalog,
        affinity=affinity,
        negatives=negatives,
        exclusions=exclusions,
        latent=latent,
        collaborative=WatchlistCollaborativeSource(watchlist, catalog, latent),
    )
    app.state.telemetry = TelemetryLogger(
        settings.supabase_url,
        settings.supabase_api_key,
        sample=settings.telemetry_sample,
    )

    log.info("ranking stack ready in %.2fs", time.perf_counter() - startup_t0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_dotenv(find_dotenv(), override=False)

    settings = Settings()
    app.state.settings = settings

    if _should_init_engine():
        _init_ranking_stack(app)
    else:
        log.warning("Ranking stack initialization skipped by STREAMSENSE_SKIP_ENGINE_INIT")

    try:
        yield
    finally:
        writer = getattr(app.state, "writer", None)
        if writer is not None:
            await writer.drain()
        latent = getattr(app.state, "latent", None)
        if latent is not None:
            await latent.drain()
        tmdb = getattr(app.state, "tmdb", None)
        if tmdb is not None:
            await tmdb.aclose()


app = FastAPI(title="StreamSense Ranking API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(
        title=app.title,
        version="0.1.0",
        description="StreamSense personalized ranking API",
        routes=app.routes,
    )
    components = schema.setdefault("components", {})
    components.setdefault("securitySchemes", {})["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
    }
    for path_item in schema.get("paths", {}).values():
        for operation in path_item.values():
            operation.setdefault("security", []).append({"BearerAuth": []})
    app.openapi_schema = schema
    return app.openapi_schema


app.openapi = _custom_openapi


@app.get("/health")
def health():
    s = getattr(app.state, "settings", None)
    return {"status": "ok", "service": s.app_name if s else "StreamSense Ranking API"}


@app.get("/")
def read_root():
    return {"status": "ok"}


for r in all_routers:
    app.include_router(r)
