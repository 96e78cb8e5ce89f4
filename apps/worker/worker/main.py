import logging
import time

import anyio
import schedule
from dotenv import find_dotenv, load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

from streamsense_core.config import IMPRESSION_RETENTION_DAYS

log = logging.getLogger("worker")


class Settings(BaseSettings):
    app_name: str = "StreamSense Factorization Worker"
    supabase_url: str | None = None
    supabase_api_key: str | None = None
    # local time, "HH:MM"
    svd_batch_at: str = "03:00"
    retention_sweep_at: str = "03:30"
    impression_retention_days: int = IMPRESSION_RETENTION_DAYS
    run_on_start: bool = True
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def build_services(settings: Settings):
    from supabase import create_client

    from streamsense_factorization.cache_repo import SupabaseSvdCacheRepo
    from streamsense_factorization.latent_factor_service import LatentFactorService
    from streamsense_user.impressions.impressions_repo import SupabaseImpressionsRepo
    from streamsense_user.impressions.negative_signals import NegativeSignalTracker
    from streamsense_user.interactions.interactions_repo import SupabaseInteractionsRepo

    if not (settings.supabase_url and settings.supabase_api_key):
        raise RuntimeError("Missing SUPABASE_URL / SUPABASE_API_KEY")
    sb = create_client(settings.supabase_url, settings.supabase_api_key)
    latent = LatentFactorService(SupabaseInteractionsRepo(sb), SupabaseSvdCacheRepo(sb))
    impressions = NegativeSignalTracker(SupabaseImpressionsRepo(sb))
    return latent, impressions


def run_batch(service) -> int:
    t0 = time.perf_counter()
    try:
        written = anyio.run(service.compute_all_recommendations)
    except Exception:
        log.exception("factorization batch failed")
        return 0
    log.info("factorization batch wrote %d users in %.1fs", written, time.perf_counter() - t0)
    return written


def run_retention(tracker, retention_days: int = IMPRESSION_RETENTION_DAYS) -> int:
    """Drop unengaged impressions older than the retention window, all users."""
    try:
        deleted = anyio.run(tracker.prune_expired, retention_days)
    except Exception:
        log.exception("impression retention sweep failed")
        return 0
    log.info("retention sweep deleted %d impressions (>%dd)", deleted, retention_days)
    return deleted


def main() -> None:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    load_dotenv(find_dotenv(), override=False)
    settings = Settings()
    latent, impressions = build_services(settings)

    schedule.every().day.at(settings.svd_batch_at).do(run_batch, latent)
    schedule.every().day.at(settings.retention_sweep_at).do(
        run_retention, impressions, settings.impression_retention_days
    )
    log.info(
        "%s starting, nightly batch at %s, retention sweep at %s",
        settings.app_name,
        settings.svd_batch_at,
        settings.retention_sweep_at,
    )
    if settings.run_on_start:
        run_batch(latent)
        run_retention(impressions, settings.impression_retention_days)
    while True:
        schedule.run_pending()
        time.sleep(1)


if __name__ == "__main__":
    main()
