from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

import anyio

from streamsense_core.errors import InvalidIdentity, UpstreamUnavailable
from streamsense_core.types import ContentItem, MediaKindFilter, RankingParams
from streamsense_ranking.collaborative import mix_collaborative
from streamsense_ranking.diversification import diversify
from streamsense_ranking.fatigue import FatigueParams, apply_fatigue
from streamsense_ranking.scoring import (
    DEFAULT_RULES,
    ScoringContext,
    ScoringRule,
    score_candidates,
)
from streamsense_ranking.types import RankedCandidate
from streamsense_user.affinity.affinity_service import AffinityTracker
from streamsense_user.exclusions.exclusion_service import ExclusionService, ExclusionStats
from streamsense_user.impressions.negative_signals import (
    NegativeSignalTracker,
    filter_by_negative_signals,
)
from streamsense_user.impressions.schemas import ImpressionRecord, RejectionAnalytics

from .events import EventEmitter, NoopEmitter
from .types import (
    CandidateSource,
    CollaborativeSource,
    Enricher,
    LatentPredictor,
    PipelineState,
    RecommendationResult,
)
from .user_locks import UserLockRegistry

log = logging.getLogger(__name__)

_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-:.@]{0,127}$")
MEDIA_KINDS = ("movie", "tv", "mixed")
MAX_LIMIT = 100


def valid_user_id(user_id: Any) -> bool:
    return isinstance(user_id, str) and bool(_USER_ID_RE.match(user_id))


def require_user_id(user_id: Any) -> str:
    if not valid_user_id(user_id):
        raise InvalidIdentity("missing or malformed user id")
    return user_id


def require_item_id(item_id: Any) -> int:
    if isinstance(item_id, bool):
        raise InvalidIdentity("malformed item id")
    try:
        value = int(item_id)
    except (TypeError, ValueError):
        raise InvalidIdentity("malformed item id") from None
    if value <= 0 or (isinstance(item_id, float) and item_id != value):
        raise InvalidIdentity("malformed item id")
    return value


class _Fallback(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _anchor_injected(mixed: list[RankedCandidate]) -> None:
    # injected picks inherit their neighbour's score so the stable fatigue
    # sort keeps them where they were interleaved
    for i in range(1, len(mixed)):
        if mixed[i].source == "collaborative":
            mixed[i].base_score = mixed[i - 1].base_score


class RankingOrchestrator:
    """
    FETCHING_CANDIDATES → EXCLUDING → NEGATIVE_FILTERING → SCORING →
    FATIGUE_ADJUSTING → DIVERSIFYING → RECORDING → DONE, with FALLBACK
    reachable from any failure. `get_recommendations` never raises.
    """

    def __init__(
        self,
        *,
        candidates: CandidateSource,
        affinity: AffinityTracker,
        negatives: NegativeSignalTracker,
        exclusions: ExclusionService,
        latent: LatentPredictor | None = None,
        collaborative: CollaborativeSource | None = None,
        enricher: Enricher | None = None,
        locks: UserLockRegistry | None = None,
        events: EventEmitter | None = None,
        params: RankingParams | None = None,
        fatigue: FatigueParams | None = None,
        rules: Sequence[ScoringRule] = DEFAULT_RULES,
        max_pages: int = 3,
    ):
        self.candidates = candidates
        self.affinity = affinity
        self.negatives = negatives
        self.exclusions = exclusions
        self.latent = latent
        self.collaborative = collaborative
        self.enricher = enricher
        self.locks = locks or UserLockRegistry()
        self.events = events or NoopEmitter()
        self.params = params or RankingParams()
        self.fatigue = fatigue or FatigueParams()
        self.rules = list(rules)
        self.max_pages = max(1, max_pages)

    # ---------- public API ----------
    async def get_recommendations(
        self,
        user_id: str,
        limit: int | None = None,
        media_kind: MediaKindFilter = "mixed",
        force_refresh: bool = False,
        now: datetime | None = None,
    ) -> RecommendationResult:
        result = RecommendationResult()
        if not valid_user_id(user_id):
            log.warning("ranking request rejected: missing or malformed user id")
            return result
        limit = max(1, min(int(limit or self.params.limit), MAX_LIMIT))
        if media_kind not in MEDIA_KINDS:
            media_kind = "mixed"
        now = now or datetime.now(timezone.utc)

        async with self.locks.hold(user_id):
            if force_refresh:
                await self._refresh(user_id)
            try:
                await self._run(user_id, limit, media_kind, now, result)
            except _Fallback as fb:
                await self._fallback(user_id, limit, media_kind, now, result, fb.reason)
            except Exception:
                log.exception("ranking pipeline failed for %s, serving fallback", user_id)
                await self._fallback(user_id, limit, media_kind, now, result, "error")
        return result

    async def skip(self, user_id: str, item_id: int, now: datetime | None = None) -> None:
        uid, iid = require_user_id(user_id), require_item_id(item_id)
        async with self.locks.hold(uid):
            try:
                await self.exclusions.add_skip(uid, iid, now)
            except Exception as e:
                raise UpstreamUnavailable("exclusion state unavailable") from e
        await self.events.emit("recommendation.skip", {"user_id": uid, "media_id": iid})

    async def mark_engaged(
        self, user_id: str, item_id: int, now: datetime | None = None
    ) -> ImpressionRecord:
        uid, iid = require_user_id(user_id), require_item_id(item_id)
        async with self.locks.hold(uid):
            try:
                rec = await self.negatives.mark_engaged(uid, iid, now)
            except Exception as e:
                raise UpstreamUnavailable("impression store unavailable") from e
        await self.events.emit("recommendation.engaged", {"user_id": uid, "media_id": iid})
        return rec

    async def get_exclusion_stats(self, user_id: str) -> ExclusionStats:
        uid = require_user_id(user_id)
        return await self.exclusions.get_exclusion_stats(uid)

    async def get_rejection_analytics(self, user_id: str) -> RejectionAnalytics:
        uid = require_user_id(user_id)
        return await self.negatives.get_rejection_analytics(uid)

    # ---------- pipeline ----------
    def _enter(self, result: RecommendationResult, state: PipelineState) -> None:
        result.state_trace.append(state)
        log.debug("pipeline -> %s", state.value)

    async def _refresh(self, user_id: str) -> None:
        # let queued writes land so the reload sees them
        await self.negatives.writer.drain()
        await self.exclusions.writer.drain()
        self.exclusions.invalidate(user_id)
        self.negatives.invalidate(user_id)

    async def _bounded(
        self,
        label: str,
        timeout: float,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        default: Any,
        **kwargs: Any,
    ) -> Any:
        """External or optional call: timeout and errors degrade to `default`."""
        try:
            with anyio.move_on_after(timeout):
                return await fn(*args, **kwargs)
            log.warning("%s timed out after %.1fs, continuing without it", label, timeout)
        except Exception:
            log.warning("%s failed, continuing without it", label, exc_info=True)
        return default

    async def _has_history(self, user_id: str) -> bool:
        state = await self.exclusions.init(user_id)
        if state.listed or state.skip_log:
            return True
        return bool(await self.negatives.get_impressions(user_id))

    async def _fetch_page(
        self, user_id: str, media_kind: MediaKindFilter, top, page: int
    ) -> list[ContentItem]:
        return await self._bounded(
            f"candidate fetch p{page}",
            self.params.fetch_timeout,
            self.candidates.fetch_candidates,
            default=[],
            user_id=user_id,
            media_kind=media_kind,
            top_categories=top,
            page=page,
        )

    async def _run(
        self,
        user_id: str,
        limit: int,
        media_kind: MediaKindFilter,
        now: datetime,
        result: RecommendationResult,
    ) -> None:
        p = self.params

        self._enter(result, PipelineState.FETCHING_CANDIDATES)
        try:
            top = await self.affinity.get_top_categories(user_id, n=p.top_categories, now=now)
        except Exception:
            log.warning("affinity store unavailable for %s", user_id, exc_info=True)
            raise _Fallback("affinity_unavailable")
        if not top and not await self._has_history(user_id):
            raise _Fallback("cold_start")
        fetched = await self._fetch_page(user_id, media_kind, top, 1)
        if not fetched:
            raise _Fallback("no_candidates")

        self._enter(result, PipelineState.EXCLUDING)
        excluded = await self.exclusions.exclusion_set(user_id, now)
        kept = [c for c in fetched if c.id not in excluded]
        page = 1
        while len(kept) < limit and page < self.max_pages:
            page += 1
            more = await self._fetch_page(user_id, media_kind, top, page)
            if not more:
                break
            known = {c.id for c in kept}
            kept.extend(c for c in more if c.id not in excluded and c.id not in known)

        self._enter(result, PipelineState.NEGATIVE_FILTERING)
        signals = await self.negatives.get_negative_signals(user_id)
        filtered = filter_by_negative_signals(kept, signals)
        if not filtered:
            raise _Fallback("exhausted")

        self._enter(result, PipelineState.SCORING)
        predictions: dict[int, float] = {}
        if self.latent is not None:
            predictions = await self._bounded(
                "latent predictions",
                p.collab_timeout,
                self.latent.predictions_for,
                user_id,
                [c.id for c in filtered],
                default={},
            )
        ctx = ScoringContext(
            genre_scores={c.genre_id: c.effective_score for c in top},
            predictions=predictions,
            now=now,
        )
        scored = score_candidates(filtered, ctx, p.weights, self.rules)

        injected: list[ContentItem] = []
        quota = int(len(scored) * p.collab_ratio)
        if self.collaborative is not None and quota > 0:
            injected = await self._bounded(
                "collaborative",
                p.collab_timeout,
                self.collaborative.fetch,
                user_id,
                quota,
                default=[],
            )
            injected = [
                c
                for c in injected
                if c.id not in excluded
                and (media_kind == "mixed" or c.media_type.value == media_kind)
            ]
            injected = filter_by_negative_signals(injected, signals)
        mixed = mix_collaborative(
            scored,
            score_candidates(injected, ctx, p.weights, self.rules, source="collaborative"),
            p.collab_ratio,
        )
        _anchor_injected(mixed)

        self._enter(result, PipelineState.FATIGUE_ADJUSTING)
        history = await self.negatives.get_impressions(user_id)
        adjusted = apply_fatigue(mixed, history, now, self.fatigue)

        self._enter(result, PipelineState.DIVERSIFYING)
        final = diversify(
            adjusted,
            p.max_consecutive_same_category,
            p.max_share_of_category,
            target_size=limit,
        )[:limit]
        if self.enricher is not None and final:
            final = await self._enrich(user_id, final)

        self._enter(result, PipelineState.RECORDING)
        await self._record(user_id, final, "for_you", now, result)
        result.items = final
        self._enter(result, PipelineState.DONE)

    async def _enrich(self, user_id: str, final: list[RankedCandidate]) -> list[RankedCandidate]:
        enriched = await self._bounded(
            "enrichment",
            self.params.enrich_timeout,
            self.enricher.enrich,  # type: ignore[union-attr]
            user_id,
            list(final),
            default=final,
        )
        # payloads only: ranked order and membership stay as diversified
        by_id = {c.id: c for c in enriched}
        return [by_id.get(c.id, c) for c in final]

    async def _record(
        self,
        user_id: str,
        items: list[RankedCandidate],
        context: str,
        now: datetime,
        result: RecommendationResult,
    ) -> None:
        try:
            await self.negatives.record_impression(
                user_id, [c.item for c in items], context=context, now=now
            )
            result.recorded = True
        except Exception:
            log.warning("impression recording failed for %s", user_id, exc_info=True)

    async def _fallback(
        self,
        user_id: str,
        limit: int,
        media_kind: MediaKindFilter,
        now: datetime,
        result: RecommendationResult,
        reason: str,
    ) -> None:
        result.fallback_used = True
        result.fallback_reason = reason
        self._enter(result, PipelineState.FALLBACK)
        log.info("fallback for %s (%s)", user_id, reason)

        final: list[RankedCandidate] = []
        try:
            trending = await self._bounded(
                "trending",
                self.params.fetch_timeout,
                self.candidates.fetch_trending,
                media_kind,
                limit * 3,
                default=[],
            )
            excluded = await self.exclusions.exclusion_set(user_id, now)
            final = [
                RankedCandidate(item=i, source="fallback", base_score=float(i.popularity or 0.0))
                for i in trending
                if i.id not in excluded
            ][:limit]
        except Exception:
            # without a trustworthy exclusion set nothing may be shown
            log.exception("fallback failed for %s, returning empty list", user_id)
            final = []

        if final and self.params.record_fallback_impressions:
            self._enter(result, PipelineState.RECORDING)
            await self._record(user_id, final, "fallback", now, result)
        result.items = final
        self._enter(result, PipelineState.DONE)
