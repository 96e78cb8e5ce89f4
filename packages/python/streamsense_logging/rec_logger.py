from __future__ import annotations

import logging
import random
from typing import Any, Literal, Sequence

import httpx
from fastapi.encoders import jsonable_encoder

from streamsense_ranking.types import RankedCandidate

Endpoint = Literal["recommendations", "recommendations/skip", "recommendations/engaged"]

log = logging.getLogger(__name__)


# ---------- Core logger ----------
class TelemetryLogger:
    """
    Best-effort ranking telemetry posted to Supabase REST.

    - rank_requests: one row per ranking call
    - rank_results: one row per returned item

    Usage:
      asyncio.create_task(logger.log_request(query_id=..., user_id=..., ...))
      asyncio.create_task(logger.log_results(query_id=..., items=result.items))
    """

    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        *,
        sample: float = 1.0,
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.supabase_url = (supabase_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.sample = float(max(0.0, min(1.0, sample)))
        self.timeout_s = timeout_s
        self.transport = transport

    def _enabled(self) -> bool:
        return bool(self.supabase_url and self.api_key and self.sample > 0)

    def sampled(self) -> bool:
        return self._enabled() and random.random() < self.sample

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates",
        }

    async def _post(self, path: str, payload: list[dict[str, Any]]) -> None:
        if not self._enabled() or not payload:
            return
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                r = await client.post(
                    f"{self.supabase_url}/rest/v1/{path}",
                    headers=self._headers(),
                    json=payload,
                    timeout=self.timeout_s,
                )
            if r.status_code not in (200, 201, 204):
                log.warning("telemetry POST %s failed %s: %s", path, r.status_code, r.text[:300])
        except httpx.HTTPError as e:
            log.warning("telemetry POST %s error: %s", path, e)

    @staticmethod
    def to_jsonable(x):
        return jsonable_encoder(x, exclude_none=True)

    # ---------- Public APIs ----------
    async def log_request(
        self,
        *,
        query_id: str,
        user_id: str,
        media_kind: str,
        limit: int,
        force_refresh: bool,
        fallback_used: bool,
        fallback_reason: str | None,
        state_trace: Sequence[str],
        item_count: int,
    ) -> None:
        """Insert into rank_requests (one row)."""
        row = {
            "endpoint": "recommendations",
            "query_id": query_id,
            "user_id": user_id,
            "media_kind": media_kind,
            "batch_size": int(limit),
            "force_refresh": force_refresh,
            "fallback_used": fallback_used,
            "fallback_reason": fallback_reason,
            "state_trace": list(state_trace),
            "item_count": item_count,
        }
        await self._post("rank_requests", [row])

    async def log_results(self, *, query_id: str, items: Sequence[RankedCandidate]) -> None:
        """Insert N rows into rank_results."""
        rows = []
        for r, c in enumerate(items, start=1):
            rows.append(
                {
                    "query_id": query_id,
                    "media_id": c.id,
                    "media_type": c.item.media_type.value,
                    "rank": r,
                    "title": c.item.title,
                    "source": c.source,
                    "score_final": round(c.final_score, 6),
                    "fatigue_score": c.fatigue_score,
                    "score_breakdown": self.to_jsonable(c.breakdown) if c.breakdown else None,
                }
            )
        await self._post("rank_results", rows)

    async def log_feedback(self, *, endpoint: Endpoint, user_id: str, media_id: int) -> None:
        await self._post(
            "rank_feedback",
            [{"endpoint": endpoint, "user_id": user_id, "media_id": media_id}],
        )
