from __future__ import annotations

import gzip
import json
import logging
import time
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from streamsense_user.exclusions.skip_store import InMemorySkipLogStore, SkipLog, SkipLogStore

from .redis_infra import make_redis_client

log = logging.getLogger(__name__)

JsonObj = dict[str, Any]


class RedisSkipLogStore:
    """
    Per-user skip log in Redis: streamsense:skips:{user_id}
    gzip JSON {"skips": {item_id: ts}, "__created_at": ts}. Redis failures
    behave as cache misses on read and dropped writes on save.
    """

    def __init__(
        self,
        *,
        client: Redis,
        namespace: str = "streamsense:skips:",
        absolute_ttl_sec: int = 7 * 24 * 3600,  # 7d cap, matches the skip window
        compression_level: int = 5,
    ) -> None:
        self._r = client
        self._ns = namespace
        self._ttl = int(absolute_ttl_sec)
        self._level = int(compression_level)

    def _now(self) -> float:
        return time.time()

    # ----- codec -----

    def _encode(self, obj: JsonObj) -> bytes:
        raw = json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        return gzip.compress(raw, compresslevel=self._level)

    def _decode(self, b: bytes) -> JsonObj | None:
        try:
            raw = gzip.decompress(b)
            return json.loads(raw.decode("utf-8"))
        except (OSError, ValueError):
            return None

    def _key(self, user_id: str) -> str:
        return f"{self._ns}{user_id}"

    async def _delete(self, key: str) -> None:
        try:
            await self._r.delete(key)
        except (RedisError, RuntimeError):
            return

    # ----- SkipLogStore -----

    async def load(self, user_id: str) -> SkipLog:
        key = self._key(user_id)
        try:
            b = await self._r.get(key)
        except (RedisError, RuntimeError):
            # Treat Redis connection errors as cache misses.
            log.warning("skip log read failed for %s", user_id)
            return {}
        if not b:
            return {}

        payload = self._decode(b)
        if not payload:
            await self._delete(key)
            return {}

        cutoff = self._now() - self._ttl
        skips = payload.get("skips") or {}
        return {int(k): float(ts) for k, ts in skips.items() if float(ts) >= cutoff}

    async def save(self, user_id: str, log_: SkipLog) -> None:
        payload = {
            "skips": {str(k): float(ts) for k, ts in log_.items()},
            "__created_at": self._now(),
        }
        try:
            await self._r.set(self._key(user_id), self._encode(payload), ex=self._ttl)
        except (RedisError, RuntimeError):
            log.warning("skip log write failed for %s", user_id)
            return


def make_skip_store(
    *,
    use_redis: bool,
    redis_url: str | None,
    namespace: str = "streamsense:skips:",
    absolute_ttl_sec: int = 7 * 24 * 3600,
) -> SkipLogStore:
    if use_redis and redis_url:
        return RedisSkipLogStore(
            client=make_redis_client(redis_url),
            namespace=namespace,
            absolute_ttl_sec=absolute_ttl_sec,
        )
    return InMemorySkipLogStore()
