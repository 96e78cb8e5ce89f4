from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

log = logging.getLogger(__name__)


class BestEffortWriter:
    """
    Fire-and-forget persistence for local-first state.

    The in-memory mutation is authoritative for the current process; the
    durable write may lag by at most one request cycle or be lost on crash.
    Failures are logged and never raised to the caller.
    """

    def __init__(self, name: str = "persist"):
        self.name = name
        self._pending: set[asyncio.Task] = set()

    def submit(
        self, fn: Callable[..., Awaitable[Any]], *args: Any, label: str = ""
    ) -> None:
        task = asyncio.create_task(self._run(fn, args, label or fn.__name__))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, fn, args, label: str) -> None:
        try:
            await fn(*args)
        except Exception:
            log.warning("%s: best-effort write %s failed", self.name, label, exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight writes (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
