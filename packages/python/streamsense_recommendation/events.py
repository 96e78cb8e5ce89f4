from typing import Protocol, Mapping, Any

class EventEmitter(Protocol):
    async def emit(self, name: str, payload: Mapping[str, Any]) -> None: ...

class NoopEmitter:
    async def emit(self, name: str, payload):  # type: ignore[override]
        return None

class RecordingEmitter:
    """Keeps emitted events in memory; handy for wiring checks."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def emit(self, name: str, payload):  # type: ignore[override]
        self.events.append((name, dict(payload)))
