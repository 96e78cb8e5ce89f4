from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property

from streamsense_core.types import MediaId


@dataclass(frozen=True)
class ExclusionSet:
    """
    Derived view of everything a user must not be shown right now.

    Built only from its declared inputs; `listed` is always included, so the
    set is a superset of the user's catalog-list ids by construction.
    """

    listed: frozenset[MediaId] = field(default_factory=frozenset)
    session_skips: frozenset[MediaId] = field(default_factory=frozenset)
    recent_skips: frozenset[MediaId] = field(default_factory=frozenset)
    recent_impressions: frozenset[MediaId] = field(default_factory=frozenset)

    @cached_property
    def ids(self) -> frozenset[MediaId]:
        return (
            self.listed | self.session_skips | self.recent_skips | self.recent_impressions
        )

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)

    def contains(self, item_id: MediaId) -> bool:
        return item_id in self.ids

    def counts(self) -> dict[str, int]:
        return {
            "listed": len(self.listed),
            "session_skips": len(self.session_skips),
            "recent_skips": len(self.recent_skips),
            "recent_impressions": len(self.recent_impressions),
            "total": len(self.ids),
        }
