from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from streamsense_core.types import Interaction, MediaId
from streamsense_user.signals.reducers import latest_per_pair

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionMatrix:
    values: np.ndarray  # users x items, 0.0 = unobserved
    user_ids: list[str]
    item_ids: list[MediaId]
    user_index: dict[str, int]
    item_index: dict[MediaId, int]

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]

    def observed(self, user_id: str) -> set[MediaId]:
        row = self.values[self.user_index[user_id]]
        return {self.item_ids[j] for j in np.flatnonzero(row)}


def build_matrix(interactions: Iterable[Interaction]) -> InteractionMatrix:
    """Dense user x item ratings from the newest record per (user, item)."""
    latest = latest_per_pair(interactions)
    user_index: dict[str, int] = {}
    item_index: dict[MediaId, int] = {}
    for it in latest:
        user_index.setdefault(it.user_id, len(user_index))
        item_index.setdefault(it.media_id, len(item_index))

    values = np.zeros((len(user_index), len(item_index)), dtype=np.float64)
    for it in latest:
        values[user_index[it.user_id], item_index[it.media_id]] = float(it.rating)

    if values.size:
        sparsity = 1.0 - np.count_nonzero(values) / values.size
        log.info(
            "interaction matrix %dx%d, sparsity %.1f%%",
            values.shape[0],
            values.shape[1],
            sparsity * 100,
        )
    return InteractionMatrix(
        values=values,
        user_ids=list(user_index),
        item_ids=list(item_index),
        user_index=user_index,
        item_index=item_index,
    )
