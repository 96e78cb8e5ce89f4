from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

import numpy as np

from streamsense_core.config import RATING_MAX, RATING_MIN, SVD_DEFAULT_FACTORS
from streamsense_core.types import MediaId

from .matrix import InteractionMatrix

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LatentFactorModel:
    user_factors: np.ndarray  # users x k
    singular_values: np.ndarray  # k
    item_factors: np.ndarray  # items x k
    rank: int
    user_index: dict[str, int]
    item_index: dict[MediaId, int]
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Prediction:
    item_id: MediaId
    predicted_rating: float
    confidence: float


def _clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x


def factorize(
    matrix: InteractionMatrix, k: int = SVD_DEFAULT_FACTORS
) -> LatentFactorModel | None:
    """
    Truncated SVD. Returns None when there are fewer than 2 users or items:
    that is "no collaborative signal", not an error.
    """
    m = matrix.values
    if m.ndim != 2 or m.shape[0] < 2 or m.shape[1] < 2:
        log.info("factorization skipped: matrix %s too small", m.shape)
        return None

    rank = int(np.linalg.matrix_rank(m))
    if rank == 0:
        log.info("factorization skipped: empty matrix")
        return None

    u, s, vt = np.linalg.svd(m, full_matrices=False)
    k = max(1, min(int(k), rank, len(s)))
    return LatentFactorModel(
        user_factors=u[:, :k].copy(),
        singular_values=s[:k].copy(),
        item_factors=vt[:k, :].T.copy(),
        rank=k,
        user_index=dict(matrix.user_index),
        item_index=dict(matrix.item_index),
    )


def predict(model: LatentFactorModel, user_id: str, item_id: MediaId) -> float | None:
    ui = model.user_index.get(user_id)
    ii = model.item_index.get(item_id)
    if ui is None or ii is None:
        return None
    raw = float(
        np.sum(model.user_factors[ui] * model.singular_values * model.item_factors[ii])
    )
    return _clamp(raw, RATING_MIN, RATING_MAX)


def prediction_confidence(model: LatentFactorModel, item_id: MediaId) -> float:
    """Share of the item's factor loading carried by the retained singular values."""
    ii = model.item_index.get(item_id)
    if ii is None:
        return 0.0
    s = model.singular_values
    total = float(np.sum(s))
    if total <= 0:
        return 0.0
    mass = float(np.sum(np.abs(model.item_factors[ii]) * s))
    return _clamp(mass / total, 0.0, 1.0)


def recommend_for_user(
    model: LatentFactorModel,
    user_id: str,
    candidate_ids: Iterable[MediaId] | None = None,
    exclude: Iterable[MediaId] = (),
    top_n: int = 20,
) -> list[Prediction]:
    ui = model.user_index.get(user_id)
    if ui is None:
        return []
    skip = set(exclude)
    ids = list(candidate_ids) if candidate_ids is not None else list(model.item_index)
    ids = [i for i in ids if i in model.item_index and i not in skip]
    if not ids:
        return []

    cols = np.array([model.item_index[i] for i in ids])
    raw = (model.user_factors[ui] * model.singular_values) @ model.item_factors[cols].T
    preds = [
        Prediction(
            item_id=i,
            predicted_rating=_clamp(float(r), RATING_MIN, RATING_MAX),
            confidence=prediction_confidence(model, i),
        )
        for i, r in zip(ids, raw)
    ]
    preds.sort(key=lambda p: (p.predicted_rating, p.confidence), reverse=True)
    return preds[:top_n]
