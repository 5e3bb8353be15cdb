"""
Reshape per-subject recommendation lists into one fixed-width table.

The service returns however many recommendations it has for a subject, up to
the requested K. Callers get a DataFrame where every row has exactly 2K value
columns laid out as ``rec1, score1, ..., recK, scoreK``; missing slots hold
``None`` (identifier) and ``NaN`` (score).
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import ValidationError

from prodrec.errors import MalformedResponse
from prodrec.models.recommender import RecommendationRow, ScoredItem

LOGGER = logging.getLogger(__name__)


def value_columns(k: int) -> List[str]:
    cols = []
    for i in range(1, k + 1):
        cols.extend((f"rec{i}", f"score{i}"))
    return cols


def parse_recommendations(payload: Any) -> List[ScoredItem]:
    """Convert a raw `recommend` response into scored items, keeping service order."""
    if not payload:
        return []
    if isinstance(payload, dict):
        # some deployments wrap the list
        payload = payload.get("recommendations") or payload.get("value") or []
    try:
        return [ScoredItem.model_validate(entry) for entry in payload]
    except (ValidationError, TypeError) as exc:
        raise MalformedResponse(f"Unexpected recommendation entry in response: {exc}") from exc


def normalize(
    rows: Sequence[RecommendationRow],
    k: int,
    subject_key: Optional[str] = None,
) -> pd.DataFrame:
    """Pad, interleave and label recommendation rows. Row order follows `rows`."""
    n = len(rows)
    ids = np.full((n, k), None, dtype=object)
    scores = np.full((n, k), np.nan, dtype=np.float64)

    for r, row in enumerate(rows):
        recs = row.recommendations
        if len(recs) > k:
            LOGGER.debug("Truncating %d recommendations to %d for %s", len(recs), k, row.subject_id)
            recs = recs[:k]
        for c, rec in enumerate(recs):
            ids[r, c] = rec.item_id
            scores[r, c] = rec.score

    data = {}
    if subject_key:
        data[subject_key] = pd.Series([row.subject_id for row in rows], dtype=object)
    for c in range(k):
        data[f"rec{c + 1}"] = pd.Series(ids[:, c], dtype=object)
        data[f"score{c + 1}"] = pd.Series(scores[:, c], dtype=np.float64)

    columns = ([subject_key] if subject_key else []) + value_columns(k)
    return pd.DataFrame(data, columns=columns)


def normalize_payloads(
    subjects: Iterable[Optional[str]],
    payloads: Iterable[Any],
    k: int,
    subject_key: Optional[str] = None,
) -> pd.DataFrame:
    """Pair raw responses with their subjects by position, then normalize."""
    rows = [
        RecommendationRow(subject_id=subject, recommendations=parse_recommendations(payload))
        for subject, payload in zip(subjects, payloads)
    ]
    return normalize(rows, k, subject_key=subject_key)
