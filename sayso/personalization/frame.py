"""
DataFrame adapter for batch callers (exports, offline ranking checks).

Rows use the storage column names of ``BusinessForScoring``; missing values
may be NaN.  Nothing here mutates the frame it is given.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import numpy as np
import pandas as pd

from .config import DEFAULT_SCORING_CONFIG, ScoringConfig
from .dealbreakers import DEALBREAKER_RULES, DealbreakerRule
from .geo import haversine_km_array, is_valid_latitude, is_valid_longitude, with_distance
from .models import BusinessForScoring, UserPreferences
from .scoring import calculate_personalization_score

SCORE_COLUMN = "personalization_score"
INSIGHTS_COLUMN = "personalization_insights"

_SCORING_COLUMNS: list[str] = [
    "interest_id",
    "sub_interest_id",
    "category",
    "price_range",
    "average_rating",
    "total_reviews",
    "distance_km",
    "percentiles",
    "verified",
    "created_at",
    "updated_at",
]


def _clean(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    if isinstance(value, np.generic):
        value = value.item()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def business_from_row(
    row: pd.Series,
    preferences: UserPreferences | None = None,
    lat_column: str = "lat",
    lng_column: str = "lng",
) -> BusinessForScoring:
    """Build a scoring record from one row.

    When the row has no ``distance_km`` but carries its own coordinates and
    *preferences* has a location, the distance is filled in from them.
    """
    data: dict[str, Any] = {
        col: _clean(row.get(col)) for col in _SCORING_COLUMNS if col in row.index
    }
    raw_id = row["id"] if "id" in row.index else row.name
    data["id"] = str(raw_id)
    business = BusinessForScoring.model_validate(data)

    if (
        business.distance_km is None
        and preferences is not None
        and preferences.has_location
        and lat_column in row.index
        and lng_column in row.index
    ):
        business = with_distance(
            business,
            preferences.latitude,
            preferences.longitude,
            _clean(row[lat_column]),
            _clean(row[lng_column]),
        )
    return business


def add_distance_column(
    df: pd.DataFrame,
    latitude: float,
    longitude: float,
    lat_column: str = "lat",
    lng_column: str = "lng",
) -> pd.DataFrame:
    """Return a copy with ``distance_km`` computed from each row's coordinates.

    Rows with missing or out-of-range coordinates get NaN, as does every row
    when the origin itself is invalid.
    """
    out = df.copy()
    if not (is_valid_latitude(latitude) and is_valid_longitude(longitude)):
        out["distance_km"] = np.nan
        return out

    lats = out[lat_column].to_numpy(dtype=float)
    lngs = out[lng_column].to_numpy(dtype=float)
    # NaN compares False, so missing coordinates are masked too
    valid = (np.abs(lats) <= 90.0) & (np.abs(lngs) <= 180.0)
    distances = haversine_km_array(latitude, longitude, lats, lngs)
    out["distance_km"] = np.where(valid, distances, np.nan)
    return out


def score_frame(
    df: pd.DataFrame,
    preferences: UserPreferences,
    now: datetime | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> pd.DataFrame:
    """Return a copy of *df* with score and insight columns appended."""
    if now is None:
        now = datetime.now(timezone.utc)

    scores = [
        calculate_personalization_score(
            business_from_row(row, preferences), preferences, now=now, config=config, rules=rules
        )
        for _, row in df.iterrows()
    ]

    scored = df.copy()
    scored[SCORE_COLUMN] = pd.Series(
        [s.total_score for s in scores], index=df.index, dtype=float
    )
    scored[INSIGHTS_COLUMN] = pd.Series(
        [s.insights for s in scores], index=df.index, dtype=object
    )
    return scored


def rank_frame(
    df: pd.DataFrame,
    preferences: UserPreferences,
    limit: int | None = None,
    now: datetime | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> pd.DataFrame:
    """Score *df* and sort it highest first; rows with equal scores keep their order."""
    scored = score_frame(df, preferences, now=now, config=config, rules=rules)
    ranked = scored.sort_values(SCORE_COLUMN, ascending=False, kind="mergesort")
    if limit is not None:
        ranked = ranked.head(limit)
    return ranked
