from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


class ScoringConfigError(ValueError):
    """Raised when a set of scoring weights is not a valid ranking model."""


@dataclass(frozen=True)
class ScoringConfig:
    """
    Weights and thresholds of the personalization score.

    score = interest_match + subcategory_match - dealbreaker_penalty
            + distance_score + rating_score + freshness_score

    Bands are ``(upper_bound, points)`` pairs checked in ascending order;
    the first band whose bound is >= the measured value wins.
    """

    interest_match_points: float = 15.0
    subcategory_match_points: float = 25.0
    dealbreaker_penalty_points: float = 50.0
    distance_bands_km: tuple[tuple[float, float], ...] = (
        (1.0, 10.0),
        (5.0, 8.0),
        (10.0, 5.0),
        (20.0, 2.0),
    )
    rating_multiplier: float = 3.0
    review_log_weight: float = 0.5
    verified_bonus: float = 2.0
    review_volume_divisor: float = 10.0
    review_volume_cap: float = 3.0
    recency_bands_days: tuple[tuple[float, float], ...] = (
        (7.0, 2.0),
        (30.0, 1.0),
        (90.0, 0.5),
    )
    high_rating_threshold: float = 4.5
    standout_percentile: float = 80.0

    def __post_init__(self) -> None:
        if self.interest_match_points < 0:
            raise ScoringConfigError("interest_match_points must be non-negative")
        # A sub-category is the more specific signal and must outrank its parent.
        if self.subcategory_match_points <= self.interest_match_points:
            raise ScoringConfigError(
                "subcategory_match_points must be greater than interest_match_points "
                f"(got {self.subcategory_match_points} <= {self.interest_match_points})"
            )
        if self.dealbreaker_penalty_points < 0:
            raise ScoringConfigError("dealbreaker_penalty_points must be non-negative")
        if self.review_volume_divisor <= 0:
            raise ScoringConfigError("review_volume_divisor must be positive")
        for name in ("distance_bands_km", "recency_bands_days"):
            bounds = [bound for bound, _ in getattr(self, name)]
            if bounds != sorted(bounds):
                raise ScoringConfigError(f"{name} must be sorted by ascending bound")


DEFAULT_SCORING_CONFIG = ScoringConfig()

_ENV_OVERRIDES: dict[str, str] = {
    "interest_match_points": "SAYSO_INTEREST_MATCH_POINTS",
    "subcategory_match_points": "SAYSO_SUBCATEGORY_MATCH_POINTS",
    "dealbreaker_penalty_points": "SAYSO_DEALBREAKER_PENALTY_POINTS",
}


def load_scoring_config(base: ScoringConfig = DEFAULT_SCORING_CONFIG) -> ScoringConfig:
    """Return *base* with any ``SAYSO_*`` weight overrides from the environment applied."""
    overrides: dict[str, float] = {}
    for field_name, env_var in _ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if raw is None or not raw.strip():
            continue
        try:
            overrides[field_name] = float(raw)
        except ValueError as exc:
            raise ScoringConfigError(f"{env_var} must be a number, got {raw!r}") from exc
    if not overrides:
        return base
    return replace(base, **overrides)
