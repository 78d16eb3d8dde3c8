"""
Personalization engine for the business directory.

Responsibilities:
- Score a business against a user's interests, sub-categories and deal breakers.
- Filter out businesses that violate the user's deal breakers.
- Rank or annotate candidate lists by personalization score.
- Assemble the "for you" feed from already-fetched candidates.

Everything here is pure and in-memory: callers fetch businesses and
preferences from storage and serialise the results themselves.
"""
from __future__ import annotations

from .config import DEFAULT_SCORING_CONFIG, ScoringConfig, ScoringConfigError, load_scoring_config
from .dealbreakers import DEALBREAKER_RULES, filter_by_dealbreakers, find_violations
from .feed import personalize_feed
from .frame import add_distance_column, business_from_row, rank_frame, score_frame
from .geo import haversine_km, is_valid_latitude, is_valid_longitude, with_distance
from .models import (
    BoostedBusiness,
    BusinessForScoring,
    PersonalizationScore,
    PersonalizedFeed,
    PriceRange,
    ScoreBreakdown,
    UserPreferences,
)
from .scoring import (
    boost_personal_matches,
    calculate_personalization_score,
    sort_by_personalization,
)

__all__ = [
    "DEALBREAKER_RULES",
    "DEFAULT_SCORING_CONFIG",
    "BoostedBusiness",
    "BusinessForScoring",
    "PersonalizationScore",
    "PersonalizedFeed",
    "PriceRange",
    "ScoreBreakdown",
    "ScoringConfig",
    "ScoringConfigError",
    "UserPreferences",
    "add_distance_column",
    "boost_personal_matches",
    "business_from_row",
    "calculate_personalization_score",
    "filter_by_dealbreakers",
    "find_violations",
    "haversine_km",
    "is_valid_latitude",
    "is_valid_longitude",
    "load_scoring_config",
    "personalize_feed",
    "rank_frame",
    "score_frame",
    "sort_by_personalization",
    "with_distance",
]
