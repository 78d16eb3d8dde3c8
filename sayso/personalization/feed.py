from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from .config import DEFAULT_SCORING_CONFIG, ScoringConfig
from .dealbreakers import DEALBREAKER_RULES, DealbreakerRule, filter_by_dealbreakers
from .models import BusinessForScoring, PersonalizedFeed, UserPreferences
from .scoring import boost_personal_matches

logger = logging.getLogger(__name__)


def personalize_feed(
    businesses: Iterable[BusinessForScoring],
    preferences: UserPreferences,
    *,
    now: datetime | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> PersonalizedFeed:
    """
    Build the standard "for you" listing from already-fetched candidates.

    Steps:
    - Score every candidate and attach the score and insights.
    - Drop deal-breaker violators, unless that would empty the feed, in
      which case the filter is relaxed and the feed is flagged.
    - Rank by score when the user has stated interests or sub-categories;
      otherwise the caller's order is kept.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    boosted = boost_personal_matches(businesses, preferences, now=now, config=config, rules=rules)
    total_candidates = len(boosted)

    # --- Deal breakers ---
    relaxed = False
    if preferences.dealbreaker_ids and boosted:
        kept = filter_by_dealbreakers(boosted, preferences.dealbreaker_ids, rules)
        if not kept:
            logger.warning(
                "Deal breakers removed all %d results, relaxing filter (dealbreakers=%d)",
                total_candidates,
                len(preferences.dealbreaker_ids),
            )
            kept = boosted
            relaxed = True
        boosted = kept

    # --- Ranking ---
    personalized = preferences.has_taste_preferences
    if personalized:
        boosted = sorted(boosted, key=lambda b: b.personalization_score, reverse=True)

    logger.debug(
        "Personalized feed: %d of %d candidates (interests=%d, subcategories=%d, dealbreakers=%d)",
        len(boosted),
        total_candidates,
        len(preferences.interest_ids),
        len(preferences.subcategory_ids),
        len(preferences.dealbreaker_ids),
    )

    return PersonalizedFeed(
        businesses=boosted,
        total_candidates=total_candidates,
        dealbreakers_relaxed=relaxed,
        personalized=personalized,
    )
