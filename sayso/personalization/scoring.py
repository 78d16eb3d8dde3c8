from __future__ import annotations

import logging
import math
from collections.abc import Collection, Iterable, Mapping
from datetime import datetime, timezone

from .config import DEFAULT_SCORING_CONFIG, ScoringConfig
from .dealbreakers import DEALBREAKER_RULES, DealbreakerRule, active_rules, find_violations
from .models import (
    AFFORDABLE_PRICES,
    BoostedBusiness,
    BusinessForScoring,
    PersonalizationScore,
    ScoreBreakdown,
    UserPreferences,
)

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 60 * 60 * 24


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _banded(value: float, bands: tuple[tuple[float, float], ...]) -> float:
    for upper_bound, points in bands:
        if value <= upper_bound:
            return points
    return 0.0


def calculate_interest_match(
    business: BusinessForScoring,
    interest_ids: Collection[str],
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    if business.interest_id and business.interest_id in interest_ids:
        return config.interest_match_points
    return 0.0


def calculate_subcategory_match(
    business: BusinessForScoring,
    subcategory_ids: Collection[str],
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    if business.sub_interest_id and business.sub_interest_id in subcategory_ids:
        return config.subcategory_match_points
    return 0.0


def calculate_dealbreaker_penalty(
    business: BusinessForScoring,
    dealbreaker_ids: Iterable[str],
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> float:
    """Return a non-positive penalty: one deduction per failed deal breaker."""
    penalty = 0.0
    for dealbreaker_id, rule in active_rules(dealbreaker_ids, rules):
        try:
            passes = rule(business)
        except Exception:
            logger.warning(
                "Deal breaker rule %r failed for business %s, not penalising",
                dealbreaker_id,
                business.id,
                exc_info=True,
            )
            continue
        if not passes:
            penalty -= config.dealbreaker_penalty_points
    return penalty


def calculate_distance_score(
    business: BusinessForScoring,
    preferences: UserPreferences,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    if not preferences.has_location or business.distance_km is None:
        return 0.0
    return _banded(business.distance_km, config.distance_bands_km)


def calculate_rating_score(
    business: BusinessForScoring,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    rating = business.average_rating or 0.0
    reviews = business.total_reviews or 0

    # Log scale so review volume cannot drown out the rating itself;
    # zero reviews still earns ln(2) * weight.
    review_bonus = math.log(max(reviews, 1) + 1) * config.review_log_weight
    # Only an explicit verification earns the bonus.
    verified_bonus = config.verified_bonus if business.verified is True else 0.0

    return rating * config.rating_multiplier + review_bonus + verified_bonus


def calculate_freshness_score(
    business: BusinessForScoring,
    now: datetime | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    score = 0.0

    if business.total_reviews:
        score += min(business.total_reviews / config.review_volume_divisor, config.review_volume_cap)

    if business.updated_at is not None:
        now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        elapsed = now - _as_utc(business.updated_at)
        score += _banded(elapsed.total_seconds() / _SECONDS_PER_DAY, config.recency_bands_days)

    return score


def generate_insights(
    business: BusinessForScoring,
    preferences: UserPreferences,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> list[str]:
    """Explain, in a fixed order, why a business does or does not suit the user."""
    insights: list[str] = []
    percentiles = business.percentiles or {}

    if business.interest_id and business.interest_id in preferences.interest_ids:
        insights.append(f"Matches your interest in {business.category or 'this category'}")

    if business.sub_interest_id and business.sub_interest_id in preferences.subcategory_ids:
        insights.append(f"Perfect match for your preferred {business.category or 'category'}")

    rating = business.average_rating
    if rating is not None and rating >= config.high_rating_threshold:
        insights.append(f"Highly rated with {rating:.1f} stars")

    friendliness = percentiles.get("friendliness")
    if friendliness is not None and friendliness >= config.standout_percentile:
        insights.append("Known for excellent friendliness")

    punctuality = percentiles.get("punctuality")
    if punctuality is not None and punctuality >= config.standout_percentile:
        insights.append("Known for fast, punctual service")

    if business.price_range in AFFORDABLE_PRICES:
        insights.append("Great value for money")

    violations = find_violations(business, preferences.dealbreaker_ids, rules)
    if violations:
        insights.append(f"⚠️ May not match your preferences: {', '.join(violations)}")

    return insights


def calculate_personalization_score(
    business: BusinessForScoring,
    preferences: UserPreferences,
    *,
    now: datetime | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> PersonalizationScore:
    """Score one business against one user's preferences.

    Pure apart from ``now``, which defaults to the current UTC time; pass it
    explicitly to get reproducible freshness scores.
    """
    breakdown = ScoreBreakdown(
        interest_match=calculate_interest_match(business, preferences.interest_ids, config),
        subcategory_match=calculate_subcategory_match(business, preferences.subcategory_ids, config),
        dealbreaker_penalty=calculate_dealbreaker_penalty(
            business, preferences.dealbreaker_ids, config, rules
        ),
        distance_score=calculate_distance_score(business, preferences, config),
        rating_score=calculate_rating_score(business, config),
        freshness_score=calculate_freshness_score(business, now, config),
    )
    return PersonalizationScore(
        total_score=breakdown.total(),
        breakdown=breakdown,
        insights=generate_insights(business, preferences, config, rules),
    )


def sort_by_personalization(
    businesses: Iterable[BusinessForScoring],
    preferences: UserPreferences,
    *,
    now: datetime | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> list[BusinessForScoring]:
    """Return the businesses ordered by score, highest first; ties keep input order."""
    if now is None:
        now = datetime.now(timezone.utc)
    scored = [
        (
            calculate_personalization_score(
                business, preferences, now=now, config=config, rules=rules
            ).total_score,
            business,
        )
        for business in businesses
    ]
    # sorted() is stable, also with reverse=True
    scored = sorted(scored, key=lambda item: item[0], reverse=True)
    return [business for _, business in scored]


def boost_personal_matches(
    businesses: Iterable[BusinessForScoring],
    preferences: UserPreferences,
    *,
    now: datetime | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> list[BoostedBusiness]:
    """Annotate each business with its score, without reordering.

    Fields declared on a ``BusinessForScoring`` subclass are carried over.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    boosted: list[BoostedBusiness] = []
    for business in businesses:
        score = calculate_personalization_score(
            business, preferences, now=now, config=config, rules=rules
        )
        boosted.append(BoostedBusiness.model_validate({
            **business.model_dump(),
            "personalization_score": score.total_score,
            "personalization_insights": score.insights,
        }))
    return boosted
