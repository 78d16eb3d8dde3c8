from __future__ import annotations

import itertools
import logging
import math
from datetime import datetime, timedelta, timezone

import pytest

from sayso.personalization.config import DEFAULT_SCORING_CONFIG
from sayso.personalization.models import BoostedBusiness, BusinessForScoring, UserPreferences
from sayso.personalization.scoring import (
    boost_personal_matches,
    calculate_dealbreaker_penalty,
    calculate_distance_score,
    calculate_freshness_score,
    calculate_personalization_score,
    calculate_rating_score,
    generate_insights,
    sort_by_personalization,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
CAPE_TOWN = {"latitude": -33.9249, "longitude": 18.4241}

_ids = itertools.count(1)


def _business(**fields) -> BusinessForScoring:
    fields.setdefault("id", f"biz-{next(_ids)}")
    return BusinessForScoring(**fields)


def _score(business, **prefs):
    return calculate_personalization_score(business, UserPreferences(**prefs), now=NOW)


def _raising_rule(business):
    raise KeyError("percentiles")


# ── Interest / subcategory matching ──────────────────────────────────────


class TestCategoryMatching:
    def test_interest_match(self):
        score = _score(_business(interest_id="food-drink"), interest_ids=["food-drink"])
        assert score.breakdown.interest_match == 15
        assert score.total_score > 0

    def test_interest_mismatch(self):
        score = _score(_business(interest_id="arts-culture"), interest_ids=["food-drink"])
        assert score.breakdown.interest_match == 0

    def test_uncategorized_business_never_matches(self):
        score = _score(_business(), interest_ids=["food-drink"], subcategory_ids=["sushi"])
        assert score.breakdown.interest_match == 0
        assert score.breakdown.subcategory_match == 0

    def test_subcategory_match(self):
        business = _business(interest_id="food-drink", sub_interest_id="sushi")
        score = _score(business, interest_ids=["food-drink"], subcategory_ids=["sushi"])
        assert score.breakdown.subcategory_match == 25
        assert score.total_score > 15

    def test_subcategory_outweighs_interest(self):
        assert DEFAULT_SCORING_CONFIG.subcategory_match_points > DEFAULT_SCORING_CONFIG.interest_match_points

    def test_duplicate_preferences_are_inert(self):
        business = _business(interest_id="food-drink")
        once = _score(business, interest_ids=["food-drink"])
        twice = _score(business, interest_ids=["food-drink", "food-drink"])
        assert once == twice

    def test_missing_preferences(self):
        score = _score(_business())
        assert score.total_score >= 0
        assert score.breakdown.interest_match == 0
        assert score.breakdown.subcategory_match == 0


# ── Deal-breaker penalty ─────────────────────────────────────────────────


class TestDealbreakerPenalty:
    def test_trustworthiness_violation(self):
        score = _score(_business(verified=False), dealbreaker_ids=["trustworthiness"])
        assert score.breakdown.dealbreaker_penalty == -50

    def test_penalty_per_violation(self):
        business = _business(verified=False, price_range="$$$$")
        score = _score(business, dealbreaker_ids=["trustworthiness", "expensive", "no-parking"])
        assert score.breakdown.dealbreaker_penalty == -100

    def test_duplicate_dealbreakers_penalise_once(self):
        score = _score(_business(verified=False), dealbreaker_ids=["trustworthiness", "trustworthiness"])
        assert score.breakdown.dealbreaker_penalty == -50

    def test_unknown_dealbreaker_is_inert(self):
        score = _score(_business(verified=False), dealbreaker_ids=["loud-music"])
        assert score.breakdown.dealbreaker_penalty == 0
        assert score.insights == []

    def test_penalty_can_make_total_negative(self):
        score = _score(_business(verified=False), dealbreaker_ids=["trustworthiness"])
        assert score.total_score < 0

    def test_raising_rule_is_not_penalised(self, caplog):
        rules = {"boom": _raising_rule}
        with caplog.at_level(logging.WARNING, logger="sayso.personalization.scoring"):
            penalty = calculate_dealbreaker_penalty(_business(), ["boom"], rules=rules)
        assert penalty == 0
        assert "boom" in caplog.text


# ── Distance ─────────────────────────────────────────────────────────────


class TestDistanceScore:
    @pytest.mark.parametrize(
        ("distance_km", "expected"),
        [
            (0.0, 10),
            (1.0, 10),
            (1.01, 8),
            (2.5, 8),
            (5.0, 8),
            (5.01, 5),
            (10.0, 5),
            (10.01, 2),
            (20.0, 2),
            (20.01, 0),
            (150.0, 0),
        ],
    )
    def test_bands(self, distance_km, expected):
        business = _business(distance_km=distance_km)
        assert _score(business, **CAPE_TOWN).breakdown.distance_score == expected

    def test_needs_user_location(self):
        business = _business(distance_km=0.5)
        assert _score(business).breakdown.distance_score == 0
        assert calculate_distance_score(business, UserPreferences(latitude=-33.9)) == 0
        assert calculate_distance_score(business, UserPreferences(longitude=18.4)) == 0

    def test_needs_business_distance(self):
        assert _score(_business(), **CAPE_TOWN).breakdown.distance_score == 0


# ── Rating ───────────────────────────────────────────────────────────────


class TestRatingScore:
    def test_documented_example(self):
        business = _business(average_rating=4.5, total_reviews=20, verified=True)
        # 4.5 * 3 + ln(21) * 0.5 + 2
        assert calculate_rating_score(business) == pytest.approx(17.02, abs=0.01)

    def test_zero_reviews_keep_small_floor(self):
        assert calculate_rating_score(_business(total_reviews=0)) == pytest.approx(math.log(2) * 0.5)
        assert calculate_rating_score(_business()) == pytest.approx(math.log(2) * 0.5)

    def test_more_reviews_diminishing_returns(self):
        ten = calculate_rating_score(_business(total_reviews=10))
        hundred = calculate_rating_score(_business(total_reviews=100))
        thousand = calculate_rating_score(_business(total_reviews=1000))
        assert ten < hundred < thousand
        # per extra review, the bonus shrinks
        assert (thousand - hundred) / 900 < (hundred - ten) / 90


class TestVerifiedAsymmetry:
    """Absent ``verified`` passes the trust deal breaker but earns no rating bonus.

    The two defaults are deliberately different: filtering gives the benefit of
    the doubt, the scoring bonus requires proof.
    """

    def test_absent_verified_gets_no_bonus(self):
        unknown = calculate_rating_score(_business(average_rating=4.0))
        verified = calculate_rating_score(_business(average_rating=4.0, verified=True))
        unverified = calculate_rating_score(_business(average_rating=4.0, verified=False))
        assert verified - unknown == pytest.approx(2.0)
        assert unknown == unverified

    def test_absent_verified_is_not_penalised(self):
        score = _score(_business(), dealbreaker_ids=["trustworthiness"])
        assert score.breakdown.dealbreaker_penalty == 0


# ── Freshness ────────────────────────────────────────────────────────────


class TestFreshnessScore:
    def test_recent_update_with_reviews(self):
        business = _business(total_reviews=15, updated_at=NOW.isoformat())
        assert calculate_freshness_score(business, NOW) == pytest.approx(1.5 + 2)

    def test_review_volume_is_capped(self):
        assert calculate_freshness_score(_business(total_reviews=500), NOW) == 3

    @pytest.mark.parametrize(
        ("days", "expected"),
        [(0, 2), (7, 2), (8, 1), (30, 1), (31, 0.5), (90, 0.5), (91, 0), (400, 0)],
    )
    def test_recency_bands(self, days, expected):
        business = _business(updated_at=NOW - timedelta(days=days))
        assert calculate_freshness_score(business, NOW) == expected

    def test_naive_timestamps_are_utc(self):
        business = _business(updated_at="2026-02-25T12:00:00")
        assert calculate_freshness_score(business, NOW) == 2

    def test_nothing_to_go_on(self):
        assert calculate_freshness_score(_business(), NOW) == 0


# ── Total score ──────────────────────────────────────────────────────────


def test_total_is_sum_of_breakdown():
    business = _business(
        interest_id="food-drink",
        sub_interest_id="sushi",
        price_range="$$$",
        average_rating=4.2,
        total_reviews=37,
        distance_km=3.2,
        verified=True,
        updated_at=NOW - timedelta(days=12),
    )
    score = _score(
        business,
        interest_ids=["food-drink"],
        subcategory_ids=["sushi"],
        dealbreaker_ids=["expensive"],
        **CAPE_TOWN,
    )
    b = score.breakdown
    assert score.total_score == (
        b.interest_match
        + b.subcategory_match
        + b.dealbreaker_penalty
        + b.distance_score
        + b.rating_score
        + b.freshness_score
    )
    assert b.dealbreaker_penalty == -50
    assert b.distance_score == 8
    assert b.freshness_score == pytest.approx(3 + 1)


def test_scoring_is_deterministic():
    business = _business(interest_id="food-drink", average_rating=3.9, total_reviews=4)
    prefs = UserPreferences(interest_ids=["food-drink"], dealbreaker_ids=["punctuality"])
    first = calculate_personalization_score(business, prefs, now=NOW)
    second = calculate_personalization_score(business, prefs, now=NOW)
    assert first == second


# ── Insights ─────────────────────────────────────────────────────────────


class TestInsights:
    def test_interest_and_subcategory_notes(self):
        business = _business(interest_id="food-drink", sub_interest_id="sushi", average_rating=4.8)
        score = _score(business, interest_ids=["food-drink"], subcategory_ids=["sushi"])
        assert any("interest" in i.lower() for i in score.insights)
        assert score.insights[0] != score.insights[1]
        assert "Highly rated with 4.8 stars" in score.insights

    def test_fixed_order(self):
        business = _business(
            interest_id="food-drink",
            sub_interest_id="sushi",
            category="Sushi",
            average_rating=4.6,
            percentiles={"friendliness": 90, "punctuality": 85},
            price_range="$$",
            verified=False,
        )
        prefs = UserPreferences(
            interest_ids=["food-drink"],
            subcategory_ids=["sushi"],
            dealbreaker_ids=["trustworthiness", "no-parking", "loud-music"],
        )
        assert generate_insights(business, prefs) == [
            "Matches your interest in Sushi",
            "Perfect match for your preferred Sushi",
            "Highly rated with 4.6 stars",
            "Known for excellent friendliness",
            "Known for fast, punctual service",
            "Great value for money",
            "⚠️ May not match your preferences: trustworthiness",
        ]

    def test_category_fallback_wording(self):
        business = _business(interest_id="food-drink", sub_interest_id="sushi")
        prefs = UserPreferences(interest_ids=["food-drink"], subcategory_ids=["sushi"])
        assert generate_insights(business, prefs) == [
            "Matches your interest in this category",
            "Perfect match for your preferred category",
        ]

    def test_single_warning_lists_violations_in_preference_order(self):
        business = _business(price_range="$$$$", verified=False)
        prefs = UserPreferences(dealbreaker_ids=["expensive", "trustworthiness"])
        insights = generate_insights(business, prefs)
        assert insights == ["⚠️ May not match your preferences: expensive, trustworthiness"]

    def test_rule_errors_never_reach_insights(self):
        prefs = UserPreferences(dealbreaker_ids=["boom"])
        assert generate_insights(_business(), prefs, rules={"boom": _raising_rule}) == []

    def test_insights_ignore_score(self):
        business = _business(price_range="$", verified=False)
        prefs = UserPreferences(dealbreaker_ids=["trustworthiness"])
        score = calculate_personalization_score(business, prefs, now=NOW)
        assert score.total_score < 0
        assert score.insights[0] == "Great value for money"


# ── Sort / boost ─────────────────────────────────────────────────────────


class TestSortByPersonalization:
    def test_highest_first(self):
        businesses = [
            _business(interest_id="food-drink", average_rating=3.5),
            _business(interest_id="food-drink", average_rating=4.8),
            _business(interest_id="arts-culture", average_rating=4.5),
        ]
        prefs = UserPreferences(interest_ids=["food-drink"])
        ranked = sort_by_personalization(businesses, prefs, now=NOW)
        assert ranked[0].interest_id == "food-drink"
        assert ranked[0].average_rating == 4.8
        assert [b.id for b in ranked] == [businesses[1].id, businesses[0].id, businesses[2].id]

    def test_empty(self):
        assert sort_by_personalization([], UserPreferences()) == []

    def test_ties_keep_input_order(self):
        first = _business(average_rating=4.0)
        best = _business(average_rating=5.0)
        second = _business(average_rating=4.0)
        ranked = sort_by_personalization([first, best, second], UserPreferences(), now=NOW)
        assert [b.id for b in ranked] == [best.id, first.id, second.id]

    def test_returns_same_objects(self):
        businesses = [_business(average_rating=2.0), _business(average_rating=3.0)]
        ranked = sort_by_personalization(businesses, UserPreferences(), now=NOW)
        assert ranked[0] is businesses[1]
        assert ranked[1] is businesses[0]


class TestBoostPersonalMatches:
    def test_annotates_without_reordering(self):
        businesses = [
            _business(average_rating=2.0),
            _business(interest_id="food-drink", average_rating=4.0),
        ]
        prefs = UserPreferences(interest_ids=["food-drink"])
        boosted = boost_personal_matches(businesses, prefs, now=NOW)

        assert [b.id for b in boosted] == [b.id for b in businesses]
        assert all(isinstance(b, BoostedBusiness) for b in boosted)
        for original, annotated in zip(businesses, boosted):
            expected = calculate_personalization_score(original, prefs, now=NOW)
            assert annotated.personalization_score == expected.total_score
            assert annotated.personalization_insights == expected.insights
            assert annotated.interest_id == original.interest_id

    def test_inputs_untouched(self):
        business = _business(average_rating=4.0)
        boost_personal_matches([business], UserPreferences(), now=NOW)
        assert not isinstance(business, BoostedBusiness)
        assert "personalization_score" not in business.model_dump()

    def test_empty(self):
        assert boost_personal_matches([], UserPreferences()) == []

    def test_camel_case_output(self):
        boosted = boost_personal_matches([_business(average_rating=4.0)], UserPreferences(), now=NOW)
        dumped = boosted[0].model_dump(by_alias=True)
        assert dumped["personalizationScore"] == boosted[0].personalization_score
        assert dumped["personalizationInsights"] == []
        assert dumped["averageRating"] == 4.0

    def test_keeps_fields_of_caller_models(self):
        class ListedBusiness(BusinessForScoring):
            name: str
            slug: str | None = None

        listed = ListedBusiness(id="b-1", name="Sushi Bar", slug="sushi-bar", average_rating=4.0)
        boosted = boost_personal_matches([listed], UserPreferences(), now=NOW)[0]
        assert boosted.name == "Sushi Bar"
        assert boosted.slug == "sushi-bar"
        assert boosted.personalization_score > 0
