from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

Percentile = Annotated[float, Field(ge=0.0, le=100.0)]


class PriceRange(str, Enum):
    budget = "$"
    moderate = "$$"
    upscale = "$$$"
    luxury = "$$$$"


AFFORDABLE_PRICES = frozenset({PriceRange.budget, PriceRange.moderate})
EXPENSIVE_PRICES = frozenset({PriceRange.upscale, PriceRange.luxury})


class BusinessForScoring(BaseModel):
    """Read-only view of a business row, as handed to the scorer.

    Accepts both the storage column names (``interest_id``) and the
    camelCase keys the web client sends (``interestId``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    interest_id: str | None = Field(default=None, alias="interestId")
    sub_interest_id: str | None = Field(default=None, alias="subInterestId")
    category: str | None = None
    price_range: PriceRange | None = Field(default=None, alias="priceRange")
    average_rating: float | None = Field(default=None, ge=0.0, le=5.0, alias="averageRating")
    total_reviews: int | None = Field(default=None, ge=0, alias="totalReviews")
    distance_km: float | None = Field(default=None, ge=0.0, alias="distanceKm")
    percentiles: dict[str, Percentile] | None = None
    verified: bool | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class UserPreferences(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    interest_ids: frozenset[str] = Field(default_factory=frozenset, alias="interestIds")
    subcategory_ids: frozenset[str] = Field(default_factory=frozenset, alias="subcategoryIds")
    # Kept ordered: violation warnings list ids in the order the user picked them.
    dealbreaker_ids: tuple[str, ...] = Field(default_factory=tuple, alias="dealbreakerIds")
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)

    @field_validator("dealbreaker_ids", mode="after")
    @classmethod
    def _dedupe_dealbreakers(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(dict.fromkeys(value))

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def has_taste_preferences(self) -> bool:
        return bool(self.interest_ids or self.subcategory_ids)


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    interest_match: float
    subcategory_match: float
    dealbreaker_penalty: float
    distance_score: float
    rating_score: float
    freshness_score: float

    def total(self) -> float:
        return (
            self.interest_match
            + self.subcategory_match
            + self.dealbreaker_penalty
            + self.distance_score
            + self.rating_score
            + self.freshness_score
        )


class PersonalizationScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_score: float
    breakdown: ScoreBreakdown
    insights: list[str] = Field(default_factory=list)


class BoostedBusiness(BusinessForScoring):
    # Extra fields of the caller's own business model survive the boost.
    model_config = ConfigDict(extra="allow")

    personalization_score: float = Field(alias="personalizationScore")
    personalization_insights: list[str] = Field(
        default_factory=list, alias="personalizationInsights"
    )


class PersonalizedFeed(BaseModel):
    businesses: list[BoostedBusiness]
    total_candidates: int
    dealbreakers_relaxed: bool = False
    personalized: bool = False
