"""
Deal-breaker rules.

A deal breaker is something a user picked during onboarding as a reason to
avoid a business ("slow service", "expensive", ...).  Each recognised id maps
to a plain predicate that returns ``True`` when the business is acceptable.
Ids without a rule are ignored everywhere.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import TypeVar

from .models import AFFORDABLE_PRICES, EXPENSIVE_PRICES, BusinessForScoring

logger = logging.getLogger(__name__)

DealbreakerRule = Callable[[BusinessForScoring], bool]

B = TypeVar("B", bound=BusinessForScoring)


def _percentile(business: BusinessForScoring, key: str, default: float) -> float:
    if not business.percentiles:
        return default
    value = business.percentiles.get(key)
    return default if value is None else value


def _trustworthiness(business: BusinessForScoring) -> bool:
    # Unknown verification gets the benefit of the doubt.
    return business.verified is not False


def _punctuality(business: BusinessForScoring) -> bool:
    return _percentile(business, "punctuality", 80.0) >= 70.0


def _friendliness(business: BusinessForScoring) -> bool:
    return _percentile(business, "friendliness", 80.0) >= 65.0


def _value_for_money(business: BusinessForScoring) -> bool:
    if business.price_range is not None:
        return business.price_range in AFFORDABLE_PRICES
    return _percentile(business, "cost-effectiveness", 85.0) >= 75.0


def _expensive(business: BusinessForScoring) -> bool:
    return business.price_range not in EXPENSIVE_PRICES


def _slow_service(business: BusinessForScoring) -> bool:
    return _percentile(business, "punctuality", 80.0) >= 60.0


def _no_attribute_yet(business: BusinessForScoring) -> bool:
    # No business attribute backs these deal breakers, so nothing can fail them.
    return True


DEALBREAKER_RULES: Mapping[str, DealbreakerRule] = MappingProxyType({
    "trustworthiness": _trustworthiness,
    "punctuality": _punctuality,
    "friendliness": _friendliness,
    "value-for-money": _value_for_money,
    "expensive": _expensive,
    "slow-service": _slow_service,
    "no-parking": _no_attribute_yet,
    "cash-only": _no_attribute_yet,
    "bad-hygiene": _no_attribute_yet,
})


def active_rules(
    dealbreaker_ids: Iterable[str],
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> list[tuple[str, DealbreakerRule]]:
    """Return ``(id, rule)`` pairs for the recognised ids, in first-seen order."""
    return [(d, rules[d]) for d in dict.fromkeys(dealbreaker_ids) if d in rules]


def _passes_all(business: BusinessForScoring, rules: list[tuple[str, DealbreakerRule]]) -> bool:
    for dealbreaker_id, rule in rules:
        try:
            if not rule(business):
                return False
        except Exception:
            logger.warning(
                "Deal breaker rule %r failed for business %s, keeping it in results",
                dealbreaker_id,
                business.id,
                exc_info=True,
            )
    return True


def filter_by_dealbreakers(
    businesses: Iterable[B],
    dealbreaker_ids: Iterable[str],
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> list[B]:
    """Keep only businesses that pass every active deal-breaker rule.

    Order is preserved.  A rule that raises counts as a pass: a heuristic
    bug must never hide a listing.
    """
    businesses = list(businesses)
    checks = active_rules(dealbreaker_ids, rules)
    if not checks:
        return businesses
    return [b for b in businesses if _passes_all(b, checks)]


def find_violations(
    business: BusinessForScoring,
    dealbreaker_ids: Iterable[str],
    rules: Mapping[str, DealbreakerRule] = DEALBREAKER_RULES,
) -> list[str]:
    """Return the active deal-breaker ids the business fails, for display.

    Rule errors are treated as "no violation" and never surface.
    """
    violations: list[str] = []
    for dealbreaker_id, rule in active_rules(dealbreaker_ids, rules):
        try:
            passes = rule(business)
        except Exception:
            logger.debug("Ignoring deal breaker %r error while building insights", dealbreaker_id)
            continue
        if not passes:
            violations.append(dealbreaker_id)
    return violations
