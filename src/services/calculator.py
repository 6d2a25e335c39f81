"""
Delivery fee split between driver and company.

compute_split is deterministic and has no side effects beyond a warning
log when no rule matches. The company share is always fee - driver share,
so the two add up to the fee exactly.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional, Sequence, Type

from src.services.rules import (
    DEFAULT_DRIVER_PERCENT,
    HUNDRED,
    ZERO,
    FixedRule,
    PercentageRule,
    Rule,
    Tier,
    TieredRule,
)

logger = logging.getLogger(__name__)

# Earnings are rounded to whole currency units
EARNINGS_QUANTUM = Decimal("1")


@dataclass(frozen=True)
class EarningsSplit:
    driver_earning: Decimal
    company_earning: Decimal
    rule_index: Optional[int] = None
    rule_kind: Optional[str] = None
    fallback_used: bool = False


def _percent_of(fee: Decimal, percent: Decimal) -> Decimal:
    return (fee * percent / HUNDRED).quantize(EARNINGS_QUANTUM, rounding=ROUND_HALF_UP)


def _fixed_share(rule: FixedRule, fee: Decimal) -> Decimal:
    return rule.amount


def _percentage_share(rule: PercentageRule, fee: Decimal) -> Decimal:
    return _percent_of(fee, rule.driver_percent)


def _tier_share(tier: Tier, fee: Decimal) -> Decimal:
    if tier.driver_fixed is not None:
        return tier.driver_fixed
    return _percent_of(fee, tier.driver_percent)


def _tiered_share(rule: TieredRule, fee: Decimal) -> Decimal:
    return _tier_share(rule.tier_for(fee), fee)


# One share function per rule kind
SHARE_FUNCTIONS: Dict[Type, Callable[[Rule, Decimal], Decimal]] = {
    FixedRule: _fixed_share,
    PercentageRule: _percentage_share,
    TieredRule: _tiered_share,
}


def _split(fee: Decimal, driver_share: Decimal) -> tuple:
    driver = min(max(driver_share, ZERO), fee)
    return driver, fee - driver


def compute_split(fee: Decimal, rules: Sequence[Rule]) -> EarningsSplit:
    """
    Split a delivery fee using the first rule that applies.

    Args:
        fee: Delivery fee, must be >= 0
        rules: Ordered rules of a rule set

    Returns:
        EarningsSplit with driver and company shares summing to fee
    """
    if not isinstance(fee, Decimal):
        fee = Decimal(str(fee))
    if fee < ZERO:
        raise ValueError("fee must be >= 0")

    for index, rule in enumerate(rules):
        if rule.applies_to(fee):
            share = SHARE_FUNCTIONS[type(rule)](rule, fee)
            driver, company = _split(fee, share)
            return EarningsSplit(
                driver_earning=driver,
                company_earning=company,
                rule_index=index,
                rule_kind=rule.kind,
            )

    logger.warning(
        f"No earnings rule matches fee {fee}; "
        f"falling back to {DEFAULT_DRIVER_PERCENT}% driver split"
    )
    driver, company = _split(fee, _percent_of(fee, DEFAULT_DRIVER_PERCENT))
    return EarningsSplit(
        driver_earning=driver,
        company_earning=company,
        fallback_used=True,
    )
