"""
Earnings split rules.

A rule set is an ordered list of rules. The first rule whose fee range
contains the fee decides the split. Three kinds exist:

- fixed:      driver gets a fixed amount (clamped to the fee)
- percentage: driver gets a percentage of the fee
- tiered:     the fee selects a tier; each tier is fixed or percentage

Fee ranges are half-open, min_fee <= fee < max_fee, and max_fee None means
no upper bound.

Rules are persisted as JSON documents tagged by "kind", with amounts as
strings so no precision is lost:

    {"kind": "percentage", "driver_percent": "67", "min_fee": "0", "max_fee": "1000"}
    {"kind": "fixed", "amount": "100", "min_fee": "101", "max_fee": "151"}
    {"kind": "tiered", "tiers": [
        {"min_fee": "0", "max_fee": "101", "driver_percent": "60"},
        {"min_fee": "101", "max_fee": null, "driver_fixed": "100"}
    ]}
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from src.services.exceptions import ConfigValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Split used by the built-in default rule set and when no rule matches
DEFAULT_DRIVER_PERCENT = Decimal("67")


def _in_range(fee: Decimal, min_fee: Decimal, max_fee: Optional[Decimal]) -> bool:
    return fee >= min_fee and (max_fee is None or fee < max_fee)


@dataclass(frozen=True)
class FixedRule:
    amount: Decimal
    min_fee: Decimal = ZERO
    max_fee: Optional[Decimal] = None
    description: Optional[str] = None

    kind = "fixed"

    def applies_to(self, fee: Decimal) -> bool:
        return _in_range(fee, self.min_fee, self.max_fee)

    def fee_bounds(self) -> Tuple[Decimal, Optional[Decimal]]:
        return self.min_fee, self.max_fee


@dataclass(frozen=True)
class PercentageRule:
    driver_percent: Decimal
    min_fee: Decimal = ZERO
    max_fee: Optional[Decimal] = None
    description: Optional[str] = None

    kind = "percentage"

    def applies_to(self, fee: Decimal) -> bool:
        return _in_range(fee, self.min_fee, self.max_fee)

    def fee_bounds(self) -> Tuple[Decimal, Optional[Decimal]]:
        return self.min_fee, self.max_fee


@dataclass(frozen=True)
class Tier:
    min_fee: Decimal
    max_fee: Optional[Decimal] = None
    driver_percent: Optional[Decimal] = None
    driver_fixed: Optional[Decimal] = None

    def contains(self, fee: Decimal) -> bool:
        return _in_range(fee, self.min_fee, self.max_fee)


@dataclass(frozen=True)
class TieredRule:
    tiers: Tuple[Tier, ...]
    description: Optional[str] = None

    kind = "tiered"

    def tier_for(self, fee: Decimal) -> Optional[Tier]:
        for tier in self.tiers:
            if tier.contains(fee):
                return tier
        return None

    def applies_to(self, fee: Decimal) -> bool:
        return self.tier_for(fee) is not None

    def fee_bounds(self) -> Tuple[Decimal, Optional[Decimal]]:
        ordered = sorted(self.tiers, key=lambda t: t.min_fee)
        return ordered[0].min_fee, ordered[-1].max_fee


Rule = Union[FixedRule, PercentageRule, TieredRule]

RULE_TYPES = {
    FixedRule.kind: FixedRule,
    PercentageRule.kind: PercentageRule,
    TieredRule.kind: TieredRule,
}

DEFAULT_RULES: Tuple[Rule, ...] = (
    PercentageRule(
        driver_percent=DEFAULT_DRIVER_PERCENT,
        description="Built-in default: 67% driver, 33% company",
    ),
)


# ── Parsing ───────────────────────────────────────────────


def _to_decimal(value: Any, field: str, index: int) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ConfigValidationError(f"{field} must be a number", index)
    try:
        # str() keeps floats like 0.1 from turning into binary noise
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigValidationError(f"{field} must be a number", index)
    if not number.is_finite():
        raise ConfigValidationError(f"{field} must be a finite number", index)
    return number


def _optional_decimal(doc: dict, field: str, index: int) -> Optional[Decimal]:
    if doc.get(field) is None:
        return None
    return _to_decimal(doc[field], field, index)


def _parse_tier(doc: Any, index: int) -> Tier:
    if not isinstance(doc, dict):
        raise ConfigValidationError("each tier must be an object", index)
    return Tier(
        min_fee=_optional_decimal(doc, "min_fee", index) or ZERO,
        max_fee=_optional_decimal(doc, "max_fee", index),
        driver_percent=_optional_decimal(doc, "driver_percent", index),
        driver_fixed=_optional_decimal(doc, "driver_fixed", index),
    )


def parse_rule(doc: Any, index: int) -> Rule:
    """Build a rule from its JSON document. Shape errors only; see validate_rules."""
    if not isinstance(doc, dict):
        raise ConfigValidationError("rule must be an object", index)

    kind = doc.get("kind")
    description = doc.get("description")

    if kind == FixedRule.kind:
        if doc.get("amount") is None:
            raise ConfigValidationError("fixed rule requires amount", index)
        return FixedRule(
            amount=_to_decimal(doc["amount"], "amount", index),
            min_fee=_optional_decimal(doc, "min_fee", index) or ZERO,
            max_fee=_optional_decimal(doc, "max_fee", index),
            description=description,
        )

    if kind == PercentageRule.kind:
        if doc.get("driver_percent") is None:
            raise ConfigValidationError("percentage rule requires driver_percent", index)
        return PercentageRule(
            driver_percent=_to_decimal(doc["driver_percent"], "driver_percent", index),
            min_fee=_optional_decimal(doc, "min_fee", index) or ZERO,
            max_fee=_optional_decimal(doc, "max_fee", index),
            description=description,
        )

    if kind == TieredRule.kind:
        tiers = doc.get("tiers")
        if not isinstance(tiers, list) or not tiers:
            raise ConfigValidationError("tiered rule requires at least one tier", index)
        return TieredRule(
            tiers=tuple(_parse_tier(t, index) for t in tiers),
            description=description,
        )

    raise ConfigValidationError(f"unknown rule kind {kind!r}", index)


def parse_rules(docs: Any) -> List[Rule]:
    if not isinstance(docs, list):
        raise ConfigValidationError("Earnings rules must be a list")
    return [parse_rule(doc, i) for i, doc in enumerate(docs)]


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def dump_rule(rule: Rule) -> dict:
    """Serialize a rule back to its JSON document."""
    if isinstance(rule, TieredRule):
        doc = {
            "kind": rule.kind,
            "tiers": [
                {
                    "min_fee": _dec(t.min_fee),
                    "max_fee": _dec(t.max_fee),
                    "driver_percent": _dec(t.driver_percent),
                    "driver_fixed": _dec(t.driver_fixed),
                }
                for t in rule.tiers
            ],
        }
    elif isinstance(rule, FixedRule):
        doc = {
            "kind": rule.kind,
            "amount": _dec(rule.amount),
            "min_fee": _dec(rule.min_fee),
            "max_fee": _dec(rule.max_fee),
        }
    else:
        doc = {
            "kind": rule.kind,
            "driver_percent": _dec(rule.driver_percent),
            "min_fee": _dec(rule.min_fee),
            "max_fee": _dec(rule.max_fee),
        }
    if rule.description:
        doc["description"] = rule.description
    return doc


def dump_rules(rules: Iterable[Rule]) -> List[dict]:
    return [dump_rule(rule) for rule in rules]


# ── Validation ────────────────────────────────────────────


def _check_range(min_fee: Decimal, max_fee: Optional[Decimal], index: int) -> None:
    if min_fee < ZERO:
        raise ConfigValidationError("min_fee cannot be negative", index)
    if max_fee is not None and max_fee <= min_fee:
        raise ConfigValidationError("max_fee must be greater than min_fee", index)


def _check_percent(percent: Decimal, index: int) -> None:
    if percent < ZERO or percent > HUNDRED:
        raise ConfigValidationError("driver percentage must be between 0 and 100", index)


def _check_amount(amount: Decimal, index: int) -> None:
    if amount < ZERO:
        raise ConfigValidationError("driver fixed amount cannot be negative", index)


def _validate_tiers(rule: TieredRule, index: int) -> None:
    for tier in rule.tiers:
        _check_range(tier.min_fee, tier.max_fee, index)
        if tier.driver_percent is not None and tier.driver_fixed is not None:
            raise ConfigValidationError(
                "tier cannot have both fixed and percentage driver earnings", index
            )
        if tier.driver_percent is None and tier.driver_fixed is None:
            raise ConfigValidationError(
                "tier must specify either driver_fixed or driver_percent", index
            )
        if tier.driver_percent is not None:
            _check_percent(tier.driver_percent, index)
        else:
            _check_amount(tier.driver_fixed, index)

    ordered = sorted(rule.tiers, key=lambda t: t.min_fee)
    if ordered[0].min_fee != ZERO:
        raise ConfigValidationError("first tier must start at fee 0", index)

    for position, (current, following) in enumerate(zip(ordered, ordered[1:]), start=1):
        if current.max_fee is None:
            raise ConfigValidationError(
                f"tier {position} is unbounded but is followed by another tier", index
            )
        if following.min_fee < current.max_fee:
            raise ConfigValidationError(
                f"tier {position} overlaps with tier {position + 1}", index
            )
        if following.min_fee > current.max_fee:
            raise ConfigValidationError(
                f"gap between tier {position} and tier {position + 1} "
                f"({current.max_fee} to {following.min_fee})",
                index,
            )

    if ordered[-1].max_fee is not None:
        raise ConfigValidationError("last tier must have no upper bound", index)


def _validate_coverage(rules: Sequence[Rule]) -> None:
    """The union of all rule ranges must cover every fee >= 0."""
    bounds = sorted((rule.fee_bounds() for rule in rules), key=lambda b: b[0])
    reach: Optional[Decimal] = ZERO

    for min_fee, max_fee in bounds:
        if reach is None:
            return
        if min_fee > reach:
            raise ConfigValidationError(
                f"fees from {reach} to {min_fee} are not covered by any rule"
            )
        if max_fee is None or max_fee > reach:
            reach = max_fee

    if reach is not None:
        raise ConfigValidationError(f"fees from {reach} upwards are not covered by any rule")


def validate_rules(rules: Sequence[Rule]) -> None:
    """
    Check a parsed rule list.

    Raises:
        ConfigValidationError naming the first offending rule and the reason
    """
    if not rules:
        raise ConfigValidationError("At least one earnings rule is required")

    for index, rule in enumerate(rules):
        if isinstance(rule, TieredRule):
            _validate_tiers(rule, index)
        elif isinstance(rule, FixedRule):
            _check_range(rule.min_fee, rule.max_fee, index)
            _check_amount(rule.amount, index)
        elif isinstance(rule, PercentageRule):
            _check_range(rule.min_fee, rule.max_fee, index)
            _check_percent(rule.driver_percent, index)
        else:
            raise ConfigValidationError(f"unsupported rule type {type(rule).__name__}", index)

    _validate_coverage(rules)


def load_rules(docs: Any) -> List[Rule]:
    """Parse and validate stored rule documents."""
    rules = parse_rules(docs)
    validate_rules(rules)
    return rules
