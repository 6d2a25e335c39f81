"""
Tests for the fee split calculator.

Covers:
- First matching rule wins
- Each rule kind
- driver + company == fee for every fee
- Clamping of fixed amounts larger than the fee
- Fallback when no rule matches
"""

from decimal import Decimal

import pytest

from src.services.calculator import SHARE_FUNCTIONS, compute_split
from src.services.rules import RULE_TYPES, load_rules, parse_rules

SAMPLE_RULES = load_rules([
    {"kind": "percentage", "driver_percent": "67", "min_fee": "0", "max_fee": "1000"},
    {"kind": "fixed", "amount": "500", "min_fee": "1000"},
])

STANDARD_RULES = load_rules([
    {
        "kind": "tiered",
        "tiers": [
            {"min_fee": "0", "max_fee": "101", "driver_percent": "60"},
            {"min_fee": "101", "max_fee": "151", "driver_fixed": "100"},
            {"min_fee": "151", "max_fee": None, "driver_percent": "60"},
        ],
    },
])


# ── Rule selection ────────────────────────────────────────


class TestComputeSplit:
    def test_percentage_example(self):
        split = compute_split(Decimal("150"), SAMPLE_RULES)
        assert split.driver_earning == Decimal("101")
        assert split.company_earning == Decimal("49")
        assert split.rule_index == 0
        assert split.rule_kind == "percentage"
        assert not split.fallback_used

    def test_upper_bound_is_exclusive(self):
        split = compute_split(Decimal("1000"), SAMPLE_RULES)
        assert split.rule_index == 1
        assert split.driver_earning == Decimal("500")
        assert split.company_earning == Decimal("500")

    def test_first_match_wins(self):
        rules = load_rules([
            {"kind": "fixed", "amount": "10"},
            {"kind": "percentage", "driver_percent": "90"},
        ])
        split = compute_split(Decimal("200"), rules)
        assert split.rule_index == 0
        assert split.driver_earning == Decimal("10")

    def test_zero_fee(self):
        split = compute_split(Decimal("0"), SAMPLE_RULES)
        assert split.driver_earning == 0
        assert split.company_earning == 0

    def test_half_rounds_up(self):
        rules = load_rules([{"kind": "percentage", "driver_percent": "50"}])
        split = compute_split(Decimal("101"), rules)
        assert split.driver_earning == Decimal("51")
        assert split.company_earning == Decimal("50")

    def test_accepts_int_and_str(self):
        assert compute_split(150, SAMPLE_RULES).driver_earning == Decimal("101")
        assert compute_split("150", SAMPLE_RULES).driver_earning == Decimal("101")

    def test_negative_fee(self):
        with pytest.raises(ValueError):
            compute_split(Decimal("-1"), SAMPLE_RULES)


class TestTieredRule:
    @pytest.mark.parametrize(
        "fee, driver",
        [
            ("50", "30"),
            ("100", "60"),
            ("101", "100"),
            ("150", "100"),
            ("151", "91"),
            ("300", "180"),
        ],
    )
    def test_standard_tiers(self, fee, driver):
        split = compute_split(Decimal(fee), STANDARD_RULES)
        assert split.driver_earning == Decimal(driver)
        assert split.rule_kind == "tiered"


class TestClamping:
    def test_fixed_amount_larger_than_fee(self):
        rules = load_rules([{"kind": "fixed", "amount": "100"}])
        split = compute_split(Decimal("40"), rules)
        assert split.driver_earning == Decimal("40")
        assert split.company_earning == Decimal("0")

    def test_fixed_tier_larger_than_fee(self):
        rules = load_rules([
            {"kind": "tiered", "tiers": [{"min_fee": "0", "driver_fixed": "80"}]},
        ])
        split = compute_split(Decimal("25"), rules)
        assert split.driver_earning == Decimal("25")
        assert split.company_earning == Decimal("0")


class TestSplitSumsToFee:
    @pytest.mark.parametrize("rules", [SAMPLE_RULES, STANDARD_RULES], ids=["sample", "standard"])
    def test_sum_equals_fee(self, rules):
        fees = [Decimal(n) / 4 for n in range(0, 8000, 7)]
        for fee in fees:
            split = compute_split(fee, rules)
            assert split.driver_earning + split.company_earning == fee
            assert Decimal("0") <= split.driver_earning <= fee


class TestFallback:
    def test_no_rule_matches(self, caplog):
        # Unvalidated rules can leave fees uncovered
        rules = parse_rules([
            {"kind": "fixed", "amount": "10", "min_fee": "0", "max_fee": "100"},
        ])
        with caplog.at_level("WARNING"):
            split = compute_split(Decimal("150"), rules)

        assert split.fallback_used
        assert split.rule_index is None
        assert split.driver_earning == Decimal("101")
        assert split.company_earning == Decimal("49")
        assert "No earnings rule matches" in caplog.text

    def test_empty_rules(self):
        split = compute_split(Decimal("10"), [])
        assert split.fallback_used
        assert split.driver_earning + split.company_earning == Decimal("10")


def test_every_rule_kind_has_a_share_function():
    assert set(SHARE_FUNCTIONS) == set(RULE_TYPES.values())
