"""Business logic services."""

from src.services.calculator import EarningsSplit, compute_split
from src.services.config_store import ConfigStore, default_rule_set
from src.services.earnings_stats import EarningsStats, get_earnings_stats
from src.services.reconciliation import ReconciliationEngine

__all__ = [
    "ConfigStore",
    "EarningsSplit",
    "EarningsStats",
    "ReconciliationEngine",
    "compute_split",
    "default_rule_set",
    "get_earnings_stats",
]
