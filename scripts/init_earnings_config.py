"""
Seed the standard earnings rule set.

Usage:
    python scripts/init_earnings_config.py

Or with custom DATABASE_URL:
    DATABASE_URL="postgresql://..." python scripts/init_earnings_config.py

Creates and activates the standard tiered rule set when no rule set is
active yet. Does nothing otherwise.
"""

import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.db import get_db_context
from src.services.config_store import ConfigStore


# ===== STANDARD RULES =====

STANDARD_RULES = [
    {
        "kind": "tiered",
        "description": "Standard courier split",
        "tiers": [
            {"min_fee": "0", "max_fee": "101", "driver_percent": "60"},
            {"min_fee": "101", "max_fee": "151", "driver_fixed": "100"},
            {"min_fee": "151", "max_fee": None, "driver_percent": "60"},
        ],
    },
]


async def init_config():
    async with get_db_context() as db:
        store = ConfigStore(db)

        active = await store.get_active()
        if active.id is not None:
            print(f"Rule set v{active.version} is already active, nothing to do")
            return

        rule_set = await store.create(
            rules=STANDARD_RULES,
            notes="60% up to 100, fixed 100 from 101 to 150, 60% above",
            author="init_earnings_config",
            name="Standard courier split",
        )
        await store.activate(rule_set.id, author="init_earnings_config")
        print(f"Created and activated rule set v{rule_set.version}")


if __name__ == "__main__":
    asyncio.run(init_config())
