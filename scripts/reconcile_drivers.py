"""
Validate or repair cached driver totals.

Usage:
    python scripts/reconcile_drivers.py            # report only
    python scripts/reconcile_drivers.py --fix      # repair drifted drivers
    python scripts/reconcile_drivers.py --driver 42 --fix
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.db import get_db_context
from src.services.reconciliation import ReconciliationEngine


def print_report(report):
    status = "OK" if report.is_valid else "DRIFT"
    print(f"Driver {report.driver_id}: {status}")
    for name in report.mismatched_fields:
        print(f"  - {name}: stored {getattr(report.stored, name)}, actual {getattr(report.actual, name)}")
    if report.missing_earnings_delivery_ids:
        print(f"  - delivered without earnings: {report.missing_earnings_delivery_ids}")


async def reconcile(driver_id, fix):
    async with get_db_context() as db:
        engine = ReconciliationEngine(db)

        if driver_id is not None:
            if fix:
                result = await engine.fix(driver_id, actor="reconcile_drivers")
                print_report(result.before)
                print("Repaired" if result.repaired else "Nothing to repair")
            else:
                print_report(await engine.validate(driver_id))
            return 0

        if fix:
            sweep = await engine.fix_all(actor="reconcile_drivers")
        else:
            sweep = await engine.validate_all()

        for entry in sweep.entries:
            if entry.error:
                print(f"Driver {entry.driver_id}: ERROR {entry.error}")
            elif not entry.is_valid:
                action = "repaired" if entry.repaired else "drift"
                print(f"Driver {entry.driver_id}: {action} {entry.mismatched_fields}")

        print(
            f"\n{sweep.total_drivers} drivers: {sweep.valid_drivers} valid, "
            f"{sweep.invalid_drivers} invalid, {sweep.repaired_drivers} repaired, "
            f"{sweep.failed_drivers} failed"
        )
        return 1 if sweep.failed_drivers else 0


def main():
    parser = argparse.ArgumentParser(description="Validate or repair driver totals")
    parser.add_argument("--driver", type=int, default=None, help="Only this driver id")
    parser.add_argument("--fix", action="store_true", help="Repair drifted totals")
    args = parser.parse_args()

    sys.exit(asyncio.run(reconcile(args.driver, args.fix)))


if __name__ == "__main__":
    main()
