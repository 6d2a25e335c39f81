"""
Earnings reconciliation engine.

Driver totals (total_deliveries, completed_deliveries, total_earnings) are
a cache over the deliveries table. Handlers never increment them; they
recompute from deliveries and overwrite. A concurrent handler can still
win a last-write race with stale numbers, so every write is followed by a
validation pass that detects the drift and repairs it.

Delivered-event flow (on_delivery_delivered):
1. ensure the delivery has earnings
2. recompute and store the driver's totals
3. validate the stored totals and fix them if they disagree

Failures inside that flow are logged and reported, never raised, so the
status change that triggered it always succeeds. Administrative calls
(validate, fix, bulk_recalculate, ...) raise.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.models import AuditAction, Delivery, DeliveryStatus, Driver, RuleSet
from src.services.calculator import EarningsSplit, compute_split
from src.services.config_store import ConfigStore
from src.services.exceptions import (
    DeliveryNotDelivered,
    DeliveryNotFound,
    DriverNotFound,
    EarningsError,
)
from src.services.rules import Rule
from src.utils.audit import SYSTEM_ACTOR, log_action

logger = logging.getLogger(__name__)

# Totals are compared at cent resolution
CENT = Decimal("0.01")

TOTAL_FIELDS = ("total_deliveries", "completed_deliveries", "total_earnings")


def _money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


@dataclass(frozen=True)
class DriverTotals:
    total_deliveries: int
    completed_deliveries: int
    total_earnings: Decimal
    # Delivered deliveries whose earnings are missing (counted as zero)
    missing_earnings_delivery_ids: Tuple[int, ...] = field(default=(), compare=False)

    def as_dict(self) -> dict:
        return {
            "total_deliveries": self.total_deliveries,
            "completed_deliveries": self.completed_deliveries,
            "total_earnings": str(self.total_earnings),
        }


@dataclass
class ValidationReport:
    driver_id: int
    stored: DriverTotals
    actual: DriverTotals
    mismatched_fields: List[str]

    @property
    def is_valid(self) -> bool:
        return not self.mismatched_fields

    @property
    def missing_earnings_delivery_ids(self) -> List[int]:
        return list(self.actual.missing_earnings_delivery_ids)


@dataclass
class FixResult:
    driver_id: int
    repaired: bool
    before: ValidationReport
    after: ValidationReport


@dataclass
class SweepEntry:
    driver_id: int
    is_valid: Optional[bool] = None
    repaired: bool = False
    mismatched_fields: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SweepReport:
    entries: List[SweepEntry] = field(default_factory=list)

    @property
    def total_drivers(self) -> int:
        return len(self.entries)

    @property
    def valid_drivers(self) -> int:
        return sum(1 for e in self.entries if e.is_valid)

    @property
    def invalid_drivers(self) -> int:
        return sum(1 for e in self.entries if e.is_valid is False)

    @property
    def repaired_drivers(self) -> int:
        return sum(1 for e in self.entries if e.repaired)

    @property
    def failed_drivers(self) -> int:
        return sum(1 for e in self.entries if e.error is not None)


@dataclass
class BulkResult:
    delivery_id: int
    success: bool
    driver_earning: Optional[Decimal] = None
    company_earning: Optional[Decimal] = None
    rule_set_version: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DeliveredOutcome:
    delivery_id: int
    driver_id: Optional[int] = None
    steps: Dict[str, str] = field(default_factory=dict)
    repaired: bool = False

    @property
    def succeeded(self) -> bool:
        return all(status == "ok" for status in self.steps.values())


class ReconciliationEngine:
    """
    Earnings bookkeeping bound to one async session.

    Not safe for concurrent use from several tasks; create one engine per
    request or job.
    """

    def __init__(
        self,
        db: AsyncSession,
        config_store: Optional[ConfigStore] = None,
        step_attempts: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.db = db
        self.config = config_store or ConfigStore(db)
        self.step_attempts = step_attempts or settings.reconciliation_step_attempts
        self.batch_size = batch_size or settings.reconciliation_batch_size

    # ── Split ─────────────────────────────────────────────

    async def compute_split(
        self,
        fee: Decimal,
        rule_set_id: Optional[int] = None,
    ) -> Tuple[RuleSet, EarningsSplit]:
        """What-if split with the named or the active rule set. Nothing is stored."""
        rule_set, rules = await self._resolve_rules(rule_set_id)
        return rule_set, compute_split(fee, rules)

    async def _resolve_rules(self, rule_set_id: Optional[int]) -> Tuple[RuleSet, List[Rule]]:
        if rule_set_id is None:
            return await self.config.get_active_rules()
        return await self.config.get_rules(rule_set_id)

    async def _record_fallback(self, delivery: Delivery, rule_set_version: int) -> None:
        await log_action(
            db=self.db,
            actor=SYSTEM_ACTOR,
            action=AuditAction.FALLBACK_RULE_USED,
            target_type="delivery",
            target_id=delivery.id,
            action_metadata={"fee": str(delivery.fee), "rule_set_version": rule_set_version},
        )

    # ── Delivery level ────────────────────────────────────

    async def ensure_delivery_earnings_calculated(self, delivery_id: int) -> Delivery:
        """
        Compute and store a delivered delivery's earnings, once.

        No-op if the earnings are already stored.

        Raises:
            DeliveryNotFound if the delivery does not exist
            DeliveryNotDelivered if it has not reached delivered status
        """
        delivery = await self.db.get(Delivery, delivery_id, populate_existing=True)
        if delivery is None:
            raise DeliveryNotFound(delivery_id)

        if delivery.has_earnings:
            logger.debug(f"Delivery {delivery_id} already has earnings")
            return delivery

        if delivery.status != DeliveryStatus.DELIVERED:
            raise DeliveryNotDelivered(delivery_id, delivery.status.value)

        rule_set, rules = await self.config.get_active_rules()
        split = compute_split(delivery.fee, rules)

        # Conditional write: a concurrent handler that stored earnings first wins
        result = await self.db.execute(
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                or_(Delivery.driver_earning.is_(None), Delivery.company_earning.is_(None)),
            )
            .values(
                driver_earning=split.driver_earning,
                company_earning=split.company_earning,
                earnings_rule_set_version=rule_set.version,
                earnings_calculated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount and split.fallback_used:
            await self._record_fallback(delivery, rule_set.version)
        await self.db.commit()
        await self.db.refresh(delivery)

        if result.rowcount:
            logger.info(
                f"Delivery {delivery_id}: earnings {split.driver_earning} driver / "
                f"{split.company_earning} company (rule set v{rule_set.version})"
            )
        return delivery

    # ── Driver level ──────────────────────────────────────

    async def recompute_driver_totals(self, driver_id: int) -> DriverTotals:
        """
        Authoritative totals from the deliveries table. Read only.

        Delivered deliveries without earnings count as zero and are flagged.
        """
        delivered = Delivery.status == DeliveryStatus.DELIVERED

        row = (
            await self.db.execute(
                select(
                    func.count().label("total"),
                    func.count().filter(delivered).label("completed"),
                    func.sum(case((delivered, Delivery.driver_earning), else_=None)).label("earnings"),
                )
                .select_from(Delivery)
                .where(Delivery.assigned_to == driver_id)
            )
        ).one()

        missing = (
            await self.db.execute(
                select(Delivery.id)
                .where(
                    Delivery.assigned_to == driver_id,
                    delivered,
                    Delivery.driver_earning.is_(None),
                )
                .order_by(Delivery.id)
            )
        ).scalars().all()

        if missing:
            logger.warning(
                f"Driver {driver_id}: delivered deliveries without earnings {list(missing)} "
                f"counted as zero"
            )

        return DriverTotals(
            total_deliveries=row.total or 0,
            completed_deliveries=row.completed or 0,
            total_earnings=_money(row.earnings),
            missing_earnings_delivery_ids=tuple(missing),
        )

    async def persist_driver_totals(self, driver_id: int, totals: DriverTotals) -> None:
        """Overwrite the cached totals. Raises DriverNotFound."""
        result = await self.db.execute(
            update(Driver)
            .where(Driver.id == driver_id)
            .values(
                total_deliveries=totals.total_deliveries,
                completed_deliveries=totals.completed_deliveries,
                total_earnings=totals.total_earnings,
            )
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            await self.db.rollback()
            raise DriverNotFound(driver_id)
        await self.db.commit()

    async def refresh_driver_totals(self, driver_id: int) -> DriverTotals:
        totals = await self.recompute_driver_totals(driver_id)
        await self.persist_driver_totals(driver_id, totals)
        return totals

    async def validate(self, driver_id: int) -> ValidationReport:
        """
        Compare a driver's stored totals against the recomputation.

        Raises:
            DriverNotFound if the driver does not exist
        """
        driver = await self.db.get(Driver, driver_id, populate_existing=True)
        if driver is None:
            raise DriverNotFound(driver_id)

        stored = DriverTotals(
            total_deliveries=driver.total_deliveries,
            completed_deliveries=driver.completed_deliveries,
            total_earnings=_money(driver.total_earnings),
        )
        actual = await self.recompute_driver_totals(driver_id)

        return ValidationReport(
            driver_id=driver_id,
            stored=stored,
            actual=actual,
            mismatched_fields=[
                name for name in TOTAL_FIELDS if getattr(stored, name) != getattr(actual, name)
            ],
        )

    async def fix(self, driver_id: int, actor: str = SYSTEM_ACTOR) -> FixResult:
        """
        Repair a driver's totals if they drifted. Idempotent.

        Raises:
            DriverNotFound if the driver does not exist
        """
        before = await self.validate(driver_id)
        if before.is_valid:
            return FixResult(driver_id=driver_id, repaired=False, before=before, after=before)

        actual = before.actual
        await self.db.execute(
            update(Driver)
            .where(Driver.id == driver_id)
            .values(
                total_deliveries=actual.total_deliveries,
                completed_deliveries=actual.completed_deliveries,
                total_earnings=actual.total_earnings,
                totals_repair_count=Driver.totals_repair_count + 1,
                totals_repaired_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await log_action(
            db=self.db,
            actor=actor,
            action=AuditAction.DRIVER_TOTALS_REPAIRED,
            target_type="driver",
            target_id=driver_id,
            action_metadata={
                "fields": before.mismatched_fields,
                "stored": before.stored.as_dict(),
                "actual": actual.as_dict(),
            },
        )
        await self.db.commit()

        logger.warning(
            f"Driver {driver_id}: repaired totals {before.mismatched_fields} "
            f"{before.stored.as_dict()} -> {actual.as_dict()}"
        )

        after = await self.validate(driver_id)
        return FixResult(driver_id=driver_id, repaired=True, before=before, after=after)

    # ── Sweeps ────────────────────────────────────────────

    async def _driver_id_batches(self) -> AsyncIterator[List[int]]:
        last_id = 0
        while True:
            result = await self.db.execute(
                select(Driver.id)
                .where(Driver.id > last_id)
                .order_by(Driver.id)
                .limit(self.batch_size)
            )
            ids = list(result.scalars().all())
            if not ids:
                return
            yield ids
            last_id = ids[-1]

    async def _sweep(self, repair: bool, actor: str) -> SweepReport:
        report = SweepReport()

        async for batch in self._driver_id_batches():
            for driver_id in batch:
                entry = SweepEntry(driver_id=driver_id)
                try:
                    if repair:
                        result = await self.fix(driver_id, actor)
                        entry.is_valid = result.before.is_valid
                        entry.repaired = result.repaired
                        entry.mismatched_fields = result.before.mismatched_fields
                    else:
                        validation = await self.validate(driver_id)
                        entry.is_valid = validation.is_valid
                        entry.mismatched_fields = validation.mismatched_fields
                except Exception as e:
                    await self.db.rollback()
                    entry.error = str(e)
                    logger.error(f"Reconciliation sweep: driver {driver_id} failed: {e}")
                report.entries.append(entry)

        logger.info(
            f"Reconciliation sweep ({'fix' if repair else 'validate'}): "
            f"{report.total_drivers} drivers, {report.invalid_drivers} invalid, "
            f"{report.repaired_drivers} repaired, {report.failed_drivers} failed"
        )
        return report

    async def validate_all(self) -> SweepReport:
        """Validate every driver, one at a time. Per-driver failures are reported."""
        return await self._sweep(repair=False, actor=SYSTEM_ACTOR)

    async def fix_all(self, actor: str = SYSTEM_ACTOR) -> SweepReport:
        """Fix every driver, one at a time. Per-driver failures are reported."""
        return await self._sweep(repair=True, actor=actor)

    # ── Delivered event ───────────────────────────────────

    async def _attempt(
        self,
        outcome: DeliveredOutcome,
        step: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Run one bookkeeping step, retrying database errors. Never raises."""
        error: Optional[Exception] = None
        for attempt in range(1, self.step_attempts + 1):
            try:
                result = await func(*args)
                outcome.steps[step] = "ok"
                return result
            except SQLAlchemyError as e:
                await self.db.rollback()
                error = e
                logger.warning(
                    f"Delivery {outcome.delivery_id} (driver {outcome.driver_id}): "
                    f"{step} attempt {attempt}/{self.step_attempts} failed: {e}"
                )
            except Exception as e:
                await self.db.rollback()
                error = e
                break

        logger.error(
            f"Delivery {outcome.delivery_id} (driver {outcome.driver_id}): "
            f"{step} failed: {error}"
        )
        outcome.steps[step] = f"failed: {error}"
        return None

    async def _assigned_driver(self, delivery_id: int) -> Optional[int]:
        return await self.db.scalar(
            select(Delivery.assigned_to).where(Delivery.id == delivery_id)
        )

    async def on_delivery_delivered(self, delivery_id: int) -> DeliveredOutcome:
        """
        Bookkeeping after a delivery reached delivered status.

        Each step is independent and retried on database errors. Nothing is
        raised: the outcome lists each step as "ok" or "failed: <reason>".
        """
        outcome = DeliveredOutcome(delivery_id=delivery_id)

        delivery = await self._attempt(
            outcome, "ensure_earnings", self.ensure_delivery_earnings_calculated, delivery_id
        )
        if delivery is not None:
            outcome.driver_id = delivery.assigned_to
        else:
            outcome.driver_id = await self._attempt(
                outcome, "resolve_driver", self._assigned_driver, delivery_id
            )

        if outcome.driver_id is None:
            logger.warning(f"Delivery {delivery_id}: no assigned driver, totals not refreshed")
            return outcome

        await self._attempt(outcome, "refresh_totals", self.refresh_driver_totals, outcome.driver_id)

        fix_result = await self._attempt(outcome, "validate", self.fix, outcome.driver_id)
        if fix_result is not None:
            outcome.repaired = fix_result.repaired

        return outcome

    # ── Bulk recalculation ────────────────────────────────

    async def bulk_recalculate(
        self,
        delivery_ids: List[int],
        rule_set_id: Optional[int] = None,
        actor: str = SYSTEM_ACTOR,
        ip_address: Optional[str] = None,
    ) -> List[BulkResult]:
        """
        Re-derive earnings for specific deliveries with a named rule set.

        Uses the active rule set when rule_set_id is None. One delivery
        failing never aborts the others. Totals of affected drivers are
        repaired afterwards.

        Raises:
            ConfigNotFound / ConfigInvalid for a bad rule_set_id
        """
        rule_set, rules = await self._resolve_rules(rule_set_id)
        # Plain values: a rollback below expires the rule set instance
        version, target_id = rule_set.version, rule_set.id
        results: List[BulkResult] = []
        drivers = set()

        for delivery_id in delivery_ids:
            try:
                delivery = await self.db.get(Delivery, delivery_id, populate_existing=True)
                if delivery is None:
                    raise DeliveryNotFound(delivery_id)
                if delivery.status != DeliveryStatus.DELIVERED:
                    raise DeliveryNotDelivered(delivery_id, delivery.status.value)

                split = compute_split(delivery.fee, rules)
                delivery.driver_earning = split.driver_earning
                delivery.company_earning = split.company_earning
                delivery.earnings_rule_set_version = version
                delivery.earnings_calculated_at = datetime.now(timezone.utc)
                if split.fallback_used:
                    await self._record_fallback(delivery, version)
                await self.db.commit()

                if delivery.assigned_to is not None:
                    drivers.add(delivery.assigned_to)
                results.append(
                    BulkResult(
                        delivery_id=delivery_id,
                        success=True,
                        driver_earning=split.driver_earning,
                        company_earning=split.company_earning,
                        rule_set_version=version,
                    )
                )
            except EarningsError as e:
                results.append(BulkResult(delivery_id=delivery_id, success=False, error=e.message))
            except ValueError as e:
                logger.warning(f"Bulk recalculation: delivery {delivery_id} skipped: {e}")
                results.append(BulkResult(delivery_id=delivery_id, success=False, error=str(e)))
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Bulk recalculation: delivery {delivery_id} failed: {e}")
                results.append(BulkResult(delivery_id=delivery_id, success=False, error=str(e)))

        for driver_id in sorted(drivers):
            try:
                await self.fix(driver_id, actor)
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Bulk recalculation: totals of driver {driver_id} not repaired: {e}")

        succeeded = sum(1 for r in results if r.success)
        await log_action(
            db=self.db,
            actor=actor,
            action=AuditAction.BULK_RECALCULATE,
            target_type="rule_set",
            target_id=target_id,
            action_metadata={
                "rule_set_version": version,
                "total": len(results),
                "succeeded": succeeded,
                "failed": len(results) - succeeded,
            },
            ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(
            f"Bulk recalculation with rule set v{version}: "
            f"{succeeded}/{len(results)} succeeded"
        )
        return results
