"""
Tests for the reconciliation engine.

Covers:
- Earnings computed once per delivery
- Totals recomputation and validation reports
- Repair and its idempotence
- Sweeps over all drivers
- Delivered-event bookkeeping (never raises)
- Bulk recalculation with per-delivery failures
"""

from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from src.models import AuditAction, AuditLog, Delivery, DeliveryStatus
from src.services.config_store import ConfigStore
from src.services.exceptions import (
    ConfigNotFound,
    DeliveryNotDelivered,
    DeliveryNotFound,
    DriverNotFound,
)
from src.services import reconciliation
from src.services.reconciliation import DriverTotals, ReconciliationEngine

SAMPLE_RULES = [
    {"kind": "percentage", "driver_percent": "67", "min_fee": "0", "max_fee": "1000"},
    {"kind": "fixed", "amount": "500", "min_fee": "1000"},
]


async def _activate(db, rules):
    store = ConfigStore(db)
    rule_set = await store.create(rules)
    return await store.activate(rule_set.id)


async def _audit_actions(db):
    return (await db.execute(select(AuditLog.action))).scalars().all()


# ── ensure_delivery_earnings_calculated ───────────────────


class TestEnsureEarnings:
    @pytest.mark.asyncio
    async def test_computes_with_active_rule_set(self, db_session, make_driver, make_delivery):
        rule_set = await _activate(db_session, SAMPLE_RULES)
        driver = await make_driver()
        delivery = await make_delivery(driver, fee="150")

        result = await ReconciliationEngine(db_session).ensure_delivery_earnings_calculated(delivery.id)

        assert result.driver_earning == Decimal("101")
        assert result.company_earning == Decimal("49")
        assert result.earnings_rule_set_version == rule_set.version
        assert result.earnings_calculated_at is not None

    @pytest.mark.asyncio
    async def test_default_rule_set_version_zero(self, db_session, make_driver, make_delivery):
        delivery = await make_delivery(await make_driver(), fee="100")

        result = await ReconciliationEngine(db_session).ensure_delivery_earnings_calculated(delivery.id)

        assert result.driver_earning == Decimal("67")
        assert result.earnings_rule_set_version == 0

    @pytest.mark.asyncio
    async def test_idempotent_across_rule_changes(self, db_session, make_driver, make_delivery):
        await _activate(db_session, SAMPLE_RULES)
        delivery = await make_delivery(await make_driver(), fee="150")
        engine = ReconciliationEngine(db_session)

        first = await engine.ensure_delivery_earnings_calculated(delivery.id)
        calculated_at = first.earnings_calculated_at

        await _activate(db_session, [{"kind": "percentage", "driver_percent": "10"}])
        second = await engine.ensure_delivery_earnings_calculated(delivery.id)

        assert second.driver_earning == Decimal("101")
        assert second.earnings_rule_set_version == 1
        assert second.earnings_calculated_at == calculated_at

    @pytest.mark.asyncio
    async def test_missing_delivery(self, db_session):
        with pytest.raises(DeliveryNotFound):
            await ReconciliationEngine(db_session).ensure_delivery_earnings_calculated(404)

    @pytest.mark.asyncio
    async def test_not_delivered(self, db_session, make_driver, make_delivery):
        delivery = await make_delivery(await make_driver(), status=DeliveryStatus.IN_TRANSIT)

        with pytest.raises(DeliveryNotDelivered):
            await ReconciliationEngine(db_session).ensure_delivery_earnings_calculated(delivery.id)

        await db_session.refresh(delivery)
        assert delivery.driver_earning is None


# ── Totals ────────────────────────────────────────────────


class TestRecompute:
    @pytest.mark.asyncio
    async def test_counts_all_statuses_sums_delivered(self, db_session, make_driver, make_delivery):
        driver = await make_driver()
        other = await make_driver(full_name="Other")
        await make_delivery(driver, fee="150", driver_earning=Decimal("100"), company_earning=Decimal("50"))
        await make_delivery(driver, fee="200", status=DeliveryStatus.CANCELLED)
        await make_delivery(driver, fee="90", status=DeliveryStatus.PENDING)
        await make_delivery(other, fee="999", driver_earning=Decimal("600"), company_earning=Decimal("399"))

        totals = await ReconciliationEngine(db_session).recompute_driver_totals(driver.id)

        assert totals == DriverTotals(
            total_deliveries=3,
            completed_deliveries=1,
            total_earnings=Decimal("100.00"),
        )

    @pytest.mark.asyncio
    async def test_driver_without_deliveries(self, db_session, make_driver):
        driver = await make_driver()
        totals = await ReconciliationEngine(db_session).recompute_driver_totals(driver.id)

        assert totals.total_deliveries == 0
        assert totals.completed_deliveries == 0
        assert totals.total_earnings == Decimal("0")

    @pytest.mark.asyncio
    async def test_persist_unknown_driver(self, db_session):
        totals = DriverTotals(0, 0, Decimal("0"))
        with pytest.raises(DriverNotFound):
            await ReconciliationEngine(db_session).persist_driver_totals(77, totals)


class TestValidateAndFix:
    async def _drifted_driver(self, make_driver, make_delivery):
        driver = await make_driver(
            total_deliveries=3,
            completed_deliveries=3,
            total_earnings=Decimal("500"),
        )
        await make_delivery(driver, fee="150", driver_earning=Decimal("100"), company_earning=Decimal("50"))
        await make_delivery(driver, fee="200", driver_earning=Decimal("150"), company_earning=Decimal("50"))
        missing = await make_delivery(driver, fee="80")
        return driver, missing

    @pytest.mark.asyncio
    async def test_report_flags_drift_and_missing_earnings(self, db_session, make_driver, make_delivery):
        driver, missing = await self._drifted_driver(make_driver, make_delivery)

        report = await ReconciliationEngine(db_session).validate(driver.id)

        assert not report.is_valid
        assert report.mismatched_fields == ["total_earnings"]
        assert report.stored.total_earnings == Decimal("500.00")
        assert report.actual.total_earnings == Decimal("250.00")
        assert report.missing_earnings_delivery_ids == [missing.id]

    @pytest.mark.asyncio
    async def test_fix_overwrites_with_recomputed_totals(self, db_session, make_driver, make_delivery):
        driver, _ = await self._drifted_driver(make_driver, make_delivery)

        result = await ReconciliationEngine(db_session).fix(driver.id, actor="alice")

        assert result.repaired
        assert not result.before.is_valid
        assert result.after.is_valid
        await db_session.refresh(driver)
        assert driver.total_earnings == Decimal("250")
        assert driver.totals_repair_count == 1
        assert driver.totals_repaired_at is not None

        log = (await db_session.execute(select(AuditLog))).scalar_one()
        assert log.action == AuditAction.DRIVER_TOTALS_REPAIRED
        assert log.actor == "alice"
        assert log.action_metadata["fields"] == ["total_earnings"]
        assert log.action_metadata["actual"]["total_earnings"] == "250.00"

    @pytest.mark.asyncio
    async def test_fix_is_idempotent(self, db_session, make_driver, make_delivery):
        driver, _ = await self._drifted_driver(make_driver, make_delivery)
        engine = ReconciliationEngine(db_session)

        await engine.fix(driver.id)
        second = await engine.fix(driver.id)

        assert not second.repaired
        assert second.before.is_valid
        await db_session.refresh(driver)
        assert driver.totals_repair_count == 1

    @pytest.mark.asyncio
    async def test_validate_unknown_driver(self, db_session):
        with pytest.raises(DriverNotFound):
            await ReconciliationEngine(db_session).validate(12345)

    @pytest.mark.asyncio
    async def test_stale_write_is_repaired(self, db_session, make_driver, make_delivery):
        """A handler that lost a race stored totals missing the newest delivery."""
        driver = await make_driver()
        engine = ReconciliationEngine(db_session)
        first = await make_delivery(driver, fee="100")
        await engine.on_delivery_delivered(first.id)
        stale = await engine.recompute_driver_totals(driver.id)

        second = await make_delivery(driver, fee="150")
        await engine.on_delivery_delivered(second.id)
        await engine.persist_driver_totals(driver.id, stale)

        assert not (await engine.validate(driver.id)).is_valid

        await engine.fix(driver.id)

        report = await engine.validate(driver.id)
        assert report.is_valid
        assert report.stored.completed_deliveries == 2
        assert report.stored.total_earnings == Decimal("168.00")


# ── Sweeps ────────────────────────────────────────────────


class TestSweeps:
    @pytest.mark.asyncio
    async def test_validate_all_changes_nothing(self, db_session, make_driver, make_delivery):
        good = await make_driver()
        bad = await make_driver(total_earnings=Decimal("10"))

        report = await ReconciliationEngine(db_session).validate_all()

        assert report.total_drivers == 2
        assert report.valid_drivers == 1
        assert report.invalid_drivers == 1
        assert report.repaired_drivers == 0
        await db_session.refresh(bad)
        assert bad.total_earnings == Decimal("10")
        assert {e.driver_id for e in report.entries} == {good.id, bad.id}

    @pytest.mark.asyncio
    async def test_fix_all_in_batches(self, db_session, make_driver):
        drivers = [await make_driver(total_deliveries=i) for i in range(5)]

        report = await ReconciliationEngine(db_session, batch_size=2).fix_all()

        assert report.total_drivers == 5
        assert report.repaired_drivers == 4
        assert report.failed_drivers == 0
        for driver in drivers:
            await db_session.refresh(driver)
            assert driver.total_deliveries == 0

    @pytest.mark.asyncio
    async def test_one_driver_failing_does_not_stop_sweep(self, db_session, make_driver, monkeypatch):
        first = await make_driver(total_deliveries=1)
        second = await make_driver(total_deliveries=1)
        # A rollback expires loaded instances
        first_id = first.id
        engine = ReconciliationEngine(db_session)
        original_fix = engine.fix

        async def flaky_fix(driver_id, actor="system"):
            if driver_id == first_id:
                raise OperationalError("SELECT", {}, Exception("connection reset"))
            return await original_fix(driver_id, actor)

        monkeypatch.setattr(engine, "fix", flaky_fix)
        report = await engine.fix_all()

        assert report.failed_drivers == 1
        assert report.repaired_drivers == 1
        failed = [e for e in report.entries if e.error]
        assert failed[0].driver_id == first_id
        await db_session.refresh(second)
        assert second.total_deliveries == 0


# ── Delivered event ───────────────────────────────────────


class TestOnDeliveryDelivered:
    @pytest.mark.asyncio
    async def test_full_flow(self, db_session, make_driver, make_delivery):
        await _activate(db_session, SAMPLE_RULES)
        driver = await make_driver()
        delivery = await make_delivery(driver, fee="150")

        outcome = await ReconciliationEngine(db_session).on_delivery_delivered(delivery.id)

        assert outcome.succeeded
        assert outcome.driver_id == driver.id
        assert set(outcome.steps) == {"ensure_earnings", "refresh_totals", "validate"}
        assert not outcome.repaired
        await db_session.refresh(driver)
        assert driver.completed_deliveries == 1
        assert driver.total_earnings == Decimal("101")

    @pytest.mark.asyncio
    async def test_repeated_events_converge(self, db_session, make_driver, make_delivery):
        driver = await make_driver()
        delivery = await make_delivery(driver, fee="100")
        engine = ReconciliationEngine(db_session)

        for _ in range(3):
            await engine.on_delivery_delivered(delivery.id)

        await db_session.refresh(driver)
        assert driver.total_deliveries == 1
        assert driver.total_earnings == Decimal("67")

    @pytest.mark.asyncio
    async def test_missing_delivery_is_reported_not_raised(self, db_session):
        outcome = await ReconciliationEngine(db_session).on_delivery_delivered(999)

        assert not outcome.succeeded
        assert outcome.steps["ensure_earnings"].startswith("failed: Delivery not found")
        assert outcome.driver_id is None

    @pytest.mark.asyncio
    async def test_totals_refreshed_even_if_earnings_fail(self, db_session, make_driver, make_delivery):
        driver = await make_driver()
        delivery = await make_delivery(driver, status=DeliveryStatus.PICKED_UP)

        outcome = await ReconciliationEngine(db_session).on_delivery_delivered(delivery.id)

        assert outcome.steps["ensure_earnings"].startswith("failed")
        assert outcome.steps["refresh_totals"] == "ok"
        assert outcome.steps["validate"] == "ok"
        await db_session.refresh(driver)
        assert driver.total_deliveries == 1
        assert driver.completed_deliveries == 0

    @pytest.mark.asyncio
    async def test_database_errors_are_retried(self, db_session, make_driver, make_delivery, monkeypatch):
        driver = await make_driver()
        delivery = await make_delivery(driver, fee="100")
        engine = ReconciliationEngine(db_session, step_attempts=2)
        original = engine.refresh_driver_totals
        calls = []

        async def flaky(driver_id):
            calls.append(driver_id)
            if len(calls) == 1:
                raise OperationalError("UPDATE", {}, Exception("deadlock"))
            return await original(driver_id)

        monkeypatch.setattr(engine, "refresh_driver_totals", flaky)
        outcome = await engine.on_delivery_delivered(delivery.id)

        assert len(calls) == 2
        assert outcome.succeeded

    @pytest.mark.asyncio
    async def test_persistent_failure_is_logged(self, db_session, make_driver, make_delivery, monkeypatch, caplog):
        driver = await make_driver()
        delivery = await make_delivery(driver, fee="100")
        delivery_id, driver_id = delivery.id, driver.id
        engine = ReconciliationEngine(db_session, step_attempts=2)

        async def broken(driver_id):
            raise OperationalError("UPDATE", {}, Exception("database is down"))

        monkeypatch.setattr(engine, "refresh_driver_totals", broken)
        with caplog.at_level("ERROR"):
            outcome = await engine.on_delivery_delivered(delivery_id)

        assert outcome.steps["refresh_totals"].startswith("failed")
        # The validation pass still repairs the totals
        assert outcome.steps["validate"] == "ok"
        assert outcome.repaired
        assert f"Delivery {delivery_id} (driver {driver_id})" in caplog.text


# ── Bulk recalculation ────────────────────────────────────


class TestBulkRecalculate:
    @pytest.mark.asyncio
    async def test_one_missing_of_five(self, db_session, make_driver, make_delivery):
        rule_set = await _activate(db_session, SAMPLE_RULES)
        driver = await make_driver()
        deliveries = [await make_delivery(driver, fee="150") for _ in range(4)]
        ids = [d.id for d in deliveries] + [9999]

        results = await ReconciliationEngine(db_session).bulk_recalculate(ids, rule_set.id)

        assert len(results) == 5
        assert sum(1 for r in results if r.success) == 4
        failure = [r for r in results if not r.success][0]
        assert failure.delivery_id == 9999
        assert failure.error == "Delivery not found"

    @pytest.mark.asyncio
    async def test_overwrites_earnings_and_refreshes_totals(self, db_session, make_driver, make_delivery):
        driver = await make_driver()
        delivery = await make_delivery(
            driver,
            fee="150",
            driver_earning=Decimal("10"),
            company_earning=Decimal("140"),
            earnings_rule_set_version=0,
        )
        store = ConfigStore(db_session)
        rule_set = await store.create(SAMPLE_RULES)

        results = await ReconciliationEngine(db_session).bulk_recalculate(
            [delivery.id], rule_set.id, actor="alice"
        )

        assert results[0].success
        assert results[0].driver_earning == Decimal("101")
        await db_session.refresh(delivery)
        assert delivery.earnings_rule_set_version == rule_set.version
        await db_session.refresh(driver)
        assert driver.total_earnings == Decimal("101")
        assert AuditAction.BULK_RECALCULATE in await _audit_actions(db_session)

    @pytest.mark.asyncio
    async def test_not_delivered_is_a_failure_entry(self, db_session, make_driver, make_delivery):
        delivery = await make_delivery(await make_driver(), status=DeliveryStatus.CANCELLED)

        results = await ReconciliationEngine(db_session).bulk_recalculate([delivery.id])

        assert not results[0].success
        assert "not in delivered status" in results[0].error

    @pytest.mark.asyncio
    async def test_unknown_rule_set(self, db_session):
        with pytest.raises(ConfigNotFound):
            await ReconciliationEngine(db_session).bulk_recalculate([1], rule_set_id=555)

    @pytest.mark.asyncio
    async def test_refused_fee_does_not_abort_batch(self, db_session, make_driver, make_delivery, monkeypatch):
        driver = await make_driver()
        refused = await make_delivery(driver, fee="13")
        good = await make_delivery(driver, fee="100")
        ids = [refused.id, good.id]
        real_split = reconciliation.compute_split

        def picky_split(fee, rules):
            if fee == Decimal("13"):
                raise ValueError("fee must be >= 0")
            return real_split(fee, rules)

        monkeypatch.setattr(reconciliation, "compute_split", picky_split)

        results = await ReconciliationEngine(db_session).bulk_recalculate(ids)

        assert [r.success for r in results] == [False, True]
        assert results[0].error == "fee must be >= 0"
        await db_session.refresh(driver)
        assert driver.total_earnings == Decimal("67")
        assert AuditAction.BULK_RECALCULATE in await _audit_actions(db_session)

    @pytest.mark.asyncio
    async def test_negative_fee_cannot_be_stored(self, db_session):
        db_session.add(Delivery(fee=Decimal("-5"), status=DeliveryStatus.DELIVERED))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()
