"""Acceptance and rent payment reconciliation."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from lease_engine.core.concurrency import StaleWriteError
from lease_engine.core.errors import (
    ConcurrencyError,
    ConflictError,
    DeadlineExpiredError,
    OverpaymentError,
    ValidationError,
)
from lease_engine.models.enums import (
    LeaseStatus,
    NotificationEvent,
    PaymentType,
    ScheduleItemStatus,
)
from lease_engine.models.payment import Payment
from lease_engine.models.schedule import RentScheduleItem
from lease_engine.services import payments as payments_module
from lease_engine.services.schedule import RentScheduleService

from conftest import START

pytestmark = pytest.mark.anyio


async def _payment_count(session_factory, lease_id) -> int:
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(Payment).where(Payment.lease_id == lease_id))
        return result.scalar_one()


async def _items(session_factory, clock, settings, lease_id) -> list[RentScheduleItem]:
    async with session_factory() as db:
        return await RentScheduleService(db, clock, settings).list_schedule(lease_id)


# ==============================================================
# Acceptance payment
# ==============================================================

async def test_full_acceptance_payment_activates(world, session_factory, clock, settings):
    lease = await world.accept(await world.create())
    result = await world.pay_acceptance(lease, 400_000)

    assert result.replayed is False
    assert result.payment.type == PaymentType.ACCEPTANCE
    assert result.lease.status == LeaseStatus.ACTIVE
    assert result.lease.deposit_paid and result.lease.first_rent_paid
    assert result.lease.activated_at == START
    assert len(await _items(session_factory, clock, settings, lease.id)) == 12


async def test_partial_acceptance_payments_activate_only_when_complete(world, session_factory, clock, settings):
    lease = await world.accept(await world.create())

    first = await world.pay_acceptance(lease, 150_000)
    assert first.lease.status == LeaseStatus.AWAITING_PAYMENT
    assert not first.lease.deposit_paid

    second = await world.pay_acceptance(lease, 100_000)
    assert second.lease.status == LeaseStatus.AWAITING_PAYMENT
    assert second.lease.deposit_paid and not second.lease.first_rent_paid
    assert await _items(session_factory, clock, settings, lease.id) == []

    third = await world.pay_acceptance(lease, 150_000)
    assert third.lease.status == LeaseStatus.ACTIVE
    assert third.lease.total_paid_on_acceptance_cents == 400_000

    first_period = (await _items(session_factory, clock, settings, lease.id))[0]
    assert first_period.status == ScheduleItemStatus.PAID
    assert first_period.payment_id == third.payment.id


async def test_acceptance_idempotency_key_credits_once(world, collaborators, dispatcher):
    lease = await world.accept(await world.create())

    first = await world.pay_acceptance(lease, 100_000, key="pay-1")
    replay = await world.pay_acceptance(lease, 100_000, key="pay-1")

    assert replay.replayed is True
    assert replay.payment.id == first.payment.id
    assert replay.lease.total_paid_on_acceptance_cents == 100_000

    await dispatcher.drain()
    assert len(collaborators.notifications.of(NotificationEvent.PAYMENT_RECEIVED)) == 1


async def test_idempotency_key_reused_for_different_amount(world):
    lease = await world.accept(await world.create())
    await world.pay_acceptance(lease, 100_000, key="pay-1")
    with pytest.raises(ConflictError):
        await world.pay_acceptance(lease, 120_000, key="pay-1")


async def test_acceptance_overpayment_rejected(world, session_factory):
    lease = await world.accept(await world.create())
    await world.pay_acceptance(lease, 300_000)
    with pytest.raises(OverpaymentError):
        await world.pay_acceptance(lease, 100_001)

    assert (await world.reload(lease.id)).total_paid_on_acceptance_cents == 300_000
    assert await _payment_count(session_factory, lease.id) == 1


async def test_acceptance_payment_requires_positive_amount(world):
    lease = await world.accept(await world.create())
    with pytest.raises(ValidationError):
        await world.pay_acceptance(lease, 0)


async def test_acceptance_payment_before_accept_conflicts(world):
    lease = await world.create()
    with pytest.raises(ConflictError):
        await world.pay_acceptance(lease, 400_000)


async def test_acceptance_payment_after_deadline(world, clock, session_factory):
    lease = await world.accept(await world.create())
    clock.set(START + timedelta(hours=48, seconds=1))

    with pytest.raises(DeadlineExpiredError):
        await world.pay_acceptance(lease, 400_000)

    reloaded = await world.reload(lease.id)
    assert reloaded.status == LeaseStatus.AWAITING_PAYMENT
    assert reloaded.total_paid_on_acceptance_cents == 0
    assert await _payment_count(session_factory, lease.id) == 0


async def test_losing_writer_revalidates_against_fresh_state(world, session_factory, monkeypatch):
    """A payment that loses the CAS race re-reads the lease and re-checks the balance."""
    lease = await world.accept(await world.create())
    original_load = payments_module.load_lease
    raced = False

    async def load_then_race(db, lease_id):
        nonlocal raced
        loaded = await original_load(db, lease_id)
        if not raced:
            raced = True
            # A concurrent payment commits after we read but before we write
            async with session_factory() as other:
                await world.reconciler(other).apply_acceptance_payment(
                    lease_id, 200_000, "card", None, world.tenant(lease)
                )
        return loaded

    monkeypatch.setattr(payments_module, "load_lease", load_then_race)

    with pytest.raises(OverpaymentError):
        await world.pay_acceptance(lease, 300_000)

    reloaded = await world.reload(lease.id)
    assert reloaded.total_paid_on_acceptance_cents == 200_000
    assert reloaded.version == 3
    assert await _payment_count(session_factory, lease.id) == 1


# ==============================================================
# Rent schedule payments
# ==============================================================

async def test_partial_payment_sequence(world, session_factory, clock, settings):
    lease = await world.active(rent=100_000, deposit=100_000)
    clock.set(datetime(2024, 1, 31, 9, 0))
    item = (await _items(session_factory, clock, settings, lease.id))[1]
    assert item.status == ScheduleItemStatus.DUE

    async with session_factory() as db:
        first = await world.reconciler(db).pay_schedule_item(lease.id, item.id, 40_000, "ach", world.tenant(lease))
    assert first.item.status == ScheduleItemStatus.PARTIAL
    assert first.item.amount_paid_cents == 40_000
    assert first.item.paid_at is None

    async with session_factory() as db:
        second = await world.reconciler(db).pay_schedule_item(lease.id, item.id, 60_000, "ach", world.tenant(lease))
    assert second.item.status == ScheduleItemStatus.PAID
    assert second.item.amount_paid_cents == 100_000
    assert second.item.payment_id == second.payment.id
    assert second.item.paid_at == datetime(2024, 1, 31, 9, 0)

    async with session_factory() as db:
        with pytest.raises(OverpaymentError):
            await world.reconciler(db).pay_schedule_item(lease.id, item.id, 100, "ach", world.tenant(lease))


async def test_overdue_item_paid_in_full_becomes_paid(world, session_factory, clock, settings):
    lease = await world.active()
    clock.set(datetime(2024, 2, 7, 9, 0))
    item = (await _items(session_factory, clock, settings, lease.id))[1]
    assert item.status == ScheduleItemStatus.OVERDUE

    async with session_factory() as db:
        result = await world.reconciler(db).pay_schedule_item(
            lease.id, item.id, 200_000, "card", world.tenant(lease)
        )
    assert result.item.status == ScheduleItemStatus.PAID
    # The late fee stays on the item for an ad-hoc LATE_FEE payment
    assert result.item.late_fee_amount_cents == 10_000


async def test_schedule_payment_idempotent(world, session_factory, clock, settings):
    lease = await world.active()
    item = (await _items(session_factory, clock, settings, lease.id))[1]

    async with session_factory() as db:
        first = await world.reconciler(db).pay_schedule_item(
            lease.id, item.id, 50_000, "card", world.tenant(lease), idempotency_key="rent-1"
        )
    async with session_factory() as db:
        replay = await world.reconciler(db).pay_schedule_item(
            lease.id, item.id, 50_000, "card", world.tenant(lease), idempotency_key="rent-1"
        )

    assert replay.replayed and replay.payment.id == first.payment.id
    assert replay.item.amount_paid_cents == 50_000



async def test_concurrent_partial_payments_cannot_overpay_an_item(world, session_factory, clock, settings, monkeypatch):
    lease = await world.active()
    clock.set(datetime(2024, 1, 31, 9, 0))
    item = (await _items(session_factory, clock, settings, lease.id))[1]
    original_load = payments_module.load_schedule_item
    raced = False

    async def load_then_race(db, lease_id, item_id):
        nonlocal raced
        loaded = await original_load(db, lease_id, item_id)
        if not raced:
            raced = True
            # Another partial payment on the same period commits in between
            async with session_factory() as other:
                await world.reconciler(other).pay_schedule_item(
                    lease_id, item_id, 150_000, "ach", world.tenant(lease)
                )
        return loaded

    monkeypatch.setattr(payments_module, "load_schedule_item", load_then_race)

    with pytest.raises(OverpaymentError):
        async with session_factory() as db:
            await world.reconciler(db).pay_schedule_item(lease.id, item.id, 100_000, "card", world.tenant(lease))

    after = (await _items(session_factory, clock, settings, lease.id))[1]
    assert after.amount_paid_cents == 150_000
    assert after.status == ScheduleItemStatus.PARTIAL
    async with session_factory() as db:
        result = await db.execute(
            select(func.count()).select_from(Payment).where(Payment.schedule_item_id == item.id)
        )
        assert result.scalar_one() == 1


async def test_cas_that_always_loses_exhausts_retries(world, session_factory, settings, monkeypatch):
    lease = await world.accept(await world.create())
    attempts = 0

    async def always_stale(db, instance, **values):
        nonlocal attempts
        attempts += 1
        raise StaleWriteError(f"leases:{instance.id}@{instance.version}")

    monkeypatch.setattr(payments_module, "compare_and_swap", always_stale)

    with pytest.raises(ConcurrencyError):
        await world.pay_acceptance(lease, 100_000)

    assert attempts == settings.cas_max_retries
    reloaded = await world.reload(lease.id)
    assert reloaded.total_paid_on_acceptance_cents == 0
    assert await _payment_count(session_factory, lease.id) == 0


async def test_pay_waived_item_conflicts(world, session_factory, clock, settings):
    lease = await world.active()
    item = (await _items(session_factory, clock, settings, lease.id))[1]
    async with session_factory() as db:
        await RentScheduleService(db, clock, settings).waive(lease.id, item.id, "concession", world.landlord)

    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await world.reconciler(db).pay_schedule_item(lease.id, item.id, 100, "card", world.tenant(lease))


async def test_pay_item_requires_active_lease(world, session_factory, clock, settings):
    lease = await world.active()
    item = (await _items(session_factory, clock, settings, lease.id))[1]
    async with session_factory() as db:
        await world.machine(db).terminate(lease.id, world.landlord, "sold")

    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await world.reconciler(db).pay_schedule_item(lease.id, item.id, 100, "card", world.tenant(lease))


# ==============================================================
# Ad-hoc payments and ledger
# ==============================================================

async def test_log_late_fee_does_not_touch_schedule(world, session_factory, clock, settings):
    lease = await world.active()
    async with session_factory() as db:
        payment = await world.reconciler(db).log_ad_hoc_payment(
            lease.id, 10_000, PaymentType.LATE_FEE, "card", "January late fee", world.landlord
        )
    assert payment.type == PaymentType.LATE_FEE
    assert payment.schedule_item_id is None

    items = await _items(session_factory, clock, settings, lease.id)
    assert items[0].amount_paid_cents == 200_000
    assert all(i.amount_paid_cents == 0 for i in items[1:])


async def test_ad_hoc_allowed_after_termination(world, session_factory):
    lease = await world.active()
    async with session_factory() as db:
        await world.machine(db).terminate(lease.id, world.landlord, "damage")
    async with session_factory() as db:
        payment = await world.reconciler(db).log_ad_hoc_payment(
            lease.id, 35_000, PaymentType.MAINTENANCE_FEE, None, "Carpet cleaning", world.landlord
        )
    assert payment.amount_cents == 35_000


@pytest.mark.parametrize("payment_type", [PaymentType.RENT, PaymentType.ACCEPTANCE])
async def test_ad_hoc_rejects_scheduled_types(world, session_factory, payment_type):
    lease = await world.active()
    async with session_factory() as db:
        with pytest.raises(ValidationError):
            await world.reconciler(db).log_ad_hoc_payment(
                lease.id, 100, payment_type, None, None, world.landlord
            )


async def test_ad_hoc_requires_lease_that_was_active(world, session_factory):
    lease = await world.accept(await world.create())
    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await world.reconciler(db).log_ad_hoc_payment(
                lease.id, 100, PaymentType.OTHER, None, None, world.landlord
            )


async def test_list_payments_newest_first(world, session_factory, clock):
    lease = await world.accept(await world.create())
    await world.pay_acceptance(lease, 100_000)
    clock.advance(hours=1)
    await world.pay_acceptance(lease, 300_000)

    async with session_factory() as db:
        ledger = await world.reconciler(db).list_payments(lease.id)
    assert [p.amount_cents for p in ledger] == [300_000, 100_000]
