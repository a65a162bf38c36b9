"""Deadline sweeper."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from lease_engine.core.errors import DeadlineExpiredError
from lease_engine.models.enums import LeaseStatus, NotificationEvent, PropertyStatus, ScheduleItemStatus
from lease_engine.models.payment import Payment
from lease_engine.services import payments as payments_module
from lease_engine.services.lease_state_machine import DEADLINE_TERMINATION_REASON
from lease_engine.services.schedule import RentScheduleService

from conftest import START

pytestmark = pytest.mark.anyio


async def test_sweep_before_deadline_does_nothing(world, sweeper, clock):
    lease = await world.accept(await world.create())
    clock.set(START + timedelta(hours=47, minutes=59))

    report = await sweeper.sweep_once()

    assert report.terminated == 0
    assert (await world.reload(lease.id)).status == LeaseStatus.AWAITING_PAYMENT


async def test_sweep_terminates_unpaid_lease_at_deadline(world, sweeper, clock, collaborators):
    lease = await world.accept(await world.create())
    await world.pay_acceptance(lease, 100_000)
    clock.set(START + timedelta(hours=48))

    report = await sweeper.sweep_once()

    assert report.terminated == 1
    reloaded = await world.reload(lease.id)
    assert reloaded.status == LeaseStatus.TERMINATED
    assert reloaded.termination_reason == DEADLINE_TERMINATION_REASON
    # Partial acceptance money stays on record
    assert reloaded.total_paid_on_acceptance_cents == 100_000

    assert (lease.property_id, PropertyStatus.AVAILABLE) in collaborators.properties.calls
    assert len(collaborators.notifications.of(NotificationEvent.LEASE_TERMINATED)) == 1


async def test_payment_after_deadline_fails_whether_or_not_swept(world, sweeper, clock):
    swept = await world.accept(await world.create())
    unswept = await world.accept(await world.create())
    clock.set(START + timedelta(hours=48, seconds=1))

    with pytest.raises(DeadlineExpiredError):
        await world.pay_acceptance(unswept, 400_000)

    await sweeper.sweep_once()
    with pytest.raises(DeadlineExpiredError):
        await world.pay_acceptance(swept, 400_000)
    with pytest.raises(DeadlineExpiredError):
        await world.pay_acceptance(unswept, 400_000)


async def test_sweep_is_idempotent(world, sweeper, clock, collaborators):
    lease = await world.accept(await world.create())
    clock.set(START + timedelta(hours=49))

    first = await sweeper.sweep_once()
    second = await sweeper.sweep_once()

    assert first.terminated == 1
    assert second.terminated == 0
    assert collaborators.properties.calls == [(lease.property_id, PropertyStatus.AVAILABLE)]


async def test_sweep_expires_lease_at_end_date(world, sweeper, clock):
    lease = await world.active()
    clock.set(datetime(2024, 12, 27, 0, 5))

    report = await sweeper.sweep_once()

    assert report.expired == 1
    assert (await world.reload(lease.id)).status == LeaseStatus.EXPIRED


async def test_sweep_persists_overdue_and_notifies_once(world, sweeper, clock, collaborators, session_factory, settings):
    lease = await world.active()
    clock.set(datetime(2024, 2, 6, 0, 0))

    report = await sweeper.sweep_once()
    # The first period was settled at activation and is not a candidate
    assert report.refreshed == 1
    await sweeper.sweep_once()

    async with session_factory() as db:
        items = await RentScheduleService(db, clock, settings).list_schedule(lease.id)
    assert items[0].status == ScheduleItemStatus.PAID
    assert items[1].status == ScheduleItemStatus.OVERDUE
    assert items[1].late_fee_amount_cents == 10_000
    assert items[2].status == ScheduleItemStatus.UPCOMING

    assert len(collaborators.notifications.of(NotificationEvent.PAYMENT_DUE)) == 1


async def test_sweep_continues_past_failing_candidate(world, sweeper, clock, monkeypatch):
    first = await world.accept(await world.create())
    second = await world.accept(await world.create())
    clock.set(START + timedelta(hours=50))

    from lease_engine.services.lease_state_machine import LeaseStateMachine

    original = LeaseStateMachine.on_deadline_expired

    async def flaky(self, lease_id):
        if lease_id == first.id:
            raise RuntimeError("database hiccup")
        return await original(self, lease_id)

    monkeypatch.setattr(LeaseStateMachine, "on_deadline_expired", flaky)
    report = await sweeper.sweep_once()

    assert report.failed == 1
    assert report.terminated == 1
    assert (await world.reload(first.id)).status == LeaseStatus.AWAITING_PAYMENT
    assert (await world.reload(second.id)).status == LeaseStatus.TERMINATED

    # Retried on the next tick
    monkeypatch.setattr(LeaseStateMachine, "on_deadline_expired", original)
    retry = await sweeper.sweep_once()
    assert retry.terminated == 1


async def test_payment_losing_race_to_sweeper_is_refused(world, sweeper, clock, session_factory, monkeypatch):
    lease = await world.accept(await world.create())
    deadline = START + timedelta(hours=48)
    just_before = deadline - timedelta(seconds=1)
    clock.set(just_before)
    original_load = payments_module.load_lease
    sweeps = []

    async def load_then_sweep(db, lease_id):
        loaded = await original_load(db, lease_id)
        if not sweeps:
            # The sweeper fires at the deadline after the payment has read the lease
            clock.set(deadline)
            sweeps.append(await sweeper.sweep_once())
            clock.set(just_before)
        return loaded

    monkeypatch.setattr(payments_module, "load_lease", load_then_sweep)

    with pytest.raises(DeadlineExpiredError):
        await world.pay_acceptance(lease, 400_000)

    assert sweeps[0].terminated == 1
    reloaded = await world.reload(lease.id)
    assert reloaded.status == LeaseStatus.TERMINATED
    assert reloaded.termination_reason == DEADLINE_TERMINATION_REASON
    assert reloaded.total_paid_on_acceptance_cents == 0
    assert reloaded.activated_at is None
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(Payment).where(Payment.lease_id == lease.id))
        assert result.scalar_one() == 0
