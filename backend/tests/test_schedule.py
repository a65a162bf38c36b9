"""Rent schedule generation, status derivation and waiving."""

import uuid
from datetime import date, datetime

import pytest

from lease_engine.core.errors import ConflictError, ValidationError
from lease_engine.core.security import Actor
from lease_engine.models.enums import ActorRole, NotificationEvent, ScheduleItemStatus
from lease_engine.models.lease import LeaseAgreement
from lease_engine.models.schedule import RentScheduleItem
from lease_engine.services.schedule import (
    RentScheduleService,
    SchedulePolicy,
    build_schedule,
    compute_late_fee,
    days_overdue,
    derive_status,
    period_count,
)

from conftest import RENT, START

POLICY = SchedulePolicy()


def _lease(start: date, end: date, rent: int = RENT) -> LeaseAgreement:
    return LeaseAgreement(
        id=uuid.uuid4(),
        start_date=start,
        end_date=end,
        rent_amount_cents=rent,
        security_deposit_cents=rent,
    )


def _item(**overrides) -> RentScheduleItem:
    values = dict(
        due_date=date(2024, 1, 1),
        grace_period_ends=date(2024, 1, 6),
        amount_due_cents=100_000,
        amount_paid_cents=0,
        status=ScheduleItemStatus.UPCOMING,
        late_fee_amount_cents=0,
        late_fee_applied=False,
    )
    values.update(overrides)
    return RentScheduleItem(**values)


# ==============================================================
# Pure helpers
# ==============================================================

@pytest.mark.parametrize(
    "start,end,expected",
    [
        (date(2024, 1, 1), date(2024, 12, 27), 12),  # 361 days, one-day stub absorbed
        (date(2024, 1, 1), date(2024, 12, 26), 12),  # exactly 12 x 30
        (date(2024, 1, 1), date(2024, 12, 28), 13),  # two-day stub is billed
        (date(2024, 1, 1), date(2024, 1, 11), 1),    # shorter than one period
        (date(2024, 1, 1), date(2024, 1, 31), 1),
    ],
)
def test_period_count(start, end, expected):
    assert period_count(start, end, POLICY) == expected


def test_period_count_rejects_empty_term():
    with pytest.raises(ValidationError):
        period_count(date(2024, 1, 1), date(2024, 1, 1), POLICY)


def test_period_count_without_stub_tolerance_is_plain_ceiling():
    strict = SchedulePolicy(stub_tolerance_days=0)
    assert period_count(date(2024, 1, 1), date(2024, 12, 27), strict) == 13


def test_late_fee_rounds_half_up():
    assert compute_late_fee(200_000, 500) == 10_000
    assert compute_late_fee(1_010, 500) == 51  # 50.5 -> 51
    assert compute_late_fee(1_009, 500) == 50
    assert compute_late_fee(100_000, 0) == 0


def test_build_schedule_layout():
    lease = _lease(date(2024, 1, 1), date(2024, 12, 27))
    items = build_schedule(lease, POLICY)

    assert [i.period_index for i in items] == list(range(12))
    assert items[0].period_start == date(2024, 1, 1)
    assert items[0].due_date == date(2024, 1, 1)
    assert items[0].grace_period_ends == date(2024, 1, 6)
    assert items[1].period_start == date(2024, 1, 31)
    assert items[-1].period_start == date(2024, 11, 26)
    # Final period absorbs the stub and ends on the lease end date
    assert items[-1].period_end == date(2024, 12, 27)
    assert all(i.status == ScheduleItemStatus.UPCOMING for i in items)


@pytest.mark.parametrize(
    "start,end",
    [
        (date(2024, 1, 1), date(2024, 12, 27)),
        (date(2024, 3, 15), date(2025, 3, 15)),
        (date(2024, 2, 1), date(2024, 2, 20)),
    ],
)
def test_schedule_sum_matches_rent_times_periods(start, end):
    lease = _lease(start, end, rent=123_456)
    items = build_schedule(lease, POLICY)
    assert sum(i.amount_due_cents for i in items) == 123_456 * period_count(start, end, POLICY)


def test_derive_status_precedence():
    today = date(2024, 1, 3)
    assert derive_status(_item(), date(2023, 12, 31), RENT, POLICY).status == ScheduleItemStatus.UPCOMING
    assert derive_status(_item(), today, RENT, POLICY).status == ScheduleItemStatus.DUE
    assert derive_status(_item(amount_paid_cents=1), today, RENT, POLICY).status == ScheduleItemStatus.PARTIAL
    assert derive_status(_item(amount_paid_cents=100_000), today, RENT, POLICY).status == ScheduleItemStatus.PAID

    waived = _item(status=ScheduleItemStatus.WAIVED, amount_due_cents=0)
    assert derive_status(waived, date(2024, 3, 1), RENT, POLICY).status == ScheduleItemStatus.WAIVED


def test_derive_overdue_applies_fee_once():
    state = derive_status(_item(amount_paid_cents=10), date(2024, 1, 7), RENT, POLICY)
    assert state.status == ScheduleItemStatus.OVERDUE
    assert state.late_fee_amount_cents == 10_000
    assert state.late_fee_applied

    already = _item(late_fee_amount_cents=7_777, late_fee_applied=True)
    again = derive_status(already, date(2024, 2, 1), RENT, POLICY)
    assert again.late_fee_amount_cents == 7_777


def test_grace_day_itself_is_not_overdue():
    state = derive_status(_item(), date(2024, 1, 6), RENT, POLICY)
    assert state.status == ScheduleItemStatus.DUE


def test_days_overdue():
    assert days_overdue(_item(status=ScheduleItemStatus.OVERDUE), date(2024, 1, 11)) == 10
    assert days_overdue(_item(status=ScheduleItemStatus.DUE), date(2024, 1, 3)) is None


# ==============================================================
# Service
# ==============================================================


@pytest.mark.anyio
async def test_activation_generates_twelve_items(world, session_factory, clock, settings):
    lease = await world.active()

    async with session_factory() as db:
        items = await RentScheduleService(db, clock, settings).list_schedule(lease.id)

    assert len(items) == 12
    assert all(i.amount_due_cents == 200_000 for i in items)
    assert sum(i.amount_due_cents for i in items) == 200_000 * 12


@pytest.mark.anyio
async def test_first_period_is_credited_by_acceptance_payment(world, session_factory, clock, settings):
    lease = await world.accept(await world.create())
    result = await world.pay_acceptance(lease, 400_000)

    clock.set(datetime(2024, 1, 8, 9, 0))  # past the first grace period
    async with session_factory() as db:
        items = await RentScheduleService(db, clock, settings).list_schedule(lease.id)

    first = items[0]
    assert first.status == ScheduleItemStatus.PAID
    assert first.amount_due_cents == RENT
    assert first.amount_paid_cents == RENT
    assert first.paid_at == START
    assert first.payment_id == result.payment.id
    assert first.late_fee_applied is False
    assert all(i.amount_paid_cents == 0 for i in items[1:])
    # Rent still owed through the schedule excludes the month already collected
    assert sum(i.amount_due_cents - i.amount_paid_cents for i in items) == RENT * 11


@pytest.mark.anyio
async def test_generate_twice_conflicts(world, session_factory, clock, settings):
    lease = await world.active()

    async with session_factory() as db:
        service = RentScheduleService(db, clock, settings)
        with pytest.raises(ConflictError):
            await service.generate(await world.machine(db).get_lease(lease.id))


@pytest.mark.anyio
async def test_overdue_late_fee_not_doubled(world, session_factory, clock, settings, collaborators, dispatcher):
    lease = await world.active()

    clock.set(datetime(2024, 2, 6, 12, 0))  # D+6 for the second period
    async with session_factory() as db:
        second = (await RentScheduleService(db, clock, settings).list_schedule(lease.id))[1]
    assert second.status == ScheduleItemStatus.OVERDUE
    assert second.late_fee_amount_cents == 10_000
    assert second.amount_due_cents == 200_000

    clock.set(datetime(2024, 2, 10, 12, 0))  # D+10
    async with session_factory() as db:
        again = (await RentScheduleService(db, clock, settings).list_schedule(lease.id))[1]
    assert again.status == ScheduleItemStatus.OVERDUE
    assert again.late_fee_amount_cents == 10_000

    await dispatcher.drain()
    due = collaborators.notifications.of(NotificationEvent.PAYMENT_DUE)
    assert len(due) == 1
    assert due[0]["schedule_item_id"] == str(second.id)


@pytest.mark.anyio
async def test_current_item_is_earliest_unsettled(world, session_factory, clock, settings):
    lease = await world.active()

    async with session_factory() as db:
        service = RentScheduleService(db, clock, settings)
        items = await service.list_schedule(lease.id)
        # First month was settled by the acceptance payment
        assert (await service.current_item(lease.id)).id == items[1].id

        await service.waive(lease.id, items[1].id, "move-in concession", world.landlord)
        current = await service.current_item(lease.id)

    assert current.id == items[2].id


@pytest.mark.anyio
async def test_waive_sets_due_to_paid_and_is_irreversible(world, session_factory, clock, settings):
    lease = await world.active()
    clock.set(datetime(2024, 1, 31, 9, 0))
    async with session_factory() as db:
        items = await RentScheduleService(db, clock, settings).list_schedule(lease.id)
    target = items[1]

    async with session_factory() as db:
        await world.reconciler(db).pay_schedule_item(lease.id, target.id, 50_000, "card", world.tenant(lease))

    async with session_factory() as db:
        service = RentScheduleService(db, clock, settings)
        waived = await service.waive(lease.id, target.id, "hardship", world.landlord)
        assert waived.status == ScheduleItemStatus.WAIVED
        assert waived.amount_due_cents == 50_000
        assert waived.amount_paid_cents == 50_000

        with pytest.raises(ConflictError):
            await service.waive(lease.id, target.id, "again", world.landlord)

    # Still WAIVED long after the grace period
    clock.set(datetime(2024, 3, 15, 9, 0))
    async with session_factory() as db:
        items = await RentScheduleService(db, clock, settings).list_schedule(lease.id)
    assert items[1].status == ScheduleItemStatus.WAIVED
    assert items[1].late_fee_applied is False

    # Sum invariant holds over non-waived items
    non_waived = [i for i in items if i.status != ScheduleItemStatus.WAIVED]
    assert sum(i.amount_due_cents for i in non_waived) == 200_000 * len(non_waived)


@pytest.mark.anyio
async def test_waive_paid_item_conflicts(world, session_factory, clock, settings):
    lease = await world.active()
    async with session_factory() as db:
        items = await RentScheduleService(db, clock, settings).list_schedule(lease.id)
    async with session_factory() as db:
        await world.reconciler(db).pay_schedule_item(lease.id, items[1].id, 200_000, "card", world.tenant(lease))

    for paid in (items[0], items[1]):
        async with session_factory() as db:
            with pytest.raises(ConflictError):
                await RentScheduleService(db, clock, settings).waive(lease.id, paid.id, "late", world.landlord)


@pytest.mark.anyio
async def test_waive_requires_reason_and_active_lease(world, session_factory, clock, settings):
    lease = await world.active()
    async with session_factory() as db:
        items = await RentScheduleService(db, clock, settings).list_schedule(lease.id)
        service = RentScheduleService(db, clock, settings)
        with pytest.raises(ValidationError):
            await service.waive(lease.id, items[0].id, "  ", world.landlord)

    async with session_factory() as db:
        await world.machine(db).terminate(lease.id, world.landlord, "sold")

    async with session_factory() as db:
        with pytest.raises(ConflictError):
            await RentScheduleService(db, clock, settings).waive(
                lease.id, items[1].id, "goodwill", Actor(id=uuid.uuid4(), role=ActorRole.MANAGER)
            )
