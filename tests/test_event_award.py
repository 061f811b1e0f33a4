from datetime import timedelta

import pytest
from sqlalchemy import select, func

from campus_points.models import Role, Transaction, TransactionType, EventGuest, EventOrganizer
from campus_points.models.transaction import EventAward
from campus_points.services.errors import (
    ConflictError,
    InsufficientEventBudgetError,
    NotFoundError,
    NotGuestError,
    PermissionDeniedError,
    ValidationError,
)
from campus_points.services.event_allocator import EventPointsAllocator
from campus_points.services.points_ledger import PointsLedger


async def _event_transaction_count(db):
    result = await db.execute(
        select(func.count(Transaction.id)).where(Transaction.type == TransactionType.EVENT.value)
    )
    return result.scalar()


@pytest.mark.anyio
async def test_bulk_award_over_budget_fails_entirely(db, make_user, make_event, manager):
    guests = [await make_user() for _ in range(4)]
    event = await make_event(total_points=100, guests=guests)

    with pytest.raises(InsufficientEventBudgetError):
        await EventPointsAllocator(db).award_points(event.id, manager.id, 30)

    assert event.points_remain == 100
    assert event.points_awarded == 0
    assert await _event_transaction_count(db) == 0
    assert all(guest.points_balance == 0 for guest in guests)


@pytest.mark.anyio
async def test_bulk_award_pays_every_guest(db, make_user, make_event, manager):
    guests = [await make_user() for _ in range(4)]
    event = await make_event(total_points=100, guests=guests)

    transactions = await EventPointsAllocator(db).award_points(event.id, manager.id, 25)

    assert len(transactions) == 4
    assert {t.user_id for t in transactions} == {guest.id for guest in guests}
    assert all(t.related == EventAward(event.id) for t in transactions)
    assert event.points_remain == 0
    assert event.points_awarded == 100
    ledger = PointsLedger(db)
    for guest in guests:
        assert guest.points_balance == 25
        assert await ledger.verify_balance(guest.id) == 25


@pytest.mark.anyio
async def test_single_award_to_guest(db, make_user, make_event, manager):
    guest = await make_user()
    bystander = await make_user()
    event = await make_event(total_points=50, guests=[guest, bystander])

    transactions = await EventPointsAllocator(db).award_points(
        event.id, manager.id, 20, utorid=guest.utorid
    )

    assert [t.user_id for t in transactions] == [guest.id]
    assert transactions[0].remark == event.name
    assert guest.points_balance == 20
    assert bystander.points_balance == 0
    assert event.points_remain == 30
    assert event.points_awarded == 20


@pytest.mark.anyio
async def test_single_award_over_budget(db, make_user, make_event, manager):
    guest = await make_user()
    event = await make_event(total_points=10, guests=[guest])

    with pytest.raises(InsufficientEventBudgetError):
        await EventPointsAllocator(db).award_points(event.id, manager.id, 11, utorid=guest.utorid)
    assert event.points_remain == 10


@pytest.mark.anyio
async def test_award_to_non_guest(db, make_user, make_event, manager):
    outsider = await make_user()
    event = await make_event(total_points=50, guests=[await make_user()])

    with pytest.raises(NotGuestError):
        await EventPointsAllocator(db).award_points(event.id, manager.id, 5, utorid=outsider.utorid)


@pytest.mark.anyio
async def test_award_to_unknown_utorid_is_not_guest(db, make_user, make_event, manager):
    event = await make_event(total_points=50, guests=[await make_user()])

    with pytest.raises(NotGuestError):
        await EventPointsAllocator(db).award_points(event.id, manager.id, 5, utorid="nobody01")

    assert event.points_remain == 50


@pytest.mark.anyio
async def test_organizer_can_award(db, make_user, make_event):
    organizer = await make_user()
    guest = await make_user()
    event = await make_event(total_points=50, guests=[guest], organizers=[organizer])

    transactions = await EventPointsAllocator(db).award_points(event.id, organizer.id, 5)

    assert transactions[0].created_by == organizer.id
    assert guest.points_balance == 5


@pytest.mark.anyio
async def test_regular_user_cannot_award(db, make_user, make_event):
    stranger = await make_user()
    guest = await make_user()
    event = await make_event(total_points=50, guests=[guest])

    with pytest.raises(PermissionDeniedError):
        await EventPointsAllocator(db).award_points(event.id, stranger.id, 5)


@pytest.mark.anyio
async def test_bulk_award_without_guests(db, make_event, manager):
    event = await make_event(total_points=50)

    with pytest.raises(ValidationError):
        await EventPointsAllocator(db).award_points(event.id, manager.id, 5)


@pytest.mark.anyio
async def test_award_unknown_event(db, manager):
    with pytest.raises(NotFoundError):
        await EventPointsAllocator(db).award_points("missing", manager.id, 5)


@pytest.mark.anyio
async def test_budget_change_shifts_remaining(db, make_user, make_event, manager):
    guest = await make_user()
    event = await make_event(total_points=100, guests=[guest])
    allocator = EventPointsAllocator(db)
    await allocator.award_points(event.id, manager.id, 60)

    await allocator.set_total_points(manager, event.id, 150)
    assert (event.total_points, event.points_remain) == (150, 90)

    with pytest.raises(ValidationError):
        await allocator.set_total_points(manager, event.id, 50)
    assert (event.total_points, event.points_remain) == (150, 90)


@pytest.mark.anyio
async def test_budget_change_is_manager_only(db, make_user, make_event):
    organizer = await make_user()
    event = await make_event(organizers=[organizer])

    with pytest.raises(PermissionDeniedError):
        await EventPointsAllocator(db).set_total_points(organizer, event.id, 500)


@pytest.mark.anyio
async def test_add_guest(db, make_user, make_event):
    organizer = await make_user()
    newcomer = await make_user()
    event = await make_event(organizers=[organizer])
    allocator = EventPointsAllocator(db)

    added = await allocator.add_guest(organizer, event.id, newcomer.utorid)

    assert added.id == newcomer.id
    assert await allocator.is_guest(event.id, newcomer.id)
    with pytest.raises(ValidationError):
        await allocator.add_guest(organizer, event.id, newcomer.utorid)


@pytest.mark.anyio
async def test_organizer_cannot_be_guest(db, make_user, make_event, manager):
    organizer = await make_user()
    event = await make_event(organizers=[organizer])

    with pytest.raises(ValidationError):
        await EventPointsAllocator(db).add_guest(manager, event.id, organizer.utorid)


@pytest.mark.anyio
async def test_cannot_join_ended_event(db, make_user, make_event, manager):
    user = await make_user()
    event = await make_event(ended=True)

    with pytest.raises(ConflictError):
        await EventPointsAllocator(db).add_guest(manager, event.id, user.utorid)


@pytest.mark.anyio
async def test_full_event_rejects_guest(db, make_user, make_event, manager):
    event = await make_event(guests=[await make_user()], capacity=1)
    late = await make_user()

    with pytest.raises(ConflictError):
        await EventPointsAllocator(db).add_guest(manager, event.id, late.utorid)


@pytest.mark.anyio
async def test_regular_user_cannot_add_guest(db, make_user, make_event):
    stranger = await make_user()
    event = await make_event()

    with pytest.raises(PermissionDeniedError):
        await EventPointsAllocator(db).add_guest(stranger, event.id, stranger.utorid)


@pytest.mark.anyio
async def test_remove_guest(db, make_user, make_event, manager):
    guest = await make_user()
    event = await make_event(guests=[guest])
    allocator = EventPointsAllocator(db)

    await allocator.remove_guest(manager, event.id, guest.id)

    rows = await db.execute(select(EventGuest).where(EventGuest.event_id == event.id))
    assert rows.scalars().all() == []
    with pytest.raises(NotFoundError):
        await allocator.remove_guest(manager, event.id, guest.id)


@pytest.mark.anyio
async def test_add_organizer(db, make_user, make_event, manager):
    guest = await make_user()
    helper = await make_user()
    event = await make_event(guests=[guest])
    allocator = EventPointsAllocator(db)

    with pytest.raises(ValidationError):
        await allocator.add_organizer(manager, event.id, guest.utorid)

    await allocator.add_organizer(manager, event.id, helper.utorid)
    rows = await db.execute(select(EventOrganizer.user_id).where(EventOrganizer.event_id == event.id))
    assert rows.scalars().all() == [helper.id]


@pytest.mark.anyio
async def test_add_organizer_is_manager_only(db, make_user, make_event):
    cashier = await make_user(role=Role.CASHIER)
    helper = await make_user()
    event = await make_event()

    with pytest.raises(PermissionDeniedError):
        await EventPointsAllocator(db).add_organizer(cashier, event.id, helper.utorid)


@pytest.mark.anyio
async def test_create_event_funds_budget(db, manager, now):
    allocator = EventPointsAllocator(db, now=now)

    event = await allocator.create_event(
        manager,
        "Career Fair",
        now + timedelta(days=1),
        now + timedelta(days=1, hours=3),
        points=250,
        location="Hart House",
        capacity=40,
    )

    assert event.total_points == 250
    assert event.points_remain == 250
    assert event.points_awarded == 0
    assert await allocator.is_organizer(event.id, manager.id)


@pytest.mark.anyio
async def test_create_event_rejects_bad_input(db, make_user, manager, now):
    allocator = EventPointsAllocator(db, now=now)
    start = now + timedelta(days=1)

    with pytest.raises(ValidationError):
        await allocator.create_event(manager, "Past", now - timedelta(hours=1), now + timedelta(hours=1))
    with pytest.raises(ValidationError):
        await allocator.create_event(manager, "Backwards", start, start - timedelta(hours=1))
    with pytest.raises(ValidationError):
        await allocator.create_event(manager, "Negative", start, start + timedelta(hours=1), points=-5)
    with pytest.raises(ValidationError):
        await allocator.create_event(manager, "Empty", start, start + timedelta(hours=1), capacity=0)
    with pytest.raises(PermissionDeniedError):
        await allocator.create_event(
            await make_user(role=Role.CASHIER), "Cashier", start, start + timedelta(hours=1)
        )


@pytest.mark.anyio
async def test_created_event_can_award_its_guests(db, make_user, manager, now):
    allocator = EventPointsAllocator(db, now=now)
    event = await allocator.create_event(
        manager, "Trivia", now + timedelta(hours=1), now + timedelta(hours=4), points=30
    )
    guest = await make_user()
    await allocator.join(guest, event.id)

    await allocator.award_points(event.id, manager.id, 30)

    assert guest.points_balance == 30
    assert event.points_remain == 0
    assert await PointsLedger(db).verify_balance(guest.id) == 30


@pytest.mark.anyio
async def test_join_and_leave(db, make_user, make_event):
    user = await make_user()
    event = await make_event(capacity=1)
    allocator = EventPointsAllocator(db)

    await allocator.join(user, event.id)
    assert await allocator.is_guest(event.id, user.id)
    with pytest.raises(ValidationError):
        await allocator.join(user, event.id)
    with pytest.raises(ConflictError):
        await allocator.join(await make_user(), event.id)

    await allocator.leave(user, event.id)
    assert not await allocator.is_guest(event.id, user.id)
    with pytest.raises(NotFoundError):
        await allocator.leave(user, event.id)


@pytest.mark.anyio
async def test_cannot_join_or_leave_ended_event(db, make_user, make_event):
    guest = await make_user()
    event = await make_event(guests=[guest], ended=True)
    allocator = EventPointsAllocator(db)

    with pytest.raises(ConflictError):
        await allocator.join(await make_user(), event.id)
    with pytest.raises(ConflictError):
        await allocator.leave(guest, event.id)


@pytest.mark.anyio
async def test_organizer_cannot_join_as_guest(db, make_user, make_event):
    organizer = await make_user()
    event = await make_event(organizers=[organizer])

    with pytest.raises(ValidationError):
        await EventPointsAllocator(db).join(organizer, event.id)


@pytest.mark.anyio
async def test_remove_organizer(db, make_user, make_event, manager):
    organizer = await make_user()
    guest = await make_user()
    event = await make_event(guests=[guest], organizers=[organizer])
    allocator = EventPointsAllocator(db)

    with pytest.raises(PermissionDeniedError):
        await allocator.remove_organizer(organizer, event.id, organizer.id)

    await allocator.remove_organizer(manager, event.id, organizer.id)
    assert not await allocator.is_organizer(event.id, organizer.id)
    with pytest.raises(PermissionDeniedError):
        await allocator.award_points(event.id, organizer.id, 5)
    with pytest.raises(NotFoundError):
        await allocator.remove_organizer(manager, event.id, organizer.id)
