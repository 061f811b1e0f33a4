from decimal import Decimal

import pytest
from sqlalchemy import select, func

from campus_points.models import Transaction, TransactionStatus
from campus_points.models.transaction import RedeemedBy
from campus_points.services.errors import (
    AlreadyProcessedError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    UnverifiedUserError,
    ValidationError,
    WrongTypeError,
)
from campus_points.services.points_ledger import PointsLedger
from campus_points.services.transaction_factory import TransactionFactory


async def _transaction_count(db, user_id):
    result = await db.execute(
        select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
    )
    return result.scalar()


@pytest.mark.anyio
async def test_redemption_over_balance_creates_nothing(db, make_user):
    user = await make_user(points=30)

    with pytest.raises(InsufficientBalanceError):
        await TransactionFactory(db).create_redemption_request(user.id, 50)

    assert await _transaction_count(db, user.id) == 0
    assert user.points_balance == 30


@pytest.mark.anyio
async def test_redemption_request_leaves_balance_alone(db, make_user):
    user = await make_user(points=30)

    transaction = await TransactionFactory(db).create_redemption_request(user.id, 20, remark="mug")

    assert transaction.points == -20
    assert transaction.status == TransactionStatus.PENDING.value
    assert transaction.processed_by is None
    assert user.points_balance == 30


@pytest.mark.anyio
async def test_process_redemption_once(db, make_user, cashier):
    user = await make_user(points=30)
    factory = TransactionFactory(db)
    request = await factory.create_redemption_request(user.id, 20)

    processed = await factory.process_redemption(cashier.id, request.id)

    assert processed.status == TransactionStatus.APPROVED.value
    assert processed.processed_by == cashier.id
    assert processed.related == RedeemedBy(cashier.id)
    assert user.points_balance == 10
    assert await PointsLedger(db).verify_balance(user.id, opening_balance=30) == 10

    with pytest.raises(AlreadyProcessedError):
        await factory.process_redemption(cashier.id, request.id)
    assert user.points_balance == 10


@pytest.mark.anyio
async def test_process_redemption_rechecks_balance(db, make_user, cashier):
    user = await make_user(points=30)
    factory = TransactionFactory(db)
    first = await factory.create_redemption_request(user.id, 20)
    second = await factory.create_redemption_request(user.id, 20)
    await factory.process_redemption(cashier.id, first.id)

    with pytest.raises(InsufficientBalanceError):
        await factory.process_redemption(cashier.id, second.id)
    assert user.points_balance == 10


@pytest.mark.anyio
async def test_unverified_user_cannot_redeem(db, make_user):
    user = await make_user(points=30, verified=False)

    with pytest.raises(UnverifiedUserError):
        await TransactionFactory(db).create_redemption_request(user.id, 10)


@pytest.mark.anyio
@pytest.mark.parametrize("amount", [0, -5, True])
async def test_redemption_amount_must_be_positive(db, make_user, amount):
    user = await make_user(points=30)

    with pytest.raises(ValidationError):
        await TransactionFactory(db).create_redemption_request(user.id, amount)


@pytest.mark.anyio
async def test_only_redemptions_are_processed(db, make_user, cashier):
    customer = await make_user()
    factory = TransactionFactory(db)
    purchase = await factory.create_purchase(cashier.id, customer.utorid, Decimal("5.00"))

    with pytest.raises(WrongTypeError):
        await factory.process_redemption(cashier.id, purchase.transaction_id)


@pytest.mark.anyio
async def test_process_unknown_transaction(db, cashier):
    with pytest.raises(NotFoundError):
        await TransactionFactory(db).process_redemption(cashier.id, "missing")


@pytest.mark.anyio
async def test_regular_user_cannot_process(db, make_user):
    user = await make_user(points=30)
    factory = TransactionFactory(db)
    request = await factory.create_redemption_request(user.id, 10)

    with pytest.raises(PermissionDeniedError):
        await factory.process_redemption(user.id, request.id)
