import pytest
from fastapi import Depends
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.main import app
from campus_points.models import Role, User, Event, EventGuest
from campus_points.routers import users as users_router
from campus_points.utils.expiring_store import get_expiring_store
from campus_points.utils.security import get_current_user
from campus_points.utils.timezone import utc_now_naive
from datetime import timedelta


class FakeStore:
    def __init__(self):
        self.counts = {}

    async def incr(self, key, ttl_seconds):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]


@pytest.fixture
async def seeded(session_factory):
    async with session_factory() as session:
        people = {
            "cashier": User(utorid="cashier1", name="Cashier", role=Role.CASHIER.value, verified_student=True),
            "manager": User(utorid="manager1", name="Manager", role=Role.MANAGER.value, verified_student=True),
            "alice": User(utorid="alice001", name="Alice", points_balance=30, verified_student=True),
            "bob": User(utorid="bob00001", name="Bob", points_balance=0, verified_student=True),
        }
        session.add_all(people.values())
        await session.commit()
        return {name: user.id for name, user in people.items()}


@pytest.fixture
async def client(session_factory, seeded):
    caller = {"id": seeded["cashier"]}

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_current_user(db: AsyncSession = Depends(get_db)):
        return await db.get(User, caller["id"])

    store = FakeStore()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    app.dependency_overrides[get_expiring_store] = lambda: store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        ac.caller = caller
        ac.users = seeded
        yield ac

    app.dependency_overrides.clear()


def _act_as(client, name):
    client.caller["id"] = client.users[name]


@pytest.mark.anyio
async def test_health(client):
    resp = await client.get("/api/v1/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.anyio
async def test_purchase_endpoint(client):
    resp = await client.post(
        "/api/v1/transactions",
        json={"type": "purchase", "utorid": "bob00001", "spent": "25.00", "remark": "coffee"},
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["earned"] == 100
    assert data["amount"] == 100
    assert data["utorid"] == "bob00001"
    assert data["status"] == "approved"
    assert data["suspicious"] is False
    assert data["created_by"] == client.users["cashier"]


@pytest.mark.anyio
async def test_regular_user_cannot_create_purchase(client):
    _act_as(client, "alice")

    resp = await client.post(
        "/api/v1/transactions",
        json={"type": "purchase", "utorid": "bob00001", "spent": "5.00"},
    )

    assert resp.status_code == 403
    assert resp.json()["status"] == "error"


@pytest.mark.anyio
async def test_unknown_transaction_type(client):
    resp = await client.post(
        "/api/v1/transactions",
        json={"type": "gift", "utorid": "bob00001", "spent": "5.00"},
    )

    assert resp.status_code == 400
    assert resp.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.anyio
async def test_redemption_over_balance_envelope(client):
    _act_as(client, "alice")

    resp = await client.post("/api/v1/users/me/transactions", json={"type": "redemption", "amount": 50})

    assert resp.status_code == 400
    body = resp.json()
    assert body == {
        "status": "error",
        "message": body["message"],
        "code": 400,
        "error_code": "INSUFFICIENT_BALANCE",
    }

    listing = await client.get("/api/v1/users/me/transactions")
    assert listing.json()["count"] == 0


@pytest.mark.anyio
async def test_redemption_then_processing(client):
    _act_as(client, "alice")
    created = await client.post("/api/v1/users/me/transactions", json={"type": "redemption", "amount": 20})
    assert created.status_code == 201
    transaction_id = created.json()["id"]
    assert created.json()["status"] == "pending"

    _act_as(client, "cashier")
    processed = await client.patch(
        f"/api/v1/transactions/{transaction_id}/processed", json={"processed": True}
    )
    assert processed.status_code == 200
    assert processed.json()["status"] == "approved"

    again = await client.patch(
        f"/api/v1/transactions/{transaction_id}/processed", json={"processed": True}
    )
    assert again.status_code == 409
    assert again.json()["error_code"] == "ALREADY_PROCESSED"


@pytest.mark.anyio
async def test_transfer_endpoint(client):
    _act_as(client, "alice")

    resp = await client.post(
        f"/api/v1/users/{client.users['bob']}/transactions",
        json={"type": "transfer", "amount": 10},
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["sender"] == "alice001"
    assert data["recipient"] == "bob00001"
    assert data["amount"] == 10


@pytest.mark.anyio
async def test_redemption_requests_are_rate_limited(client):
    _act_as(client, "alice")
    allowed = users_router.redemption_limiter.times

    for _ in range(allowed):
        resp = await client.post("/api/v1/users/me/transactions", json={"type": "redemption", "amount": 1})
        assert resp.status_code == 201

    blocked = await client.post("/api/v1/users/me/transactions", json={"type": "redemption", "amount": 1})
    assert blocked.status_code == 429


@pytest.mark.anyio
async def test_suspicious_toggle_endpoint(client):
    purchase = await client.post(
        "/api/v1/transactions",
        json={"type": "purchase", "utorid": "bob00001", "spent": "20.00"},
    )
    transaction_id = purchase.json()["id"]

    _act_as(client, "manager")
    held = await client.patch(
        f"/api/v1/transactions/{transaction_id}/suspicious", json={"suspicious": True}
    )
    assert held.status_code == 200
    assert held.json() == {"transaction_id": transaction_id, "suspicious": True, "new_balance": 0}

    cleared = await client.patch(
        f"/api/v1/transactions/{transaction_id}/suspicious", json={"suspicious": False}
    )
    assert cleared.json()["new_balance"] == 80


@pytest.mark.anyio
async def test_manager_listing_filters(client):
    await client.post("/api/v1/transactions", json={"type": "purchase", "utorid": "bob00001", "spent": "1.00"})
    await client.post("/api/v1/transactions", json={"type": "purchase", "utorid": "alice001", "spent": "9.00"})

    _act_as(client, "manager")
    resp = await client.get("/api/v1/transactions", params={"amount": 10, "operator": "gte"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 1
    assert data["results"][0]["utorid"] == "alice001"

    by_name = await client.get("/api/v1/transactions", params={"name": "bob"})
    assert by_name.json()["count"] == 1


@pytest.mark.anyio
async def test_transaction_detail_not_found(client):
    _act_as(client, "manager")

    resp = await client.get("/api/v1/transactions/missing")

    assert resp.status_code == 404
    assert resp.json()["error_code"] == "TRANSACTION_NOT_FOUND"


@pytest.mark.anyio
async def test_event_award_endpoint(client, session_factory):
    now = utc_now_naive()
    async with session_factory() as session:
        event = Event(
            name="Game Night",
            start_time=now - timedelta(hours=1),
            end_time=now + timedelta(hours=2),
            total_points=100,
            points_remain=100,
            points_awarded=0,
        )
        session.add(event)
        await session.flush()
        for name in ("alice", "bob"):
            session.add(EventGuest(event_id=event.id, user_id=client.users[name]))
        await session.commit()
        event_id = event.id

    _act_as(client, "manager")
    over = await client.post(f"/api/v1/events/{event_id}/transactions", json={"type": "event", "amount": 60})
    assert over.status_code == 400
    assert over.json()["error_code"] == "INSUFFICIENT_EVENT_BUDGET"

    resp = await client.post(f"/api/v1/events/{event_id}/transactions", json={"type": "event", "amount": 30})
    assert resp.status_code == 201
    data = resp.json()
    assert len(data["transaction_ids"]) == 2
    assert data["awarded"] == 60
    assert data["points_remain"] == 40


@pytest.mark.anyio
async def test_promotion_lifecycle_endpoints(client):
    _act_as(client, "manager")
    start = utc_now_naive() + timedelta(days=1)

    created = await client.post(
        "/api/v1/promotions",
        json={
            "name": "Welcome",
            "type": "one-time",
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(days=7)).isoformat(),
            "points": 25,
            "min_spending": "5.00",
        },
    )
    assert created.status_code == 201
    promotion_id = created.json()["id"]

    updated = await client.patch(f"/api/v1/promotions/{promotion_id}", json={"points": 30})
    assert updated.status_code == 200
    assert updated.json()["points"] == 30

    reset = await client.patch(f"/api/v1/promotions/{promotion_id}", json={"min_spending": None})
    assert reset.status_code == 200
    assert reset.json()["min_spend"] is None
    assert reset.json()["points"] == 30

    deleted = await client.delete(f"/api/v1/promotions/{promotion_id}")
    assert deleted.status_code == 204

    missing = await client.get(f"/api/v1/promotions/{promotion_id}")
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_event_lifecycle_endpoints(client):
    _act_as(client, "manager")
    start = utc_now_naive() + timedelta(hours=1)
    created = await client.post(
        "/api/v1/events",
        json={
            "name": "Board Games",
            "location": "Robarts",
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=3)).isoformat(),
            "points": 50,
        },
    )
    assert created.status_code == 201
    event = created.json()
    assert event["total_points"] == 50
    assert event["points_remain"] == 50

    _act_as(client, "alice")
    joined = await client.post(f"/api/v1/events/{event['id']}/guests/me")
    assert joined.status_code == 201
    assert joined.json()["utorid"] == "alice001"

    _act_as(client, "bob")
    assert (await client.post(f"/api/v1/events/{event['id']}/guests/me")).status_code == 201
    left = await client.delete(f"/api/v1/events/{event['id']}/guests/me")
    assert left.status_code == 204

    _act_as(client, "manager")
    award = await client.post(
        f"/api/v1/events/{event['id']}/transactions",
        json={"type": "event", "amount": 20, "utorid": "bob00001"},
    )
    assert award.status_code == 400
    assert award.json()["error_code"] == "NOT_GUEST"

    award = await client.post(f"/api/v1/events/{event['id']}/transactions", json={"type": "event", "amount": 20})
    assert award.status_code == 201
    assert award.json()["points_remain"] == 30

    removed = await client.delete(f"/api/v1/events/{event['id']}/organizers/{client.users['manager']}")
    assert removed.status_code == 204
    missing = await client.delete(f"/api/v1/events/{event['id']}/organizers/{client.users['manager']}")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "ORGANIZER_NOT_FOUND"
