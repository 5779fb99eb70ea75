"""Tests for the admin router: role gate, system-wide stats, audit listing."""

import datetime

from lynxa.auth.permissions import MANAGE_KEYS, READ, WRITE
from lynxa.core.config import settings
from lynxa.core.database import utcnow
from lynxa.models.audit import AuditLog
from lynxa.services import audit

from conftest import bearer


async def _admin_key(issue_key, admin_owner) -> str:
    raw_key, _ = await issue_key(name="admin", permissions=[READ], owner_id=admin_owner.id)
    return raw_key


async def test_non_admin_is_403(client, issue_key):
    raw_key, _ = await issue_key(permissions=[READ, WRITE, MANAGE_KEYS])

    dashboard = await client.get("/admin/dashboard", headers=bearer(raw_key))
    audit_log = await client.get("/admin/audit", headers=bearer(raw_key))

    assert dashboard.status_code == 403
    assert audit_log.status_code == 403
    assert dashboard.json()["detail"] == "Admin access required."


async def test_admin_needs_credentials(client):
    response = await client.get("/admin/dashboard")

    assert response.status_code == 401


async def test_dashboard_spans_every_owner(client, issue_key, owner, other_owner, admin_owner):
    admin_key = await _admin_key(issue_key, admin_owner)
    busy_key, _ = await issue_key(permissions=[WRITE])
    quiet_key, _ = await issue_key(permissions=[WRITE], owner_id=other_owner.id)

    for _ in range(3):
        await client.post("/v1/chat", json={"message": "hello"}, headers=bearer(busy_key))
    await client.post("/v1/chat", json={"message": "hello"}, headers=bearer(quiet_key))
    await client.post("/v1/chat", json={"message": ""}, headers=bearer(quiet_key))

    response = await client.get(
        "/admin/dashboard", params={"timeframe": "7d"}, headers=bearer(admin_key),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["timeframe"] == "7d"
    assert data["stats"]["total_requests"] == 5
    assert data["stats"]["error_requests"] == 1
    assert data["accounts"] == {"active_owners": 3, "new_owners": 3, "live_keys": 3}
    assert data["endpoints"][0]["endpoint"] == "/v1/chat"
    assert [(o["email"], o["requests"]) for o in data["top_owners"]] == [
        ("owner@example.com", 3),
        ("other@example.com", 2),
    ]


async def test_dashboard_shows_recent_audit(client, issue_key, owner, admin_owner):
    admin_key = await _admin_key(issue_key, admin_owner)
    manager_key, _ = await issue_key(permissions=[MANAGE_KEYS])
    await client.post("/keys", json={"name": "ci"}, headers=bearer(manager_key))

    response = await client.get("/admin/dashboard", headers=bearer(admin_key))

    (event,) = response.json()["recent_audit"]
    assert event["event_type"] == "api_key.created"
    assert event["owner_email"] == "owner@example.com"


async def test_audit_listing_pages_and_filters(client, issue_key, session_factory, owner, admin_owner):
    admin_key = await _admin_key(issue_key, admin_owner)
    base = utcnow() - datetime.timedelta(hours=1)
    async with session_factory() as session:
        session.add_all(
            AuditLog(
                owner_id=owner.id,
                event_type=audit.KEY_CREATED if i % 2 == 0 else audit.KEY_REVOKED,
                description=f"event {i}",
                resource_type="api_key",
                timestamp=base + datetime.timedelta(minutes=i),
            )
            for i in range(5)
        )
        await session.commit()

    first = await client.get(
        "/admin/audit", params={"page": 1, "limit": 2}, headers=bearer(admin_key),
    )
    last = await client.get(
        "/admin/audit", params={"page": 3, "limit": 2}, headers=bearer(admin_key),
    )
    revoked = await client.get(
        "/admin/audit",
        params={"event_type": audit.KEY_REVOKED, "owner_id": str(owner.id)},
        headers=bearer(admin_key),
    )

    assert first.status_code == 200
    assert first.json()["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}
    assert [e["description"] for e in first.json()["entries"]] == ["event 4", "event 3"]
    assert [e["description"] for e in last.json()["entries"]] == ["event 0"]
    assert [e["description"] for e in revoked.json()["entries"]] == ["event 3", "event 1"]
    assert revoked.json()["pagination"]["total"] == 2


async def test_audit_listing_time_bounds(client, issue_key, session_factory, owner, admin_owner):
    admin_key = await _admin_key(issue_key, admin_owner)
    async with session_factory() as session:
        await audit.log_event(
            session, owner_id=owner.id, event_type=audit.KEY_CREATED, description="now",
        )

    future = (utcnow() + datetime.timedelta(days=1)).isoformat()
    response = await client.get(
        "/admin/audit", params={"start": future}, headers=bearer(admin_key),
    )

    assert response.status_code == 200
    assert response.json()["entries"] == []
    assert response.json()["pagination"]["pages"] == 0


async def test_audit_page_size_is_bounded(client, issue_key, admin_owner):
    admin_key = await _admin_key(issue_key, admin_owner)

    response = await client.get(
        "/admin/audit", params={"limit": 10_000}, headers=bearer(admin_key),
    )

    assert response.status_code == 422


async def test_admin_calls_have_their_own_bucket(client, issue_key, admin_owner, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_RATE_LIMIT", 2)
    monkeypatch.setattr(settings, "MANAGEMENT_RATE_LIMIT", 1)
    admin_key = await _admin_key(issue_key, admin_owner)

    # Uses up the management bucket; the admin bucket is untouched.
    assert (await client.get("/analytics/usage", headers=bearer(admin_key))).status_code == 200

    statuses = [
        (await client.get("/admin/audit", headers=bearer(admin_key))).status_code
        for _ in range(3)
    ]

    assert statuses == [200, 200, 429]
