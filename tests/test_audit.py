"""Tests for the audit interceptor and the audit log endpoints."""

import pytest
from structlog.testing import capture_logs

from propertypro.core.config import settings
from propertypro.models.audit_log import AuditAction
from propertypro.services import audit_service


# =============================================================================
# Unit Tests (no HTTP)
# =============================================================================

@pytest.mark.parametrize(
    "method, path, status_code, expected",
    [
        ("POST", "/api/auth/login", 200, AuditAction.login),
        ("POST", "/api/auth/login", 401, AuditAction.login_failed),
        ("POST", "/api/auth/logout", 200, AuditAction.logout),
        ("GET", "/api/audit-logs/export", 200, AuditAction.export),
        ("POST", "/api/communications", 201, AuditAction.create),
        ("PUT", "/api/users/u1", 200, AuditAction.update),
        ("PATCH", "/api/communications/c1", 200, AuditAction.update),
        ("DELETE", "/api/users/u1", 200, AuditAction.delete),
        ("GET", "/api/audit-logs", 200, AuditAction.view),
        ("OPTIONS", "/api/users", 200, AuditAction.unknown),
    ],
)
def test_classify_action(method, path, status_code, expected):
    assert audit_service.classify_action(method, path, status_code) is expected


@pytest.mark.parametrize(
    "path, body, expected",
    [
        ("/api/users/u-1", None, ("user", "u-1")),
        ("/api/communications/c-9/messages", None, ("communication", "c-9")),
        ("/api/maintenance-requests/m-3", None, ("maintenance_request", "m-3")),
        ("/api/communications", {"id": "root-1"}, ("communication", "root-1")),
        ("/api/properties", {"data": {"id": "p-7"}}, ("property", "p-7")),
        ("/api/users", None, ("user", None)),
        ("/api/usersettings/x", None, ("unknown", None)),
        ("/api/widgets/w-1", {"id": "w-1"}, ("unknown", "w-1")),
    ],
)
def test_extract_entity(path, body, expected):
    assert audit_service.extract_entity(path, body) == expected


@pytest.mark.parametrize(
    "method, path, expected",
    [
        ("GET", "/health", False),
        ("GET", "/api/auth/me", False),
        ("POST", "/api/notifications/read", False),
        ("GET", "/api/communications", False),
        ("GET", "/api/audit-logs", True),
        ("POST", "/api/communications", True),
        ("DELETE", "/api/users/u1", True),
    ],
)
def test_should_dispatch(method, path, expected):
    assert audit_service.should_dispatch(method, path) is expected


def test_should_log():
    assert audit_service.should_log(True, 201, "/api/users")
    assert audit_service.should_log(True, 401, "/api/users")
    assert audit_service.should_log(True, 403, "/api/users")
    assert not audit_service.should_log(True, 404, "/api/users")
    assert not audit_service.should_log(True, 500, "/api/users")
    assert not audit_service.should_log(False, 201, "/api/users")
    assert audit_service.should_log(False, 401, "/api/auth/login")


def test_redact_masks_password_keys_deeply():
    values = {"username": "a", "password": "s3cret", "nested": [{"new_password": "x"}]}
    assert audit_service.redact(values) == {
        "username": "a",
        "password": "[REDACTED]",
        "nested": [{"new_password": "[REDACTED]"}],
    }
    assert values["password"] == "s3cret"


# =============================================================================
# Interceptor (HTTP)
# =============================================================================

@pytest.mark.asyncio
async def test_create_is_audited_with_new_values(client, storage, open_thread, world):
    body = await open_thread(world.tenant_t1, subject="Broken lift")

    (entry,) = storage.audit_logs
    assert entry.action == "CREATE"
    assert entry.user_id == world.tenant_t1.user.id
    assert entry.entity_type == "communication"
    assert entry.entity_id == body["id"]
    assert entry.new_values["subject"] == "Broken lift"
    assert entry.old_values is None
    assert entry.request_metadata["status_code"] == 201
    assert entry.request_metadata["method"] == "POST"


@pytest.mark.asyncio
async def test_update_records_declared_pre_image(client, storage, open_thread, world):
    thread = await open_thread(world.tenant_t1)
    resp = await client.patch(
        f"/api/communications/{thread['thread_id']}",
        headers=world.admin_riverside.headers,
        json={"status": "pending"},
    )
    assert resp.status_code == 200

    entry = storage.audit_logs[-1]
    assert entry.action == "UPDATE"
    assert entry.entity_id == thread["thread_id"]
    assert entry.old_values == {"status": "open"}
    assert entry.new_values == {"status": "pending"}


@pytest.mark.asyncio
async def test_delete_records_response_as_old_values(client, storage, open_thread, world):
    thread = await open_thread(world.tenant_t1)
    resp = await client.delete(f"/api/communications/{thread['id']}", headers=world.it.headers)
    assert resp.status_code == 200

    entry = storage.audit_logs[-1]
    assert entry.action == "DELETE"
    assert entry.user_id == world.it.user.id
    assert entry.old_values == resp.json()


@pytest.mark.asyncio
async def test_plain_get_is_not_audited(client, storage, open_thread, world):
    await open_thread(world.tenant_t1)
    before = len(storage.audit_logs)

    resp = await client.get("/api/communications", headers=world.tenant_t1.headers)
    assert resp.status_code == 200
    assert len(storage.audit_logs) == before


@pytest.mark.asyncio
async def test_failed_login_is_audited_without_password(client, storage, world):
    resp = await client.post(
        "/api/auth/login",
        headers={"User-Agent": "pytest-agent"},
        json={"username": "tenant_t1", "password": "definitely-wrong"},
    )
    assert resp.status_code == 401

    (entry,) = storage.audit_logs
    assert entry.action == "LOGIN_FAILED"
    assert entry.user_id == world.tenant_t1.user.id
    assert entry.entity_type == "user"
    assert entry.user_agent == "pytest-agent"
    assert entry.request_metadata["username"] == "tenant_t1"
    assert "definitely-wrong" not in repr(entry.new_values)
    assert "definitely-wrong" not in repr(entry.request_metadata)


@pytest.mark.asyncio
async def test_failed_login_for_unknown_user_has_no_user_id(client, storage, world):
    await client.post("/api/auth/login", json={"username": "ghost", "password": "whatever1"})
    (entry,) = storage.audit_logs
    assert entry.action == "LOGIN_FAILED"
    assert entry.user_id is None


@pytest.mark.asyncio
async def test_successful_login_and_logout_are_audited(client, storage, world, password):
    resp = await client.post(
        "/api/auth/login", json={"username": "admin_hillcrest", "password": password}
    )
    token = resp.json()["access_token"]
    await client.post("/api/auth/logout", headers={"Authorization": f"Bearer {token}"})

    assert [e.action for e in storage.audit_logs] == ["LOGIN", "LOGOUT"]
    assert {e.user_id for e in storage.audit_logs} == {world.admin_hillcrest.user.id}


@pytest.mark.asyncio
async def test_forbidden_attempt_is_audited(client, storage, open_thread, world):
    thread = await open_thread(world.tenant_t2)
    resp = await client.post(
        f"/api/communications/{thread['thread_id']}/messages",
        headers=world.tenant_t1.headers,
        json={"message": "sneaky"},
    )
    assert resp.status_code == 403

    entry = storage.audit_logs[-1]
    assert entry.user_id == world.tenant_t1.user.id
    assert entry.request_metadata["status_code"] == 403


@pytest.mark.asyncio
async def test_unauthenticated_mutation_is_not_audited(client, storage, world):
    resp = await client.post("/api/communications", json={"subject": "s", "message": "m"})
    assert resp.status_code == 401
    assert storage.audit_logs == []


@pytest.mark.asyncio
async def test_user_create_does_not_store_password(client, storage, world):
    resp = await client.post(
        "/api/users",
        headers=world.admin_riverside.headers,
        json={"username": "new_tenant", "password": "plaintext-pw", "role": "TENANT"},
    )
    assert resp.status_code == 201
    entry = storage.audit_logs[-1]
    assert entry.action == "CREATE"
    assert entry.entity_type == "user"
    assert entry.entity_id == resp.json()["id"]
    assert entry.new_values["password"] == "[REDACTED]"


@pytest.mark.asyncio
async def test_audit_write_failure_does_not_change_response(client, storage, world, monkeypatch):
    target = world.tenant_t1.user.id
    payload = {"full_name": "Tess One-Renamed"}

    ok = await client.patch(f"/api/users/{target}", headers=world.it.headers, json=payload)

    async def broken_write(entry):
        raise RuntimeError("audit table is gone")

    monkeypatch.setattr(storage, "create_audit_log", broken_write)
    with capture_logs() as logs:
        failing = await client.patch(f"/api/users/{target}", headers=world.it.headers, json=payload)

    assert failing.status_code == ok.status_code == 200
    assert failing.json() == ok.json()
    assert any(
        e["event"] == "Failed to write audit log" and e["log_level"] == "error" for e in logs
    )


@pytest.mark.asyncio
async def test_client_ip_honours_proxy_header_only_when_trusted(client, storage, world, monkeypatch):
    headers = {**world.it.headers, "X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", False)
    await client.post("/api/communications", headers=headers, json={"subject": "a", "message": "b"})
    assert storage.audit_logs[-1].ip_address != "203.0.113.7"

    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    await client.post("/api/communications", headers=headers, json={"subject": "a", "message": "b"})
    assert storage.audit_logs[-1].ip_address == "203.0.113.7"


# =============================================================================
# Audit log endpoints
# =============================================================================

@pytest.mark.asyncio
async def test_tenant_cannot_read_audit_logs(client, world):
    for path in ("/api/audit-logs", "/api/audit-logs/stats"):
        resp = await client.get(path, headers=world.tenant_t1.headers)
        assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_sees_only_entries_of_own_property_users(client, open_thread, world):
    await open_thread(world.tenant_t1)
    await open_thread(world.tenant_t3)
    await open_thread(world.it, property_id=world.riverside.id)

    resp = await client.get(
        "/api/audit-logs", headers=world.admin_riverside.headers, params={"action": "CREATE"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    (item,) = body["items"]
    assert item["user_id"] == world.tenant_t1.user.id
    assert item["user_name"] == "Tenant T1"
    assert item["metadata"]["path"] == "/api/communications"

    everything = (
        await client.get("/api/audit-logs", headers=world.it.headers, params={"action": "create"})
    ).json()
    assert everything["total"] == 3


@pytest.mark.asyncio
async def test_viewing_audit_logs_is_itself_audited(client, storage, world):
    await client.get("/api/audit-logs", headers=world.it.headers)
    (entry,) = storage.audit_logs
    assert entry.action == "VIEW"
    assert entry.entity_type == "audit_log"


@pytest.mark.asyncio
async def test_list_pagination_and_filters(client, open_thread, world):
    for _ in range(5):
        await open_thread(world.tenant_t1)

    page = (
        await client.get(
            "/api/audit-logs",
            headers=world.it.headers,
            params={
                "action": "CREATE",
                "user_id": world.tenant_t1.user.id,
                "entity_type": "communication",
                "start_date": "2000-01-01T00:00:00",
                "skip": 1,
                "limit": 2,
            },
        )
    ).json()
    assert page["total"] == 5
    assert len(page["items"]) == 2

    future = (
        await client.get(
            "/api/audit-logs",
            headers=world.it.headers,
            params={"start_date": "2999-01-01T00:00:00"},
        )
    ).json()
    assert future["total"] == 0


@pytest.mark.asyncio
async def test_limit_is_bounded(client, world):
    resp = await client.get(
        "/api/audit-logs",
        headers=world.it.headers,
        params={"limit": settings.AUDIT_LOG_MAX_LIMIT + 1},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_stats_agree_with_list(client, open_thread, world):
    await open_thread(world.tenant_t1)
    await open_thread(world.tenant_t1)
    await open_thread(world.admin_riverside)
    await open_thread(world.tenant_t3)

    params = {"action": "CREATE"}
    listing = (
        await client.get("/api/audit-logs", headers=world.admin_riverside.headers, params=params)
    ).json()
    stats = (
        await client.get(
            "/api/audit-logs/stats", headers=world.admin_riverside.headers, params=params
        )
    ).json()

    assert stats["total_actions"] == listing["total"] == 3
    assert stats["actions_by_type"] == {"CREATE": 3}
    assert stats["actions_by_user"][0] == {
        "user_id": world.tenant_t1.user.id,
        "user_name": "Tenant T1",
        "count": 2,
    }
    assert len(stats["recent_actions"]) == 3
    assert {a["user_name"] for a in stats["recent_actions"]} == {"Tenant T1", "Admin Riverside"}
