"""Tests for /api/users account management."""

import pytest

pytestmark = pytest.mark.asyncio


def new_account(username: str, **fields) -> dict:
    return {"username": username, "password": "a-long-password", **fields}


# =============================================================================
# Creation
# =============================================================================

async def test_it_creates_admin_for_any_property(client, world):
    resp = await client.post(
        "/api/users",
        headers=world.it.headers,
        json=new_account("admin_new", role="ADMIN", property_id=world.hillcrest.id),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["role"] == "ADMIN"
    assert body["property_id"] == world.hillcrest.id
    assert body["is_active"] is True
    assert "hashed_password" not in body


async def test_admin_created_tenant_lands_in_admin_property(client, storage, world):
    resp = await client.post(
        "/api/users",
        headers=world.admin_riverside.headers,
        json=new_account("tenant_new", property_id=world.hillcrest.id, email="New@Example.com"),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["role"] == "TENANT"
    assert body["property_id"] == world.riverside.id
    assert body["email"] == "new@example.com"
    assert storage.users[body["id"]].created_by == world.admin_riverside.user.id


async def test_new_account_can_log_in(client, world):
    await client.post("/api/users", headers=world.it.headers, json=new_account("fresh_user"))
    resp = await client.post(
        "/api/auth/login", json={"username": "fresh_user", "password": "a-long-password"}
    )
    assert resp.status_code == 200


@pytest.mark.parametrize("actor", ["it", "admin_riverside"])
async def test_nobody_creates_it_accounts(client, world, actor):
    resp = await client.post(
        "/api/users",
        headers=getattr(world, actor).headers,
        json=new_account("sneaky_it", role="IT"),
    )
    assert resp.status_code == 403


async def test_admin_cannot_create_admin(client, world):
    resp = await client.post(
        "/api/users",
        headers=world.admin_riverside.headers,
        json=new_account("second_admin", role="ADMIN"),
    )
    assert resp.status_code == 403


async def test_tenant_cannot_create_accounts(client, world):
    resp = await client.post(
        "/api/users", headers=world.tenant_t1.headers, json=new_account("friend_of_t1")
    )
    assert resp.status_code == 403


async def test_duplicate_username_is_409(client, world):
    resp = await client.post("/api/users", headers=world.it.headers, json=new_account("tenant_t1"))
    assert resp.status_code == 409


async def test_short_password_is_400(client, world):
    resp = await client.post(
        "/api/users",
        headers=world.it.headers,
        json={"username": "shorty", "password": "short"},
    )
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "password"


# =============================================================================
# Listing
# =============================================================================

async def test_admin_lists_own_property_only(client, world):
    resp = await client.get("/api/users", headers=world.admin_riverside.headers)
    assert resp.status_code == 200
    usernames = {u["username"] for u in resp.json()}
    assert usernames == {"admin_riverside", "tenant_t1", "tenant_t2"}


async def test_it_lists_everyone(client, world):
    resp = await client.get("/api/users", headers=world.it.headers)
    assert len(resp.json()) == 6


async def test_tenant_cannot_list(client, world):
    resp = await client.get("/api/users", headers=world.tenant_t1.headers)
    assert resp.status_code == 403


# =============================================================================
# Updates
# =============================================================================

async def test_admin_updates_own_tenant(client, world):
    resp = await client.patch(
        f"/api/users/{world.tenant_t1.user.id}",
        headers=world.admin_riverside.headers,
        json={"full_name": "Tess Updated"},
    )
    assert resp.status_code == 200
    assert resp.json()["full_name"] == "Tess Updated"


@pytest.mark.parametrize(
    "target, payload",
    [
        ("tenant_t3", {"full_name": "Not yours"}),
        ("admin_hillcrest", {"full_name": "Not yours"}),
        ("tenant_t1", {"role": "ADMIN"}),
        ("tenant_t1", {"property_id": "elsewhere"}),
    ],
)
async def test_admin_update_limits(client, world, target, payload):
    resp = await client.patch(
        f"/api/users/{getattr(world, target).user.id}",
        headers=world.admin_riverside.headers,
        json=payload,
    )
    assert resp.status_code == 403


async def test_it_cannot_promote_to_it(client, world):
    resp = await client.patch(
        f"/api/users/{world.admin_riverside.user.id}",
        headers=world.it.headers,
        json={"role": "IT"},
    )
    assert resp.status_code == 403


async def test_it_moves_admin_between_properties(client, world):
    resp = await client.patch(
        f"/api/users/{world.admin_riverside.user.id}",
        headers=world.it.headers,
        json={"property_id": world.hillcrest.id},
    )
    assert resp.status_code == 200
    assert resp.json()["property_id"] == world.hillcrest.id


async def test_password_change_takes_effect(client, world, password):
    await client.patch(
        f"/api/users/{world.tenant_t2.user.id}",
        headers=world.it.headers,
        json={"password": "brand-new-secret"},
    )
    old = await client.post("/api/auth/login", json={"username": "tenant_t2", "password": password})
    new = await client.post(
        "/api/auth/login", json={"username": "tenant_t2", "password": "brand-new-secret"}
    )
    assert old.status_code == 401
    assert new.status_code == 200


async def test_it_gets_404_for_unknown_user(client, world):
    resp = await client.patch(
        "/api/users/no-such-user", headers=world.it.headers, json={"full_name": "x"}
    )
    assert resp.status_code == 404


# =============================================================================
# Deactivation
# =============================================================================

async def test_deactivation_ends_existing_sessions(client, world):
    resp = await client.delete(
        f"/api/users/{world.tenant_t1.user.id}", headers=world.admin_riverside.headers
    )
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    after = await client.get("/api/communications", headers=world.tenant_t1.headers)
    assert after.status_code == 401


async def test_cannot_deactivate_self(client, world):
    resp = await client.delete(f"/api/users/{world.it.user.id}", headers=world.it.headers)
    assert resp.status_code == 403


async def test_admin_cannot_deactivate_other_property_tenant(client, world):
    resp = await client.delete(
        f"/api/users/{world.tenant_t3.user.id}", headers=world.admin_riverside.headers
    )
    assert resp.status_code == 403


# =============================================================================
# Linked records
# =============================================================================

async def test_admin_cannot_link_new_tenant_to_other_property_record(client, open_thread, world):
    await open_thread(world.tenant_t3, subject="Hillcrest only")
    resp = await client.post(
        "/api/users",
        headers=world.admin_riverside.headers,
        json=new_account("borrowed_identity", owner_id=world.owner_t3.id),
    )
    assert resp.status_code == 403

    login = await client.post(
        "/api/auth/login",
        json={"username": "borrowed_identity", "password": "a-long-password"},
    )
    assert login.status_code == 401


async def test_admin_links_new_tenant_to_own_property_record(client, world):
    resp = await client.post(
        "/api/users",
        headers=world.admin_riverside.headers,
        json=new_account("co_owner", owner_id=world.owner_t2.id),
    )
    assert resp.status_code == 201
    assert resp.json()["owner_id"] == world.owner_t2.id


async def test_admin_cannot_relink_tenant_to_other_property_record(client, open_thread, world):
    await open_thread(world.tenant_t3, subject="Hillcrest only")
    resp = await client.patch(
        f"/api/users/{world.tenant_t1.user.id}",
        headers=world.admin_riverside.headers,
        json={"owner_id": world.lease_record.id},
    )
    assert resp.status_code == 403

    threads = (await client.get("/api/communications", headers=world.tenant_t1.headers)).json()
    assert "Hillcrest only" not in [t["subject"] for t in threads]


async def test_admin_cannot_link_unknown_record(client, world):
    resp = await client.patch(
        f"/api/users/{world.tenant_t1.user.id}",
        headers=world.admin_riverside.headers,
        json={"owner_id": "no-such-record"},
    )
    assert resp.status_code == 403


async def test_it_links_any_record(client, world):
    resp = await client.patch(
        f"/api/users/{world.tenant_t1.user.id}",
        headers=world.it.headers,
        json={"owner_id": world.owner_t3.id},
    )
    assert resp.status_code == 200
    assert resp.json()["owner_id"] == world.owner_t3.id
