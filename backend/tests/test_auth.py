import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.db.models import AuditLog, Credential, Membership, Organization, User
from app.exceptions import Conflict, InvalidCredentials
from app.services import auth as auth_service
from app.services.auth import (
    AuthenticatedUser,
    OrganizationMembership,
    authenticate_user,
    choose_active_organization,
    register_user,
)

from conftest import DEFAULT_PASSWORD, unique_email


def _register_body(**overrides) -> dict:
    body = {
        "email": unique_email("reg"),
        "password": DEFAULT_PASSWORD,
        "name": "A",
        "organization_name": "Acme",
    }
    body.update(overrides)
    return body


# ── Service: registration ─────────────────────


async def test_register_creates_owner_membership(db) -> None:
    email = unique_email("Mixed.Case")
    user, membership = await register_user(
        db, email=email.upper(), password=DEFAULT_PASSWORD, name="A", organization_name="Acme"
    )

    assert user.email == email.lower()
    assert user.default_organization_id == membership.organization_id
    assert membership.role == "owner"
    assert membership.organization_name == "Acme"

    credential = await db.get(Credential, user.id)
    assert credential is not None
    assert credential.password_hash.startswith("$argon2id$")
    assert credential.password_version == "argon2id:v1"

    audit = await db.execute(select(AuditLog).where(AuditLog.user_id == user.id))
    assert [entry.action for entry in audit.scalars()] == ["user.registered"]


async def test_register_duplicate_email_conflicts(db, seed_user) -> None:
    seeded = await seed_user()
    with pytest.raises(Conflict):
        await register_user(
            db,
            email=seeded["email"].upper(),
            password=DEFAULT_PASSWORD,
            name="B",
            organization_name="Other",
        )


async def test_register_failure_leaves_no_orphan_organization(db, monkeypatch) -> None:
    org_name = f"Orphan-{uuid.uuid4().hex[:8]}"

    def _fail(**kwargs):
        raise RuntimeError("simulated failure after user insert")

    monkeypatch.setattr(auth_service, "Credential", _fail)

    with pytest.raises(RuntimeError):
        await register_user(
            db, email=unique_email(), password=DEFAULT_PASSWORD, name="A", organization_name=org_name
        )

    count = await db.scalar(select(func.count()).select_from(Organization).where(Organization.name == org_name))
    assert count == 0


# ── Service: authentication ───────────────────


async def test_authenticate_returns_memberships(db, seed_user) -> None:
    seeded = await seed_user()
    user, memberships = await authenticate_user(db, email=seeded["email"], password=DEFAULT_PASSWORD)

    assert user.id == seeded["user"].id
    assert memberships == [seeded["membership"]]


async def test_authenticate_email_is_case_insensitive(db, seed_user) -> None:
    seeded = await seed_user()
    user, _ = await authenticate_user(db, email=seeded["email"].upper(), password=DEFAULT_PASSWORD)
    assert user.id == seeded["user"].id


async def test_authenticate_errors_are_uniform(db, seed_user) -> None:
    seeded = await seed_user()

    with pytest.raises(InvalidCredentials) as unknown:
        await authenticate_user(db, email=unique_email("ghost"), password=DEFAULT_PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        await authenticate_user(db, email=seeded["email"], password="not-the-password")

    assert type(unknown.value) is type(wrong.value)
    assert unknown.value.message == wrong.value.message == "Invalid credentials"


def test_choose_active_organization_preference() -> None:
    default_org, owned_org, member_org = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    memberships = [
        OrganizationMembership(organization_id=member_org, organization_name="M", role="member"),
        OrganizationMembership(organization_id=owned_org, organization_name="O", role="owner"),
        OrganizationMembership(organization_id=default_org, organization_name="D", role="admin"),
    ]

    def user(default):
        return AuthenticatedUser(id=uuid.uuid4(), email="a@example.com", name="A", default_organization_id=default)

    assert choose_active_organization(user(default_org), memberships) == default_org
    assert choose_active_organization(user(None), memberships) == owned_org
    assert choose_active_organization(user(uuid.uuid4()), memberships) == owned_org
    assert choose_active_organization(user(None), memberships[:1]) == member_org
    assert choose_active_organization(user(None), []) is None


# ── HTTP: register / login / logout / me ──────


async def test_register_then_login_end_to_end(client: AsyncClient, make_client) -> None:
    body = _register_body()
    resp = await client.post("/auth/register", json=body)
    assert resp.status_code == 200, resp.text
    data = resp.json()

    assert data["success"] is True
    assert data["user"]["email"] == body["email"]
    assert len(data["memberships"]) == 1
    membership = data["memberships"][0]
    assert membership["role"] == "owner"
    assert membership["organization_name"] == "Acme"
    assert data["active_organization_id"] == membership["organization_id"]

    set_cookie = resp.headers["set-cookie"]
    assert "sa_session=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "samesite=strict" in set_cookie.lower()
    assert "Path=/" in set_cookie

    async with make_client() as other:
        login_resp = await other.post(
            "/auth/login", json={"email": body["email"], "password": body["password"]}
        )
        assert login_resp.status_code == 200
        login_data = login_resp.json()
        assert login_data["memberships"] == data["memberships"]
        assert login_data["active_organization_id"] == membership["organization_id"]


async def test_register_session_is_usable(client: AsyncClient) -> None:
    resp = await client.post("/auth/register", json=_register_body())
    assert resp.status_code == 200

    me = await client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["id"] == resp.json()["user"]["id"]


async def test_register_duplicate_returns_409(client: AsyncClient) -> None:
    body = _register_body()
    assert (await client.post("/auth/register", json=body)).status_code == 200

    second = await client.post("/auth/register", json={**body, "email": body["email"].upper()})
    assert second.status_code == 409
    assert second.json() == {"success": False, "error": "User already exists"}


@pytest.mark.parametrize(
    "overrides",
    [
        {"email": "not-an-email"},
        {"password": "short"},
        {"name": ""},
        {"organization_name": ""},
        {"name": "n" * 256},
        {"organization_name": "x" * 300},
    ],
)
async def test_register_validation_returns_400(client: AsyncClient, overrides: dict) -> None:
    resp = await client.post("/auth/register", json=_register_body(**overrides))
    assert resp.status_code == 400
    data = resp.json()
    assert data["success"] is False
    assert data["details"]


async def test_login_wrong_password_returns_uniform_401(client: AsyncClient, seed_user) -> None:
    seeded = await seed_user()

    wrong = await client.post("/auth/login", json={"email": seeded["email"], "password": "nope-nope"})
    unknown = await client.post("/auth/login", json={"email": unique_email("ghost"), "password": "nope-nope"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"success": False, "error": "Invalid credentials"}
    assert "set-cookie" not in wrong.headers


async def test_login_without_memberships_returns_403(client: AsyncClient, seed_user, session_factory) -> None:
    seeded = await seed_user()
    async with session_factory() as session:
        membership = await session.get(Membership, (seeded["org_id"], seeded["user"].id))
        await session.delete(membership)
        await session.commit()

    resp = await client.post("/auth/login", json={"email": seeded["email"], "password": DEFAULT_PASSWORD})
    assert resp.status_code == 403


async def test_me_requires_auth(client: AsyncClient) -> None:
    resp = await client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Unauthorized"}


async def test_logout_revokes_session(client: AsyncClient, seed_user, login) -> None:
    seeded = await seed_user()
    await login(client, seeded["email"])
    token = client.cookies.get("sa_session")
    assert token

    assert (await client.get("/auth/me")).status_code == 200

    resp = await client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    # Replaying the old token no longer works
    client.cookies.set("sa_session", token)
    assert (await client.get("/auth/me")).status_code == 401


async def test_logout_without_session_is_ok(client: AsyncClient) -> None:
    resp = await client.post("/auth/logout")
    assert resp.status_code == 200


# ── HTTP: organization switch ─────────────────


async def test_switch_to_foreign_org_forbidden(client: AsyncClient, seed_user, login) -> None:
    me = await seed_user()
    stranger = await seed_user(organization_name="Elsewhere")
    await login(client, me["email"])

    resp = await client.post("/auth/switch", json={"organization_id": str(stranger["org_id"])})
    assert resp.status_code == 403


async def test_switch_between_own_orgs(client: AsyncClient, seed_user, login) -> None:
    seeded = await seed_user()
    await login(client, seeded["email"])

    created = await client.post("/orgs", json={"name": "Second"})
    assert created.status_code == 200
    second_id = created.json()["organization"]["id"]

    resp = await client.post("/auth/switch", json={"organization_id": str(seeded["org_id"])})
    assert resp.status_code == 200
    assert resp.json()["active_organization_id"] == str(seeded["org_id"])
    assert {m["organization_id"] for m in resp.json()["memberships"]} == {str(seeded["org_id"]), second_id}

    me = await client.get("/auth/me")
    assert me.json()["active_organization_id"] == str(seeded["org_id"])


async def test_switch_requires_auth(client: AsyncClient) -> None:
    resp = await client.post("/auth/switch", json={"organization_id": str(uuid.uuid4())})
    assert resp.status_code == 401


# ── OAuth placeholders ────────────────────────


@pytest.mark.parametrize("provider", ["google", "facebook", "apple"])
async def test_known_oauth_provider_not_configured(client: AsyncClient, provider: str) -> None:
    assert (await client.get(f"/auth/{provider}/init")).status_code == 501
    assert (await client.get(f"/auth/{provider}/callback")).status_code == 501


async def test_unknown_oauth_provider(client: AsyncClient) -> None:
    resp = await client.get("/auth/myspace/init")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Provider not supported"


async def test_user_rows_store_lowercase_email(client: AsyncClient, session_factory) -> None:
    body = _register_body(email=unique_email("UPPER").upper())
    assert (await client.post("/auth/register", json=body)).status_code == 200

    async with session_factory() as session:
        stored = await session.scalar(select(User.email).where(User.email == body["email"].lower()))
    assert stored == body["email"].lower()
