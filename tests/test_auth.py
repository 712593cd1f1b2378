import uuid

import pytest
from httpx import AsyncClient

from feeledger.auth.dependencies import get_current_user
from feeledger.auth.security import create_access_token
from feeledger.main import app


def _token(coaching_id, role="SUPER_ADMIN", permissions=None, **extra) -> str:
    subject = {
        "user_id": str(uuid.uuid4()),
        "coaching_id": str(coaching_id),
        "role": role,
        "permissions": permissions or {},
    }
    subject.update(extra)
    return create_access_token(subject=subject)


@pytest.fixture()
def real_auth(client):
    """Drop the user override so requests go through token validation."""
    app.dependency_overrides.pop(get_current_user, None)
    return client


@pytest.mark.asyncio
async def test_missing_token_is_401(real_auth: AsyncClient) -> None:
    resp = await real_auth.get("/api/v1/fee-structures")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_garbage_token_is_401(real_auth: AsyncClient) -> None:
    resp = await real_auth.get(
        "/api/v1/fee-structures", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_expired_token_is_401(real_auth: AsyncClient, coaching_id) -> None:
    token = create_access_token(
        subject={"user_id": str(uuid.uuid4()), "coaching_id": str(coaching_id), "role": "ADMIN"},
        expires_minutes=-5,
    )
    resp = await real_auth.get(
        "/api/v1/fee-structures", headers={"Authorization": f"Bearer {token}"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_token_without_coaching_is_401(real_auth: AsyncClient) -> None:
    token = create_access_token(subject={"user_id": str(uuid.uuid4()), "role": "ADMIN"})
    resp = await real_auth.get(
        "/api/v1/fee-structures", headers={"Authorization": f"Bearer {token}"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_valid_token_scopes_to_coaching(real_auth: AsyncClient, coaching_id, make_structure) -> None:
    await make_structure(name="Tuition")
    mine = await real_auth.get(
        "/api/v1/fee-structures", headers={"Authorization": f"Bearer {_token(coaching_id)}"}
    )
    theirs = await real_auth.get(
        "/api/v1/fee-structures", headers={"Authorization": f"Bearer {_token(uuid.uuid4())}"}
    )
    assert [s["name"] for s in mine.json()] == ["Tuition"]
    assert theirs.json() == []


@pytest.mark.asyncio
async def test_role_without_grant_is_403(real_auth: AsyncClient, coaching_id) -> None:
    token = _token(coaching_id, role="STAFF", permissions={"fees": {"read": True}})
    headers = {"Authorization": f"Bearer {token}"}

    assert (await real_auth.get("/api/v1/fee-structures", headers=headers)).status_code == 200
    resp = await real_auth.post(
        "/api/v1/fee-structures", json={"name": "Tuition", "amount": "1000"}, headers=headers
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Insufficient permissions"


@pytest.mark.asyncio
async def test_my_fees_needs_no_fees_grant(real_auth: AsyncClient, coaching_id, make_member) -> None:
    user_id = uuid.uuid4()
    member_id = await make_member("Asha", user_id=user_id)
    token = _token(coaching_id, role="STUDENT", user_id=str(user_id))
    headers = {"Authorization": f"Bearer {token}"}

    assert (await real_auth.get("/api/v1/fees/summary", headers=headers)).status_code == 403
    resp = await real_auth.get("/api/v1/fees/my", headers=headers)
    assert resp.status_code == 200
    assert [m["member"]["id"] for m in resp.json()["members"]] == [str(member_id)]
