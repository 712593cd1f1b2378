import uuid

import pytest
from sqlalchemy import select

from feeledger.core.models import FeeAuditLog, FeeStructure

BASE = "/api/v1/fee-structures"


async def _events(session_factory, structure_id):
    async with session_factory() as db:
        result = await db.execute(
            select(FeeAuditLog)
            .where(FeeAuditLog.entity_id == structure_id)
            .order_by(FeeAuditLog.created_at)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_list_and_get(client, session_factory):
    resp = await client.post(
        BASE,
        json={
            "name": "  Tuition  ",
            "amount": "1500",
            "cycle": "MONTHLY",
            "tax_type": "GST_EXCLUSIVE",
            "gst_rate": "18",
            "sac_code": "999293",
            "line_items": [{"label": "Books", "amount": "500"}],
        },
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["name"] == "Tuition"
    assert created["currency"] == "INR"
    assert created["is_active"] is True
    assert created["assignment_count"] == 0

    listed = await client.get(BASE)
    assert [s["id"] for s in listed.json()] == [created["id"]]

    fetched = await client.get(f"{BASE}/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["line_items"] == [{"label": "Books", "amount": "500"}]

    logs = await _events(session_factory, uuid.UUID(created["id"]))
    assert [log.event for log in logs] == ["STRUCTURE_CREATED"]
    assert logs[0].after["sacCode"] == "999293"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"name": "Tuition", "amount": "1000", "gst_rate": "7"},
        {"name": "Tuition", "amount": "0"},
        {"name": "Tuition", "amount": "1000", "allow_installments": True, "installment_count": 1},
        {
            "name": "Tuition",
            "amount": "1000",
            "allow_installments": True,
            "installment_amounts": [{"label": "Term 1", "amount": "400"}, {"label": "Term 2", "amount": "400"}],
        },
    ],
)
async def test_invalid_structures_are_rejected(client, payload):
    resp = await client.post(BASE, json=payload)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_update_without_changes_writes_no_audit(client, session_factory, make_structure):
    structure_id = await make_structure(name="Tuition", amount="1000")

    resp = await client.patch(f"{BASE}/{structure_id}", json={"name": "Tuition", "amount": "1000.00"})

    assert resp.status_code == 200
    assert [log.event for log in await _events(session_factory, structure_id)] == ["STRUCTURE_CREATED"]


@pytest.mark.asyncio
async def test_update_records_only_changed_fields(client, session_factory, make_structure):
    structure_id = await make_structure(name="Tuition", amount="1000")

    resp = await client.patch(f"{BASE}/{structure_id}", json={"amount": "1200", "description": "Evening batch"})

    assert resp.status_code == 200
    assert resp.json()["amount"] == "1200.00"
    log = (await _events(session_factory, structure_id))[-1]
    assert log.event == "STRUCTURE_UPDATED"
    assert set(log.after) == {"amount", "description"}
    assert log.before["description"] is None


@pytest.mark.asyncio
async def test_installment_only_change_has_its_own_event(client, session_factory, make_structure):
    structure_id = await make_structure(name="Tuition", amount="1000")

    resp = await client.patch(
        f"{BASE}/{structure_id}",
        json={
            "allow_installments": True,
            "installment_amounts": [{"label": "Term 1", "amount": "400"}, {"label": "Term 2", "amount": "600"}],
        },
    )

    assert resp.status_code == 200
    assert resp.json()["installment_count"] == 2
    log = (await _events(session_factory, structure_id))[-1]
    assert log.event == "INSTALLMENT_SETTINGS_CHANGED"
    assert set(log.after) == {"allowInstallments", "installmentCount", "installmentAmounts"}


@pytest.mark.asyncio
async def test_update_rejects_broken_installment_plan(client, make_structure):
    structure_id = await make_structure(name="Tuition", amount="1000")
    resp = await client.patch(f"{BASE}/{structure_id}", json={"allow_installments": True})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_delete_unused_structure_is_hard(client, session_factory, make_structure):
    structure_id = await make_structure()

    resp = await client.delete(f"{BASE}/{structure_id}")

    assert resp.status_code == 200
    assert resp.json() == {"id": str(structure_id), "soft_deleted": False, "live_assignment_count": 0}
    async with session_factory() as db:
        assert await db.get(FeeStructure, structure_id) is None
    log = (await _events(session_factory, structure_id))[-1]
    assert log.event == "STRUCTURE_DELETED"
    assert log.meta == {"soft": False, "memberCount": 0}


@pytest.mark.asyncio
async def test_delete_assigned_structure_is_soft(client, session_factory, make_member, make_structure, start_date):
    structure_id = await make_structure(cycle="ONCE")
    member_id = await make_member()
    assigned = await client.post(
        "/api/v1/fees/assign",
        json={"member_id": str(member_id), "fee_structure_id": str(structure_id), "start_date": start_date.isoformat()},
    )
    assert assigned.status_code == 201

    resp = await client.delete(f"{BASE}/{structure_id}")

    assert resp.json()["soft_deleted"] is True
    assert resp.json()["live_assignment_count"] == 1
    fetched = (await client.get(f"{BASE}/{structure_id}")).json()
    assert fetched["is_active"] is False
    assert fetched["assignment_count"] == 1
    active = (await client.get(BASE, params={"active_only": "true"})).json()
    assert active == []

    # inactive structures cannot be assigned
    other = await make_member("Other")
    resp = await client.post(
        "/api/v1/fees/assign",
        json={"member_id": str(other), "fee_structure_id": str(structure_id)},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unknown_structure_is_404(client):
    missing = uuid.uuid4()
    assert (await client.get(f"{BASE}/{missing}")).status_code == 404
    assert (await client.patch(f"{BASE}/{missing}", json={"name": "X"})).status_code == 404
    assert (await client.delete(f"{BASE}/{missing}")).status_code == 404


@pytest.mark.asyncio
async def test_structures_are_scoped_to_coaching(client, session_factory):
    async with session_factory() as db:
        foreign = FeeStructure(coaching_id=uuid.uuid4(), name="Elsewhere", amount=1000)
        db.add(foreign)
        await db.commit()
        foreign_id = foreign.id

    assert (await client.get(f"{BASE}/{foreign_id}")).status_code == 404
    assert (await client.get(BASE)).json() == []
