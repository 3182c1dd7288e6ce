"""End-to-end walk through a project's life over the HTTP API.

Owner sets up the project, members work on it, a contractor and a client
use portal links, links expire and renew, and the audit trail records who
did what.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

import pytest

from projectgate.authz.engine import AuthorizationEngine
from projectgate.core.timeutil import utcnow
from projectgate.models import ChangeType, TokenClass
from projectgate.mutations.audit import audit_report
from projectgate.portal.renewal import renew_expiring_tokens
from projectgate.portal.tokens import issue_portal_token
from projectgate.web.dependencies import get_authz_engine


def as_user(user) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


def as_portal(credential: str) -> dict[str, str]:
    return {"X-Portal-Token": credential}


@pytest.mark.asyncio
async def test_project_lifecycle(app, api, db_session, world):
    owner, member = world.owner, world.member

    # Owner creates a project and becomes its owner
    response = await api.post("/resources/projects", json={"name": "Retail park"}, headers=as_user(owner))
    assert response.status_code == 201
    project = response.json()
    assert project["created_by"] == str(owner.id)
    project_id = project["id"]

    # Member can't see it until added
    response = await api.get(f"/resources/projects/{project_id}", headers=as_user(member))
    assert response.status_code == 404

    response = await api.post(
        "/resources/project_members",
        json={"project_id": project_id, "user_id": str(member.id), "role": "member", "position": "primary"},
        headers=as_user(owner),
    )
    assert response.status_code == 201
    response = await api.get(f"/resources/projects/{project_id}", headers=as_user(member))
    assert response.status_code == 200

    # Only one primary per project
    response = await api.post(
        "/resources/project_members",
        json={"project_id": project_id, "user_id": str(world.outsider.id), "position": "primary"},
        headers=as_user(owner),
    )
    assert response.status_code == 409

    # Tenant change by the member notifies the owner
    response = await api.post(
        "/resources/tenants",
        json={"project_id": project_id, "shop_number": "G-07", "area_m2": "120.5"},
        headers=as_user(member),
    )
    assert response.status_code == 201
    notifications = (await api.get("/resources/notifications", headers=as_user(owner))).json()
    assert [n["entity_key"] for n in notifications] == [response.json()["id"]]
    assert (await api.get("/resources/notifications", headers=as_user(member))).json() == []

    # Members read project data but only owners delete the project
    tenants = (await api.get("/resources/tenants", headers=as_user(member))).json()
    assert [t["shop_number"] for t in tenants] == ["G-07"]
    response = await api.delete(f"/resources/projects/{project_id}", headers=as_user(member))
    assert response.status_code == 404

    # Cable schedule with one entry
    response = await api.post(
        "/resources/cable_schedules",
        json={"project_id": project_id, "name": "Level 1 power"},
        headers=as_user(member),
    )
    assert response.status_code == 201
    schedule_id = response.json()["id"]
    response = await api.post(
        "/resources/cable_entries",
        json={"schedule_id": schedule_id, "cable_tag": "L1-DB-01"},
        headers=as_user(member),
    )
    assert response.status_code == 201
    entry_id = response.json()["id"]

    # Procurement and documents
    response = await api.post(
        "/resources/procurement_items",
        json={"project_id": project_id, "name": "Main distribution board", "status": "ordered"},
        headers=as_user(member),
    )
    assert response.status_code == 201
    item_id = response.json()["id"]
    for category, title in (("drawings", "Single line diagram"), ("reports", "Cost report")):
        response = await api.post(
            "/resources/project_documents",
            json={"project_id": project_id, "category": category, "title": title},
            headers=as_user(member),
        )
        assert response.status_code == 201

    # Portal links
    contractor_token = await issue_portal_token(
        db_session, world.as_owner, UUID(project_id), TokenClass.CONTRACTOR
    )
    client_token = await issue_portal_token(
        db_session,
        world.as_owner,
        UUID(project_id),
        TokenClass.CLIENT,
        document_tabs=["drawings"],
    )
    assert contractor_token.auto_renew is True
    assert client_token.auto_renew is False

    response = await api.post("/portal/validate", json={"token": client_token.short_code})
    assert response.json()["is_valid"] is True
    assert response.json()["document_tabs"] == ["drawings"]

    # Contractor: schedules, installation fields, delivery dates and confirmations
    contractor = as_portal(contractor_token.token)
    schedules = (await api.get("/resources/cable_schedules", headers=contractor)).json()
    assert [s["id"] for s in schedules] == [schedule_id]
    projects = (await api.get("/resources/projects", headers=contractor)).json()
    assert [p["id"] for p in projects] == [project_id]
    response = await api.patch(
        f"/resources/cable_entries/{entry_id}",
        json={"contractor_installed": True, "measured_length": "48.20"},
        headers=contractor,
    )
    assert response.status_code == 200
    assert response.json()["contractor_installed"] is True
    response = await api.patch(
        f"/resources/cable_entries/{entry_id}", json={"cable_tag": "X"}, headers=contractor
    )
    assert response.status_code == 404
    response = await api.patch(
        f"/resources/procurement_items/{item_id}",
        json={"expected_delivery": "2026-11-20T08:00:00"},
        headers=contractor,
    )
    assert response.status_code == 200
    response = await api.patch(
        f"/resources/procurement_items/{item_id}", json={"name": "Cheaper board"}, headers=contractor
    )
    assert response.status_code == 404
    response = await api.post(
        "/resources/delivery_confirmations",
        json={"procurement_item_id": item_id, "confirmed_by_name": "Site foreman"},
        headers=contractor,
    )
    assert response.status_code == 201
    assert response.json()["token_id"] == str(contractor_token.id)
    assert (await api.get("/resources/tenants", headers=contractor)).json() == []

    # Client: documents on the allowed tabs only
    documents = (await api.get("/resources/project_documents", headers=as_portal(client_token.token))).json()
    assert [d["category"] for d in documents] == ["drawings"]

    # A week later the links have lapsed
    later = AuthorizationEngine(clock=lambda: utcnow() + timedelta(days=8))
    app.dependency_overrides[get_authz_engine] = lambda: later
    assert (await api.get("/resources/procurement_items", headers=contractor)).json() == []

    # The renewal sweep (run before expiry) keeps the contractor link alive
    report = await renew_expiring_tokens(db_session, now=utcnow() + timedelta(days=3))
    assert report.renewed_token_ids == [contractor_token.id]
    visible = (await api.get("/resources/procurement_items", headers=contractor)).json()
    assert [row["id"] for row in visible] == [item_id]
    assert (await api.get("/resources/project_documents", headers=as_portal(client_token.token))).json() == []
    app.dependency_overrides.pop(get_authz_engine)

    # Who did what
    entries = await audit_report(db_session, "procurement_items", project_id=UUID(project_id))
    assert [(e.change_type, e.changed_by) for e in entries] == [
        (ChangeType.UPDATED, f"portal:{contractor_token.id}"),
        (ChangeType.CREATED, str(member.id)),
    ]
    assert "expected_delivery" in entries[0].changed_fields
    assert "name" not in entries[0].changed_fields
