import os
import sys
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from acheiumpro import config
from acheiumpro.auth import create_access_token
from acheiumpro.main import app
from acheiumpro.models import Role
from acheiumpro.routers.requests import raise_marketplace_http_error
from acheiumpro.services.marketplace_store import MarketplaceTransactionError, marketplace_store
from acheiumpro.services.proposal_workflow import proposal_workflow
from acheiumpro.services.user_store import user_store

client = TestClient(app)


def _register(role="client", name=None):
    email = f"{role}-{uuid4().hex[:10]}@example.com"
    response = client.post(
        "/auth/register",
        json={
            "name": name or f"{role.title()} {uuid4().hex[:4]}",
            "email": email,
            "password": "secret123",
            "role": role,
            "location": "São Paulo",
        },
    )
    assert response.status_code == 200
    payload = response.json()
    return payload["user"], {"Authorization": f"Bearer {payload['access_token']}"}


def _admin():
    admin = user_store.create_user(
        name="Admin",
        email=f"admin-{uuid4().hex[:10]}@example.com",
        password="secret123",
        role=Role.ADMIN,
    )
    token, _ = create_access_token(admin.id)
    return admin, {"Authorization": f"Bearer {token}"}


def _create_request(headers, **overrides):
    body = {
        "title": "Trocar chuveiro",
        "description": "Chuveiro elétrico queimado, precisa trocar",
        "category": "eletricista",
        "location": "Pinheiros, São Paulo",
        "budget": "150-250",
        "urgency": "high",
    }
    body.update(overrides)
    response = client.post("/requests", json=body, headers=headers)
    assert response.status_code == 200
    assert response.json()["success"] is True
    return response.json()["id"]


def _submit_proposal(headers, request_id, price=180.0, message="Posso ir amanhã"):
    response = client.post(
        f"/requests/{request_id}/proposals",
        json={"proposedPrice": price, "message": message},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()["id"]


def _proposals_by_id(headers, request_id):
    response = client.get(f"/requests/{request_id}/proposals", headers=headers)
    assert response.status_code == 200
    return {row["id"]: row for row in response.json()}


def _notification_titles(headers):
    response = client.get("/notifications", headers=headers)
    assert response.status_code == 200
    return [row["title"] for row in response.json()["notifications"]]


def test_health_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_register_login_and_me():
    email = f"login-{uuid4().hex[:10]}@example.com"
    register = client.post(
        "/auth/register",
        json={"name": "Maria", "email": email, "password": "secret123", "role": "provider"},
    )
    assert register.status_code == 200
    assert register.json()["user"]["role"] == "provider"

    login = client.post("/auth/login", json={"email": email.upper(), "password": "secret123"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == email
    assert me.json()["role"] == "provider"


def test_register_duplicate_email_conflicts():
    email = f"dup-{uuid4().hex[:10]}@example.com"
    body = {"name": "Ana", "email": email, "password": "secret123"}
    assert client.post("/auth/register", json=body).status_code == 200

    again = client.post("/auth/register", json=body)
    assert again.status_code == 409
    assert again.json() == {"error": "Email already registered"}


def test_register_cannot_pick_admin_role():
    response = client.post(
        "/auth/register",
        json={"name": "Eve", "email": f"eve-{uuid4().hex[:6]}@example.com", "password": "secret123", "role": "admin"},
    )
    assert response.status_code == 400
    assert "error" in response.json()


def test_login_wrong_password_is_unauthorized():
    user, _ = _register()
    response = client.post("/auth/login", json={"email": user["email"], "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}


def test_missing_and_invalid_token_are_unauthorized():
    missing = client.get("/requests")
    assert missing.status_code == 401
    assert missing.json() == {"error": "Unauthorized"}

    invalid = client.get("/requests", headers={"Authorization": "Bearer not-a-token"})
    assert invalid.status_code == 401
    assert invalid.json() == {"error": "Invalid token"}


def test_suspended_user_token_is_rejected():
    user, headers = _register()
    user_store.set_status(user["id"], "suspended")
    response = client.get("/auth/me", headers=headers)
    assert response.status_code == 401


def test_only_clients_create_requests():
    _, provider_headers = _register("provider")
    response = client.post(
        "/requests",
        json={"title": "x", "description": "y", "category": "z", "location": "w"},
        headers=provider_headers,
    )
    assert response.status_code == 401


def test_create_request_validation_error_is_400():
    _, client_headers = _register()
    missing_title = client.post(
        "/requests",
        json={"description": "y", "category": "z", "location": "w"},
        headers=client_headers,
    )
    assert missing_title.status_code == 400
    assert "error" in missing_title.json()

    blank_title = client.post(
        "/requests",
        json={"title": "  ", "description": "y", "category": "z", "location": "w"},
        headers=client_headers,
    )
    assert blank_title.status_code == 400
    assert blank_title.json() == {"error": "Missing required fields: title"}


def test_request_visibility_by_role():
    _, owner_headers = _register()
    _, other_client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(owner_headers)

    owner_ids = [row["id"] for row in client.get("/requests", headers=owner_headers).json()]
    assert request_id in owner_ids

    other_ids = [row["id"] for row in client.get("/requests", headers=other_client_headers).json()]
    assert request_id not in other_ids

    pending = client.get("/requests", params={"status": "pending"}, headers=provider_headers)
    assert pending.status_code == 200
    assert request_id in [row["id"] for row in pending.json()]

    assert client.get(f"/requests/{request_id}", headers=provider_headers).status_code == 200
    assert client.get(f"/requests/{request_id}", headers=other_client_headers).status_code == 403
    assert client.get("/requests/99999999", headers=owner_headers).status_code == 404


def test_list_requests_rejects_unknown_status():
    _, headers = _register()
    response = client.get("/requests", params={"status": "archived"}, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid status value: archived"}


def test_accept_proposal_rejects_siblings_and_starts_request():
    _, client_headers = _register()
    provider_one, provider_one_headers = _register("provider")
    provider_two, provider_two_headers = _register("provider")
    request_id = _create_request(client_headers)
    p1 = _submit_proposal(provider_one_headers, request_id, price=200)
    p2 = _submit_proposal(provider_two_headers, request_id, price=150)

    listed = client.get(f"/requests/{request_id}", headers=client_headers).json()
    assert listed["proposal_count"] == 2
    assert "Nova proposta" in _notification_titles(client_headers)

    response = client.patch(f"/proposals/{p1}", json={"action": "accept"}, headers=client_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True}

    proposals = _proposals_by_id(client_headers, request_id)
    assert proposals[p1]["status"] == "accepted"
    assert proposals[p2]["status"] == "rejected"
    assert proposals[p1]["provider_name"] == provider_one["name"]

    request = client.get(f"/requests/{request_id}", headers=client_headers).json()
    assert request["status"] == "in_progress"
    assert request["provider_id"] == provider_one["id"]

    assert _notification_titles(provider_one_headers).count("Proposta aceita") == 1
    assert "Proposta rejeitada" in _notification_titles(provider_two_headers)
    assert provider_two["id"] != provider_one["id"]


def test_second_accept_on_same_request_conflicts():
    _, client_headers = _register()
    _, provider_one_headers = _register("provider")
    _, provider_two_headers = _register("provider")
    request_id = _create_request(client_headers)
    p1 = _submit_proposal(provider_one_headers, request_id)
    p2 = _submit_proposal(provider_two_headers, request_id)

    assert client.patch(f"/proposals/{p1}", json={"action": "accept"}, headers=client_headers).status_code == 200
    second = client.patch(f"/proposals/{p2}", json={"action": "accept"}, headers=client_headers)
    assert second.status_code == 409

    proposals = _proposals_by_id(client_headers, request_id)
    assert [row["status"] for row in proposals.values()].count("accepted") == 1


def test_reject_is_idempotent_and_leaves_request_pending():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)

    for _ in range(2):
        response = client.patch(f"/proposals/{proposal_id}", json={"action": "reject"}, headers=client_headers)
        assert response.status_code == 200

    assert _proposals_by_id(client_headers, request_id)[proposal_id]["status"] == "rejected"
    assert client.get(f"/requests/{request_id}", headers=client_headers).json()["status"] == "pending"


def test_resolve_proposal_requires_owner_or_admin():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    _, other_client_headers = _register()
    _, admin_headers = _admin()
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)

    by_provider = client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=provider_headers)
    assert by_provider.status_code == 403
    assert by_provider.json() == {"error": "Not allowed"}

    by_stranger = client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=other_client_headers)
    assert by_stranger.status_code == 403

    by_admin = client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=admin_headers)
    assert by_admin.status_code == 200
    assert client.get(f"/requests/{request_id}", headers=client_headers).json()["status"] == "in_progress"


def test_resolve_missing_proposal_is_404_without_notifications():
    _, client_headers = _register()
    before = _notification_titles(client_headers)

    response = client.patch("/proposals/99999999", json={"action": "accept"}, headers=client_headers)
    assert response.status_code == 404
    assert response.json() == {"error": "Proposal not found"}
    assert _notification_titles(client_headers) == before


def test_resolve_proposal_bad_action_is_400():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)

    response = client.patch(f"/proposals/{proposal_id}", json={"action": "maybe"}, headers=client_headers)
    assert response.status_code == 400
    assert "error" in response.json()
    assert _proposals_by_id(client_headers, request_id)[proposal_id]["status"] == "pending"


def test_resolve_proposal_requires_token():
    response = client.patch("/proposals/1", json={"action": "accept"})
    assert response.status_code == 401


def test_submit_proposal_rules():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(client_headers)

    by_client = client.post(f"/requests/{request_id}/proposals", json={"proposedPrice": 100}, headers=client_headers)
    assert by_client.status_code == 401

    zero_price = client.post(f"/requests/{request_id}/proposals", json={"proposedPrice": 0}, headers=provider_headers)
    assert zero_price.status_code == 400

    _submit_proposal(provider_headers, request_id)
    duplicate = client.post(f"/requests/{request_id}/proposals", json={"proposedPrice": 90}, headers=provider_headers)
    assert duplicate.status_code == 409

    missing = client.post("/requests/99999999/proposals", json={"proposedPrice": 90}, headers=provider_headers)
    assert missing.status_code == 404


def test_withdraw_proposal():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    _, other_provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)

    assert client.delete(f"/proposals/{proposal_id}", headers=other_provider_headers).status_code == 403

    response = client.delete(f"/proposals/{proposal_id}", headers=provider_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert proposal_id not in _proposals_by_id(client_headers, request_id)
    assert client.delete(f"/proposals/{proposal_id}", headers=provider_headers).status_code == 404


def test_provider_status_updates_create_one_appointment():
    _, client_headers = _register()
    provider, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)
    assert client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=client_headers).status_code == 200

    first = client.patch(
        f"/requests/{request_id}",
        json={"status": "accepted", "scheduled_at": "2026-11-03T14:00:00Z"},
        headers=provider_headers,
    )
    assert first.status_code == 200
    assert first.json() == {"message": "Request updated successfully"}

    second = client.patch(
        f"/requests/{request_id}",
        json={"status": "accepted", "scheduled_at": "2026-11-04T09:30:00Z"},
        headers=provider_headers,
    )
    assert second.status_code == 200

    appointments = marketplace_store.appointments_for_request(request_id)
    assert len(appointments) == 1
    assert appointments[0].provider_id == provider["id"]
    assert appointments[0].status == "confirmed"
    assert appointments[0].scheduled_for.startswith("2026-11-04T09:30:00")

    listed = client.get("/appointments", headers=client_headers)
    assert listed.status_code == 200
    assert [row["request_id"] for row in listed.json()].count(request_id) == 1
    assert "Solicitação atualizada" in _notification_titles(client_headers)

    completed = client.patch(f"/requests/{request_id}", json={"status": "completed"}, headers=provider_headers)
    assert completed.status_code == 200
    assert marketplace_store.appointments_for_request(request_id)[0].status == "completed"

    reopened = client.patch(f"/requests/{request_id}", json={"status": "pending"}, headers=provider_headers)
    assert reopened.status_code == 409


def test_status_update_authorization():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    _, other_provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)
    client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=client_headers)

    by_client = client.patch(f"/requests/{request_id}", json={"status": "completed"}, headers=client_headers)
    assert by_client.status_code == 403

    by_other = client.patch(f"/requests/{request_id}", json={"status": "completed"}, headers=other_provider_headers)
    assert by_other.status_code == 404
    assert by_other.json() == {"error": "Request not found or unauthorized"}

    bad_status = client.patch(f"/requests/{request_id}", json={"status": "in_progress"}, headers=provider_headers)
    assert bad_status.status_code == 400

    bad_date = client.patch(
        f"/requests/{request_id}",
        json={"status": "accepted", "scheduled_at": "next tuesday"},
        headers=provider_headers,
    )
    assert bad_date.status_code == 400


def test_cancel_and_delete_request():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    _submit_proposal(provider_headers, request_id)

    assert client.post(f"/requests/{request_id}/cancel", headers=provider_headers).status_code == 403
    cancelled = client.post(f"/requests/{request_id}/cancel", headers=client_headers)
    assert cancelled.status_code == 200
    assert client.get(f"/requests/{request_id}", headers=client_headers).json()["status"] == "cancelled"

    late = client.post(f"/requests/{request_id}/proposals", json={"proposedPrice": 50}, headers=provider_headers)
    assert late.status_code == 409
    assert client.post(f"/requests/{request_id}/cancel", headers=client_headers).status_code == 409

    deleted = client.delete(f"/requests/{request_id}", headers=client_headers)
    assert deleted.status_code == 200
    assert client.get(f"/requests/{request_id}", headers=client_headers).status_code == 404


def test_notifications_inbox_flow():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    _submit_proposal(provider_headers, request_id)

    unread = client.get("/notifications", params={"status": "unread"}, headers=client_headers)
    assert unread.status_code == 200
    rows = unread.json()["notifications"]
    assert len(rows) == 1
    assert rows[0]["metadata"]["requestId"] == request_id
    notification_id = rows[0]["id"]

    read = client.post(f"/notifications/{notification_id}/read", headers=client_headers)
    assert read.status_code == 200
    assert read.json()["read_at"] is not None
    assert client.get("/notifications", params={"status": "unread"}, headers=client_headers).json() == {
        "notifications": []
    }

    # Another user's notification is not visible
    assert client.post(f"/notifications/{notification_id}/read", headers=provider_headers).status_code == 404


def test_notifications_mark_many_read():
    _, client_headers = _register()
    _, provider_one_headers = _register("provider")
    _, provider_two_headers = _register("provider")
    request_id = _create_request(client_headers)
    _submit_proposal(provider_one_headers, request_id)
    _submit_proposal(provider_two_headers, request_id)

    ids = [row["id"] for row in client.get("/notifications", headers=client_headers).json()["notifications"]]
    assert len(ids) == 2

    empty = client.patch("/notifications", json={"ids": []}, headers=client_headers)
    assert empty.status_code == 400

    response = client.patch("/notifications", json={"ids": ids}, headers=client_headers)
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    unread = client.get("/notifications", params={"status": "unread"}, headers=client_headers)
    assert unread.json()["notifications"] == []


def test_register_device_token():
    _, headers = _register("provider")
    response = client.post(
        "/notifications/register-device",
        json={"device_token": f"token-{uuid4().hex}", "platform": "android"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    bad_platform = client.post(
        "/notifications/register-device",
        json={"device_token": "x", "platform": "desktop"},
        headers=headers,
    )
    assert bad_platform.status_code == 400


def _assigned_request(scheduled_at=None):
    """A request whose proposal was accepted and confirmed by the provider."""
    client_user, client_headers = _register()
    provider, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)
    assert client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=client_headers).status_code == 200
    body = {"status": "accepted"}
    if scheduled_at:
        body["scheduled_at"] = scheduled_at
    assert client.patch(f"/requests/{request_id}", json=body, headers=provider_headers).status_code == 200
    return {
        "client": client_user,
        "client_headers": client_headers,
        "provider": provider,
        "provider_headers": provider_headers,
        "request_id": request_id,
        "proposal_id": proposal_id,
    }


def test_confirmed_request_rejects_accepting_another_proposal():
    _, client_headers = _register()
    provider_one, provider_one_headers = _register("provider")
    _, provider_two_headers = _register("provider")
    request_id = _create_request(client_headers)
    p1 = _submit_proposal(provider_one_headers, request_id)
    p2 = _submit_proposal(provider_two_headers, request_id)
    assert client.patch(f"/proposals/{p1}", json={"action": "accept"}, headers=client_headers).status_code == 200
    confirmed = client.patch(
        f"/requests/{request_id}",
        json={"status": "accepted", "scheduled_at": "2026-11-05T10:00:00Z"},
        headers=provider_one_headers,
    )
    assert confirmed.status_code == 200

    switch = client.patch(f"/proposals/{p2}", json={"action": "accept"}, headers=client_headers)
    assert switch.status_code == 409

    request = client.get(f"/requests/{request_id}", headers=client_headers).json()
    assert request["status"] == "accepted"
    assert request["provider_id"] == provider_one["id"]
    [appointment] = marketplace_store.appointments_for_request(request_id)
    assert appointment.provider_id == provider_one["id"]
    assert _proposals_by_id(client_headers, request_id)[p1]["status"] == "accepted"


def test_accepted_proposal_cannot_be_withdrawn():
    flow = _assigned_request()
    response = client.delete(f"/proposals/{flow['proposal_id']}", headers=flow["provider_headers"])
    assert response.status_code == 409
    assert response.json() == {"error": "Accepted proposals cannot be withdrawn"}
    assert _proposals_by_id(flow["client_headers"], flow["request_id"])[flow["proposal_id"]]["status"] == "accepted"


def test_reopening_confirmed_request_cancels_appointment():
    flow = _assigned_request(scheduled_at="2026-11-06T08:00:00Z")
    reopened = client.patch(
        f"/requests/{flow['request_id']}", json={"status": "pending"}, headers=flow["provider_headers"]
    )
    assert reopened.status_code == 200
    [appointment] = marketplace_store.appointments_for_request(flow["request_id"])
    assert appointment.status == "cancelled"


def test_transaction_error_maps_to_500():
    with pytest.raises(HTTPException) as excinfo:
        raise_marketplace_http_error(MarketplaceTransactionError("Transaction failed and was rolled back"))
    assert excinfo.value.status_code == 500


def test_resolve_proposal_transaction_failure_is_500(monkeypatch):
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)

    def failing_resolve(**kwargs):
        raise MarketplaceTransactionError("Transaction failed and was rolled back")

    monkeypatch.setattr(proposal_workflow.store, "resolve_proposal", failing_resolve)
    response = client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=client_headers)
    assert response.status_code == 500
    assert response.json() == {"error": "Transaction failed and was rolled back"}
    monkeypatch.undo()

    assert _proposals_by_id(client_headers, request_id)[proposal_id]["status"] == "pending"
    assert "Proposta aceita" not in _notification_titles(provider_headers)


def test_startup_seeds_admin(monkeypatch):
    email = f"seeded-{uuid4().hex[:10]}@example.com"
    monkeypatch.setattr(config, "ADMIN_EMAIL", email)
    monkeypatch.setattr(config, "ADMIN_PASSWORD", "secret123")

    with TestClient(app) as startup_client:
        assert startup_client.get("/health").status_code == 200

    admin = user_store.get_user_by_email(email)
    assert admin is not None
    assert admin.role == Role.ADMIN


def test_appointment_update_and_delete():
    flow = _assigned_request(scheduled_at="2026-11-07T15:00:00Z")
    _, outsider_headers = _register()
    [appointment] = marketplace_store.appointments_for_request(flow["request_id"])

    rescheduled = client.patch(
        f"/appointments/{appointment.id}",
        json={"status": "confirmed", "scheduled_for": "2026-11-08T15:00:00Z"},
        headers=flow["client_headers"],
    )
    assert rescheduled.status_code == 200
    assert rescheduled.json() == {"message": "Appointment updated successfully"}
    assert marketplace_store.appointments_for_request(flow["request_id"])[0].scheduled_for.startswith("2026-11-08")
    assert "Agendamento atualizado" in _notification_titles(flow["provider_headers"])

    bad = client.patch(f"/appointments/{appointment.id}", json={"status": "done"}, headers=flow["client_headers"])
    assert bad.status_code == 400
    hidden = client.patch(f"/appointments/{appointment.id}", json={"status": "cancelled"}, headers=outsider_headers)
    assert hidden.status_code == 404

    deleted = client.delete(f"/appointments/{appointment.id}", headers=flow["provider_headers"])
    assert deleted.status_code == 200
    assert deleted.json() == {"message": "Appointment deleted successfully"}
    assert marketplace_store.appointments_for_request(flow["request_id"]) == []
    assert "Agendamento removido" in _notification_titles(flow["client_headers"])
    assert client.delete(f"/appointments/{appointment.id}", headers=flow["provider_headers"]).status_code == 404


def test_message_thread():
    _, client_headers = _register()
    _, provider_headers = _register("provider")
    request_id = _create_request(client_headers)
    proposal_id = _submit_proposal(provider_headers, request_id)

    unassigned = client.get(f"/messages/{request_id}", headers=client_headers)
    assert unassigned.status_code == 404

    client.patch(f"/proposals/{proposal_id}", json={"action": "accept"}, headers=client_headers)
    sent = client.post(f"/messages/{request_id}", json={"content": "Tem horário amanhã?"}, headers=client_headers)
    assert sent.status_code == 200
    assert sent.json()["message"]["content"] == "Tem horário amanhã?"

    reply = client.post(f"/messages/{request_id}", json={"content": "Sim, às 10h"}, headers=provider_headers)
    assert reply.status_code == 200

    thread = client.get(f"/messages/{request_id}", headers=provider_headers)
    assert thread.status_code == 200
    assert [m["content"] for m in thread.json()["messages"]] == ["Tem horário amanhã?", "Sim, às 10h"]
    assert "Nova mensagem" in _notification_titles(provider_headers)

    empty = client.post(f"/messages/{request_id}", json={}, headers=client_headers)
    assert empty.status_code == 400
    _, outsider_headers = _register("provider")
    assert client.get(f"/messages/{request_id}", headers=outsider_headers).status_code == 403
    assert client.get(f"/messages/{request_id}").status_code == 401


def test_reviews_after_completed_service():
    flow = _assigned_request()
    provider_id = flow["provider"]["id"]

    early = client.post("/reviews", json={"providerId": provider_id, "rating": 5}, headers=flow["client_headers"])
    assert early.status_code == 403

    client.patch(f"/requests/{flow['request_id']}", json={"status": "completed"}, headers=flow["provider_headers"])
    created = client.post(
        "/reviews",
        json={"providerId": provider_id, "rating": 5, "comment": "Excelente"},
        headers=flow["client_headers"],
    )
    assert created.status_code == 201
    assert created.json()["message"] == "Avaliação criada com sucesso"
    review_id = created.json()["reviewId"]

    updated = client.post("/reviews", json={"providerId": provider_id, "rating": 3}, headers=flow["client_headers"])
    assert updated.status_code == 200
    assert updated.json() == {"message": "Avaliação atualizada com sucesso", "reviewId": review_id}

    out_of_range = client.post("/reviews", json={"providerId": provider_id, "rating": 9}, headers=flow["client_headers"])
    assert out_of_range.status_code == 400
    by_provider = client.post("/reviews", json={"providerId": provider_id, "rating": 4}, headers=flow["provider_headers"])
    assert by_provider.status_code == 403

    listed = client.get("/reviews", params={"providerId": provider_id})
    assert listed.status_code == 200
    assert [r["rating"] for r in listed.json()["reviews"]] == [3]
    stats = client.get("/reviews/stats", params={"user_id": provider_id}).json()
    assert stats["total_reviews"] == 1
    assert stats["average_rating"] == 3
    assert stats["rating_distribution"]["3"] == 1

    assert client.delete(f"/reviews/{review_id}", headers=flow["client_headers"]).status_code == 403
    _, admin_headers = _admin()
    assert client.delete(f"/reviews/{review_id}", headers=admin_headers).json() == {"ok": True}
    assert client.get("/reviews", params={"providerId": provider_id}).json()["reviews"] == []


def test_payments_flow():
    flow = _assigned_request()
    request_id = flow["request_id"]

    by_client = client.post("/payments", json={"request_id": request_id, "amount": 180}, headers=flow["client_headers"])
    assert by_client.status_code == 403

    created = client.post(
        "/payments",
        json={"request_id": request_id, "amount": 180, "checkout_url": "https://pay.example.com/x"},
        headers=flow["provider_headers"],
    )
    assert created.status_code == 200
    payment_id = created.json()["paymentId"]
    assert "Novo pagamento disponível" in _notification_titles(flow["client_headers"])

    listed = client.get("/payments", headers=flow["client_headers"]).json()["payments"]
    assert [(p["id"], p["status"]) for p in listed] == [(payment_id, "awaiting_payment")]

    paid = client.patch(f"/payments/{payment_id}", json={"status": "paid"}, headers=flow["client_headers"])
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert "Atualização de pagamento" in _notification_titles(flow["provider_headers"])

    invalid = client.patch(f"/payments/{payment_id}", json={"status": "refunded"}, headers=flow["client_headers"])
    assert invalid.status_code == 400
    _, outsider_headers = _register()
    hidden = client.patch(f"/payments/{payment_id}", json={"status": "paid"}, headers=outsider_headers)
    assert hidden.status_code == 403
