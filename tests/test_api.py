import inspect

from conftest import ADMIN_ID, CLIENT_ID, PROVIDER_ID, auth_headers, next_weekday

from mercado_oficio.errors import EscrowFailure
from mercado_oficio.main import app

CLIENT = auth_headers(CLIENT_ID, "CLIENTE")
PROVIDER = auth_headers(PROVIDER_ID, "TRABAJADOR")
ADMIN = auth_headers(ADMIN_ID, "ADMIN")


def _create_and_respond(api):
    r = api.post("/budgets", json={"serviceId": 1, "problemDescription": "Leaking kitchen faucet"}, headers=CLIENT)
    assert r.status_code == 201, r.text
    budget_id = r.json()["id"]

    r = api.put(
        f"/budgets/{budget_id}/respond",
        json={"estimatedHours": 4, "materialsCost": 50, "solutionDescription": "Cambio de cartucho"},
        headers=PROVIDER,
    )
    assert r.status_code == 200, r.text
    return budget_id


def _schedule(api, budget_id, slots):
    return api.put(f"/budgets/{budget_id}/schedule", json={"slots": slots}, headers=CLIENT)


def _full_slots():
    return [
        {"date": next_weekday(0).isoformat(), "startTime": "09:00", "endTime": "11:00"},
        {"date": next_weekday(0, 1).isoformat(), "startTime": "09:00", "endTime": "11:00"},
    ]


def test_health(api):
    assert api.get("/health").json() == {"status": "healthy"}


def test_requests_without_token_are_rejected(api):
    r = api.get("/budgets/1")
    assert r.status_code in (401, 403)


def test_bad_token_is_401(api):
    r = api.get("/budgets/1", headers={"Authorization": "Bearer not.a.token"})
    assert r.status_code == 401


def test_budget_to_paid_milestone_over_http(api, escrow):
    budget_id = _create_and_respond(api)

    budget = api.get(f"/budgets/{budget_id}", headers=CLIENT).json()
    assert budget["total"] == 150.0
    assert budget["responded"] is True
    assert budget["hoursRemaining"] == 4.0

    r = _schedule(api, budget_id, _full_slots())
    assert r.status_code == 200, r.text
    assert r.json()["hoursRemaining"] == 0.0

    r = api.post(f"/budgets/{budget_id}/approve", headers=CLIENT)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["milestonesCreated"] == 2
    assert body["budget"]["state"] == "APPROVED"

    milestones = api.get(f"/milestones/budget/{budget_id}", headers=PROVIDER).json()
    assert [m["sequenceNumber"] for m in milestones] == [1, 2]
    assert sum(m["amount"] for m in milestones) == 150.0
    milestone_id = milestones[0]["id"]

    r = api.post(f"/milestones/{milestone_id}/complete", json={"comment": "Listo"}, headers=PROVIDER)
    assert r.json()["state"] == "COMPLETADO"
    r = api.post(f"/milestones/{milestone_id}/approve", headers=CLIENT)
    assert r.json()["state"] == "APROBADO_CLIENTE"

    r = api.post(f"/milestones/{milestone_id}/release", headers=CLIENT)
    assert r.status_code == 200, r.text
    assert r.json()["newState"] == "PAGADO"
    assert r.json()["amountReleased"] == 75.0

    r = api.post(f"/milestones/{milestone_id}/release", headers=CLIENT)
    assert r.status_code == 409
    assert r.json()["error"] == "invalid_state"
    assert r.json()["currentState"] == "PAGADO"
    assert len(escrow.released) == 1


def test_incomplete_schedule_reports_remaining_hours(api):
    budget_id = _create_and_respond(api)
    _schedule(api, budget_id, _full_slots()[:1])

    r = api.post(f"/budgets/{budget_id}/approve", headers=CLIENT)

    assert r.status_code == 400
    assert r.json()["error"] == "incomplete_schedule"
    assert r.json()["remainingHours"] == 2.0


def test_escrow_outage_on_approve_is_retryable(api, escrow):
    budget_id = _create_and_respond(api)
    _schedule(api, budget_id, _full_slots())
    escrow.fail_open_after = 0

    r = api.post(f"/budgets/{budget_id}/approve", headers=CLIENT)

    assert r.status_code == 503
    assert r.json()["retryable"] is True
    assert "Retry-After" in r.headers
    assert api.get(f"/budgets/{budget_id}", headers=CLIENT).json()["state"] == "PENDING"


def test_escrow_outage_on_release_keeps_milestone_approved(api, escrow):
    budget_id = _create_and_respond(api)
    _schedule(api, budget_id, _full_slots())
    api.post(f"/budgets/{budget_id}/approve", headers=CLIENT)
    milestone_id = api.get(f"/milestones/budget/{budget_id}", headers=CLIENT).json()[0]["id"]
    api.post(f"/milestones/{milestone_id}/complete", headers=PROVIDER)
    api.post(f"/milestones/{milestone_id}/approve", headers=CLIENT)
    escrow.release_error = EscrowFailure("timeout", retryable=True)

    r = api.post(f"/milestones/{milestone_id}/release", headers=CLIENT)

    assert r.status_code == 503
    status = api.get(f"/milestones/{milestone_id}/status", headers=CLIENT).json()
    assert status["milestone"]["state"] == "APROBADO_CLIENTE"
    assert status["openDispute"] is None


def test_invalid_slot_time_is_422(api):
    budget_id = _create_and_respond(api)

    r = _schedule(api, budget_id, [{"date": next_weekday(0).isoformat(), "startTime": "25:00", "endTime": "26:00"}])

    assert r.status_code == 422


def test_slot_outside_availability_is_400(api):
    budget_id = _create_and_respond(api)

    r = _schedule(api, budget_id, [{"date": next_weekday(1).isoformat(), "startTime": "09:00", "endTime": "10:00"}])

    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"


def test_wrong_party_is_403(api):
    budget_id = _create_and_respond(api)

    r = api.post(f"/budgets/{budget_id}/approve", headers=PROVIDER)

    assert r.status_code == 403
    assert r.json()["error"] == "not_authorized"


def test_candidate_dates_and_responded_flag(api):
    budget_id = _create_and_respond(api)

    r = api.get(f"/budgets/{budget_id}/candidate-dates", params={"weekday": "miércoles"}, headers=CLIENT)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["weekday"] == "MIERCOLES"
    assert body["windows"] == [{"weekday": "MIERCOLES", "startTime": "14:00", "endTime": "18:00"}]
    assert body["dates"]

    assert api.get(f"/budgets/{budget_id}/responded", headers=CLIENT).json() == {
        "budgetId": budget_id,
        "responded": True,
    }
    assert len(api.get(f"/budgets/{budget_id}/availability", headers=PROVIDER).json()) == 2


def test_upload_download_and_delete_attachment(api):
    r = api.post("/budgets", json={"serviceId": 1, "problemDescription": "Mancha de humedad"}, headers=CLIENT)
    budget_id = r.json()["id"]
    png = b"\x89PNG\r\n\x1a\n" + b"1" * 32

    r = api.post(
        f"/budgets/{budget_id}/files",
        files={"file": ("pared.png", png, "image/png")},
        headers=CLIENT,
    )
    assert r.status_code == 201, r.text
    file_id = r.json()["id"]
    assert r.json()["kind"] == "IMAGEN"

    r = api.get(f"/budgets/files/{file_id}", headers=PROVIDER)
    assert r.status_code == 200
    assert r.content == png
    assert r.headers["content-type"] == "image/png"

    r = api.post(
        f"/budgets/{budget_id}/files",
        files={"file": ("notas.txt", b"hola", "text/plain")},
        headers=CLIENT,
    )
    assert r.status_code == 400

    assert api.delete(f"/budgets/files/{file_id}", headers=CLIENT).status_code == 204
    assert api.get(f"/budgets/{budget_id}/files", headers=CLIENT).json() == []


def test_listings(api):
    budget_id = _create_and_respond(api)
    api.post("/budgets", json={"serviceId": 1, "problemDescription": "Pierde el tanque"}, headers=CLIENT)

    mine = api.get(f"/budgets/client/{CLIENT_ID}", headers=CLIENT).json()
    actionable = api.get(f"/budgets/client/{CLIENT_ID}", params={"actionable": "true"}, headers=CLIENT).json()

    assert len(mine) == 2
    assert [b["id"] for b in actionable] == [budget_id]
    assert api.get("/budgets/state/PENDING", headers=CLIENT).status_code == 403
    assert len(api.get("/budgets/state/PENDING", headers=ADMIN).json()) == 2


def test_delete_budget(api):
    r = api.post("/budgets", json={"serviceId": 1, "problemDescription": "Canilla rota en el baño"}, headers=CLIENT)
    budget_id = r.json()["id"]

    assert api.delete(f"/budgets/{budget_id}", headers=CLIENT).status_code == 204
    assert api.get(f"/budgets/{budget_id}", headers=CLIENT).status_code == 404


def test_quote_hours_must_be_whole_minutes(api):
    r = api.post("/budgets", json={"serviceId": 1, "problemDescription": "Cambiar la bomba de agua"}, headers=CLIENT)
    budget_id = r.json()["id"]

    r = api.put(
        f"/budgets/{budget_id}/respond",
        json={"estimatedHours": 1.33, "materialsCost": 0, "solutionDescription": "Cambio de bomba"},
        headers=PROVIDER,
    )

    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"
    assert api.get(f"/budgets/{budget_id}/responded", headers=CLIENT).json()["responded"] is False


def test_escrow_routes_run_off_the_event_loop():
    escrow_routes = {
        ("POST", "/budgets/{budget_id}/approve"),
        ("POST", "/milestones/{milestone_id}/release"),
        ("POST", "/milestones/{milestone_id}/cancel"),
    }
    found = set()

    for route in app.routes:
        for method in getattr(route, "methods", None) or ():
            if (method, route.path) in escrow_routes:
                assert not inspect.iscoroutinefunction(route.endpoint), route.path
                found.add((method, route.path))

    assert found == escrow_routes
