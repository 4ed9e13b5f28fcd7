import pytest


@pytest.fixture
def xanax_id(client):
    resp = client.post("/api/substances", json={"name": "Xanax"})
    return resp.json()["id"]


def _dose(client, substance_id, **body):
    return client.post(f"/api/substances/{substance_id}/doses", json=body)


# ── Reference data ───────────────────────────────────────────────────

def test_status(client):
    resp = client.get("/api/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "dosetrack"
    assert data["status"] == "ok"


def test_api_key_is_checked(client, monkeypatch):
    monkeypatch.setattr("dosetrack.api.routes.API_KEY", "secret")
    assert client.get("/api/substances").status_code == 401
    assert client.get("/api/substances", headers={"X-API-Key": "secret"}).status_code == 200


def test_profile_lookup(client):
    data = client.get("/api/profiles/xanax").json()
    assert data["key"] == "alprazolam"
    assert data["totalMinutes"] > 0
    assert "safetyMessage" in data["peak"]
    assert data["safetyInfo"]["peak"]


def test_profile_safety(client):
    resp = client.get("/api/profiles/xanax/safety", params={"phase": "peak"})
    assert resp.status_code == 200
    assert resp.json()["phase"] == "peak"
    assert client.get("/api/profiles/xanax/safety", params={"phase": "lunch"}).status_code == 422


def test_catalog_search(client):
    data = client.get("/api/catalog", params={"q": "meth"}).json()
    assert "Methylphenidate" in [e["name"] for e in data["entries"]]
    assert "Stimulants" in data["categories"]


# ── Substances ───────────────────────────────────────────────────────

def test_create_substance_uses_catalog(client):
    resp = client.post("/api/substances", json={"name": "Xanax"})
    assert resp.status_code == 201
    data = resp.json()
    assert data["category"] == "Benzodiazepines"
    assert data["settings"]["minTimeBetweenDosesHours"] == 8
    assert [s["id"] for s in client.get("/api/substances").json()] == [data["id"]]


def test_create_needs_a_name(client):
    assert client.post("/api/substances", json={"name": ""}).status_code == 422


def test_unknown_substance_is_404(client):
    assert client.get("/api/substances/nope").status_code == 404
    assert client.get("/api/substances/nope/safety").status_code == 404
    assert _dose(client, "nope").status_code == 404


def test_update_settings(client, xanax_id):
    resp = client.patch(f"/api/substances/{xanax_id}/settings", json={"currentSupply": 10, "maxDailyDoses": 0})
    assert resp.status_code == 200
    settings = resp.json()["settings"]
    assert settings["currentSupply"] == 10
    assert settings["maxDailyDoses"] is None
    assert settings["features"]["supplyManagement"] is True

    bad = client.patch(f"/api/substances/{xanax_id}/settings", json={"minTimeBetweenDosesHours": 0})
    assert bad.status_code == 422


def test_delete_substance(client, xanax_id):
    resp = client.delete(f"/api/substances/{xanax_id}")
    assert resp.json() == {"deleted": xanax_id, "status": "ok"}
    assert client.get("/api/substances").json() == []


# ── Doses ────────────────────────────────────────────────────────────

def test_unsafe_dose_and_override(client, xanax_id):
    assert _dose(client, xanax_id, timestamp="2024-06-10T08:00:00").status_code == 201

    refused = _dose(client, xanax_id, timestamp="2024-06-10T09:00:00")
    assert refused.status_code == 409
    detail = refused.json()["detail"]
    assert detail["verdict"]["tooSoon"] is True
    assert detail["message"].startswith("Wait at least 8h")

    assert _dose(client, xanax_id, timestamp="2024-06-10T09:00:00", override=True).status_code == 422

    accepted = _dose(client, xanax_id, timestamp="2024-06-10T09:00:00",
                     override=True, overrideReason="panic attack")
    assert accepted.status_code == 201
    dose = accepted.json()["dose"]
    assert dose["status"] == "override"
    assert dose["overrideReason"] == "panic attack"


def test_bad_timestamp_is_422(client, xanax_id):
    assert _dose(client, xanax_id, timestamp="soon").status_code == 422


def test_edit_and_delete_dose(client, xanax_id):
    dose_id = _dose(client, xanax_id, timestamp="2024-06-10T08:00:00").json()["dose"]["id"]

    edited = client.patch(f"/api/substances/{xanax_id}/doses/{dose_id}", json={"notes": "after breakfast"})
    assert edited.status_code == 200
    assert edited.json()["doses"][0]["notes"] == "after breakfast"

    resp = client.delete(f"/api/substances/{xanax_id}/doses/{dose_id}")
    assert resp.json()["status"] == "ok"
    assert client.get(f"/api/substances/{xanax_id}").json()["doses"] == []
    assert client.delete(f"/api/substances/{xanax_id}/doses/{dose_id}").status_code == 404


# ── Queries ──────────────────────────────────────────────────────────

def test_query_endpoints(client, xanax_id):
    client.post("/api/substances", json={"name": "Oxycodone"})
    _dose(client, xanax_id, timestamp="2024-06-10T11:00:00")

    safety = client.get(f"/api/substances/{xanax_id}/safety").json()
    assert safety["safe"] is False

    later = client.get(f"/api/substances/{xanax_id}/safety", params={"timestamp": "2024-06-10T20:00:00"}).json()
    assert later["safe"] is True

    next_dose = client.get(f"/api/substances/{xanax_id}/next-dose").json()
    assert next_dose["ready"] is False
    assert next_dose["countdown"] == "7h"

    phase = client.get(f"/api/substances/{xanax_id}/phase").json()
    assert phase["phase"] != "none"

    [interaction] = client.get(f"/api/substances/{xanax_id}/interactions").json()
    assert interaction["substanceName"] == "Oxycodone"
    assert interaction["severity"] == "high"

    stats = client.get(f"/api/substances/{xanax_id}/stats").json()
    assert stats["total_doses"] == 1
    assert stats["supply"]["status"] == "untracked"


def test_overview(client, xanax_id):
    rows = client.get("/api/overview").json()
    assert len(rows) == 1
    assert rows[0]["substance"]["id"] == xanax_id
    assert rows[0]["nextDose"]["ready"] is True


def test_import(client):
    legacy = {"name": "Speed", "category": "Sentralstimulerende", "minTimeBetweenDoses": 6}
    resp = client.post("/api/import", json={"drugs": [legacy, {"name": ""}]})
    assert resp.json() == {"imported": 1, "rejected": 1, "status": "ok"}
    [speed] = client.get("/api/substances").json()
    assert speed["settings"]["minTimeBetweenDosesHours"] == 6

    assert client.post("/api/import", json={"drugs": "nope"}).status_code == 422


# ── Phase stream ─────────────────────────────────────────────────────

def test_phase_stream(client, xanax_id):
    _dose(client, xanax_id, timestamp="2024-06-10T11:30:00")
    with client.websocket_connect(f"/api/ws/phase/{xanax_id}") as ws:
        first = ws.receive_json()
        assert first["phase"] != "none"
        assert "progressPercent" in first
        ws.send_text("refresh")
        assert ws.receive_json()["phase"] == first["phase"]


def test_phase_stream_unknown_substance(client):
    with client.websocket_connect("/api/ws/phase/nope") as ws:
        assert "error" in ws.receive_json()


def test_update_settings_with_older_interval_key(client, xanax_id):
    resp = client.patch(f"/api/substances/{xanax_id}/settings", json={"waitingPeriod": 5})
    assert resp.status_code == 200
    assert resp.json()["settings"]["minTimeBetweenDosesHours"] == 5
