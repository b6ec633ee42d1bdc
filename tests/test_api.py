"""Tests for Signal Store API endpoints."""

from conftest import HEADERS, SESSION_ID

NEW_SESSION = {
    "sessionId": SESSION_ID,
    "deviceId": "dev-1",
    "deviceName": "Armband",
    "deviceType": "sEMG",
    "startTime": "2024-01-01T00:00:00Z",
    "sampleRate": 1000,
}


def batch_payload(start, count=100, width=10):
    samples = [
        {"timestamp": float(t), "values": [float(t)] * width, "sessionId": SESSION_ID}
        for t in range(start, start + count)
    ]
    return {
        "sessionId": SESSION_ID,
        "samples": samples,
        "deviceInfo": {"name": "Armband v2", "address": "AA:BB:CC:DD:EE:FF"},
        "batchInfo": {"size": count, "startTime": float(start), "endTime": float(start + count - 1)},
    }


def create(client):
    res = client.post("/api/sessions", json=NEW_SESSION, headers=HEADERS)
    assert res.status_code == 201
    return res.json()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["success"] is True


def test_create_session(client):
    body = create(client)
    assert body["success"] is True
    assert body["session"]["sessionId"] == SESSION_ID
    assert body["session"]["status"] == "active"
    assert body["session"]["channelCount"] == 10


def test_create_duplicate_session(client):
    create(client)
    res = client.post("/api/sessions", json=NEW_SESSION, headers=HEADERS)
    assert res.status_code == 409
    assert res.json()["error"] == "SessionExists"


def test_missing_principal(client):
    res = client.post("/api/sessions", json=NEW_SESSION)
    assert res.status_code == 401


def test_list_sessions(client):
    create(client)
    res = client.get("/api/sessions?status=active", headers=HEADERS)
    assert res.status_code == 200
    body = res.json()
    assert body["pagination"]["total"] == 1
    assert body["pagination"]["hasMore"] is False
    assert body["sessions"][0]["sessionId"] == SESSION_ID

    res = client.get("/api/sessions", headers={"X-User-Id": "other"})
    assert res.json()["pagination"]["total"] == 0


def test_ingest_batch(client):
    create(client)
    res = client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["samplesProcessed"] == 100
    assert body["chunkIndex"] == 0
    assert body["isTemporary"] is True


def test_ingest_integrity_error(client):
    create(client)
    payload = batch_payload(1)
    payload["batchInfo"]["size"] = 99
    res = client.post("/api/semg/batch", json=payload, headers=HEADERS)
    assert res.status_code == 400
    assert res.json()["error"] == "BatchIntegrityError"


def test_ingest_unknown_session(client):
    res = client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)
    assert res.status_code == 404


def test_ingest_validation_error(client):
    res = client.post("/api/semg/batch", json={"sessionId": "test"}, headers=HEADERS)
    assert res.status_code == 422


def test_finalize_and_query(client):
    create(client)
    client.post("/api/semg/batch", json=batch_payload(101), headers=HEADERS)
    client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)

    res = client.post(f"/api/sessions/{SESSION_ID}/finalize", headers=HEADERS)
    assert res.status_code == 200
    body = res.json()
    assert body["samplesProcessed"] == 200
    assert body["consolidatedChunks"] == 2
    assert body["sessionStatus"] == "completed"

    res = client.get(f"/api/semg/sessions/{SESSION_ID}/data?channels=0,1&maxPoints=50", headers=HEADERS)
    assert res.status_code == 200
    data = res.json()
    assert set(data["channels"]) == {"ch0", "ch1"}
    assert len(data["channels"]["ch0"]) == 50
    assert data["decimationFactor"] == 4
    assert data["stats"]["ch0"]["count"] == 200
    assert data["stats"]["ch0"]["min"] == 1.0
    timestamps = [p["timestamp"] for p in data["channels"]["ch0"]]
    assert timestamps == sorted(timestamps)

    late = client.post("/api/semg/batch", json=batch_payload(201), headers=HEADERS)
    assert late.status_code == 200
    assert late.json()["samplesProcessed"] == 0


def test_query_time_range(client):
    create(client)
    for start in (1, 101, 201):
        client.post("/api/semg/batch", json=batch_payload(start), headers=HEADERS)
    res = client.get(
        f"/api/semg/sessions/{SESSION_ID}/data?startTime=101&endTime=200&channels=2",
        headers=HEADERS,
    )
    data = res.json()
    assert data["chunks"] == 1
    assert data["timeRange"] == [101.0, 200.0]
    assert len(data["channels"]["ch2"]) == 100


def test_query_invalid_channels(client):
    create(client)
    res = client.get(f"/api/semg/sessions/{SESSION_ID}/data?channels=0,11", headers=HEADERS)
    assert res.status_code == 422
    assert res.json()["success"] is False


def test_query_normalized(client):
    create(client)
    client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)
    res = client.get(
        f"/api/semg/sessions/{SESSION_ID}/data?channels=0&normalize=z_score", headers=HEADERS
    )
    data = res.json()
    assert abs(data["normalizedStats"]["ch0"]["mean"]) < 1e-9


def test_session_details_and_stats(client):
    create(client)
    client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)
    res = client.get(f"/api/sessions/{SESSION_ID}", headers=HEADERS)
    session = res.json()["session"]
    assert session["chunks"] == 1
    assert session["actualSamples"] == 100
    assert session["totalSamples"] == 100
    assert session["dataIntegrity"] == 100.0
    assert session["deviceName"] == "Armband v2"

    res = client.get(f"/api/semg/sessions/{SESSION_ID}/stats", headers=HEADERS)
    stats = res.json()["stats"]
    assert stats["processing"]["chunksProcessed"] == 1
    assert stats["session"]["totalSamples"] == 100


def test_session_not_visible_to_other_user(client):
    create(client)
    res = client.get(f"/api/sessions/{SESSION_ID}", headers={"X-User-Id": "other"})
    assert res.status_code == 404


def test_mark_error_then_batch_rejected(client):
    create(client)
    res = client.put(f"/api/sessions/{SESSION_ID}/error", json={"message": "BLE dropped"}, headers=HEADERS)
    assert res.status_code == 200
    res = client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)
    assert res.status_code == 409
    assert res.json()["error"] == "SessionNotActive"


def test_delete_session(client):
    create(client)
    client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)
    client.post("/api/semg/batch", json=batch_payload(101), headers=HEADERS)
    res = client.delete(f"/api/sessions/{SESSION_ID}", headers=HEADERS)
    assert res.status_code == 200
    assert res.json()["deletedChunks"] == 2
    assert client.get(f"/api/sessions/{SESSION_ID}", headers=HEADERS).status_code == 404


def test_filter_specs(client):
    res = client.get("/api/filters/IMU?sampleRate=100")
    assert res.status_code == 200
    assert res.json()["high_cut"] == 20.0
    assert client.get("/api/filters/EEG").status_code == 404


def test_errored_session_finalize_refused(client):
    create(client)
    client.post("/api/semg/batch", json=batch_payload(1), headers=HEADERS)
    client.put(f"/api/sessions/{SESSION_ID}/error", json={"message": "BLE dropped"}, headers=HEADERS)
    res = client.post(f"/api/sessions/{SESSION_ID}/finalize", headers=HEADERS)
    assert res.status_code == 409
    assert res.json()["error"] == "SessionNotActive"
