import pytest

import feed_server


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(feed_server, "DB_PATH", str(tmp_path / "feed" / "notifications.db"))
    monkeypatch.setattr(feed_server, "API_KEY", "")
    feed_server.init_db()
    feed_server.app.config["TESTING"] = True
    return feed_server.app.test_client()


def notification(amount="25000", text="Kamu berhasil menerima Rp25.000", device="device-1"):
    return {
        "deviceId": device,
        "packageName": "id.dana",
        "appName": "DANA",
        "title": "Pembayaran diterima",
        "text": text,
        "amountDetected": amount,
        "extras": {"android.title": "Pembayaran diterima"},
    }


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "OK"


def test_webhook_requires_device_and_package(client):
    resp = client.post("/webhook", json={"deviceId": "device-1"})
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_webhook_rejects_schema_violations(client):
    body = dict(notification(), extras="not-an-object")
    assert client.post("/webhook", json=body).status_code == 400


def test_webhook_stores_notification(client):
    resp = client.post("/webhook", json=notification())

    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["id"] == 1


def test_public_feed_lists_donations_newest_first(client):
    client.post("/webhook", json=notification("10000"))
    client.post("/webhook", json=notification(None, text="Promo"))
    client.post("/webhook", json=notification("20000"))

    data = client.get("/public/donations").get_json()["data"]

    assert [r["id"] for r in data] == [3, 1]
    assert set(data[0]) == {"id", "app_name", "title", "text", "amount_detected", "created_at"}
    assert data[0]["amount_detected"] == "20000"


def test_public_feed_limit(client):
    for amount in ("1000", "2000", "3000"):
        client.post("/webhook", json=notification(amount))

    data = client.get("/public/donations?limit=2").get_json()["data"]
    assert [r["amount_detected"] for r in data] == ["3000", "2000"]


def test_metadata_update_is_returned_in_feed(client):
    client.post("/webhook", json=notification())

    resp = client.put("/public/donations", json={"id": 1, "donorName": "Budi", "message": "Halo", "gifUrl": None})
    assert resp.status_code == 200

    record = client.get("/public/donations").get_json()["data"][0]
    assert record["donorName"] == "Budi"
    assert record["message"] == "Halo"
    assert "gifUrl" not in record


def test_metadata_update_for_unknown_record(client):
    resp = client.put("/public/donations", json={"id": 42, "donorName": "Budi"})
    assert resp.status_code == 404


def test_metadata_update_requires_id(client):
    assert client.put("/public/donations", json={"donorName": "Budi"}).status_code == 400


def test_api_key_protects_private_routes(client, monkeypatch):
    monkeypatch.setattr(feed_server, "API_KEY", "secret")

    assert client.post("/webhook", json=notification()).status_code == 401
    assert client.get("/notifications").status_code == 401
    assert client.post("/webhook", json=notification(), headers={"x-api-key": "secret"}).status_code == 200
    assert client.get("/public/donations").status_code == 200


def test_devices_count_notifications(client):
    client.post("/webhook", json=notification())
    client.post("/webhook", json=notification())
    client.post("/webhook", json=notification(device="device-2"))

    devices = {d["device_id"]: d for d in client.get("/devices").get_json()["data"]}
    assert devices["device-1"]["total_notifications"] == 2
    assert devices["device-2"]["total_notifications"] == 1


def test_notifications_filter_by_device(client):
    client.post("/webhook", json=notification())
    client.post("/webhook", json=notification(device="device-2"))

    body = client.get("/notifications?device_id=device-2").get_json()
    assert body["count"] == 1
    assert body["data"][0]["device_id"] == "device-2"


def test_stats(client):
    client.post("/webhook", json=notification())
    client.post("/webhook", json=notification(device="device-2"))

    data = client.get("/stats").get_json()["data"]
    assert data["totalNotifications"] == 2
    assert data["totalDevices"] == 2
    assert data["topApps"][0]["count"] == 2


def test_unknown_route(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "error": "Endpoint not found"}


def test_webhook_rejects_non_object_body(client):
    for body in ([1], "deviceId", 42):
        resp = client.post("/webhook", json=body)
        assert resp.status_code == 400, body
        assert resp.get_json()["success"] is False


def test_metadata_update_rejects_non_object_body(client):
    assert client.put("/public/donations", json=[{"id": 1}]).status_code == 400
