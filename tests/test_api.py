import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from fleet_dashboard.hub import TelemetryHub
from fleet_dashboard.main import app, channel_events, encode_channel_value, get_hub
from fleet_dashboard.stores import AlertLog

from conftest import FakeAlertStore, FakeDeviceSource, fixed_sample, make_alert, make_device


@pytest.fixture
def hub(fleet):
    hub = TelemetryHub(FakeDeviceSource(fleet), FakeAlertStore(), synthesize=fixed_sample(voltage=231.0))
    hub.publish_devices(fleet)
    app.dependency_overrides[get_hub] = lambda: hub
    yield hub
    app.dependency_overrides.clear()


@pytest.fixture
def client(hub):
    return TestClient(app)


def test_devices_snapshot(client, fleet):
    response = client.get("/devices")
    assert response.status_code == 200
    data = response.json()
    assert [d["serialNumber"] for d in data] == [d.serial_number for d in fleet]


def test_refresh_devices_reloads_registry(client, hub):
    hub.publish_devices([])
    response = client.post("/devices/refresh")
    assert response.status_code == 200
    assert len(response.json()) == 3


def test_fleet_summary(client, hub):
    hub.alerts.publish(AlertLog([make_alert()]))
    response = client.get("/fleet/summary")
    assert response.status_code == 200
    assert response.json() == {"devices": 3, "online": 1, "active": 2, "alerts": 1}


def test_telemetry_latest_and_history(client, hub):
    hub.tick()
    hub.tick()
    latest = client.get("/telemetry").json()
    assert set(latest) == {"1000000001", "1000000003"}
    assert latest["1000000001"]["voltage"] == 231.0

    history = client.get("/devices/1000000001/telemetry", params={"limit": 1}).json()
    assert history["device_id"] == "1000000001"
    assert len(history["data"]) == 1


def test_offline_device_has_no_telemetry(client, hub):
    hub.tick()
    response = client.get("/devices/1000000002/telemetry")
    assert response.status_code == 404


def test_alerts_are_escalated_for_display(client, hub):
    stored = [make_alert(value=245.0, minute=1), make_alert(value=262.0, minute=2)]
    hub.alerts.publish(AlertLog(stored))

    data = client.get("/alerts").json()["alerts"]
    assert [a["severity"] for a in data] == ["warning", "critical"]

    critical = client.get("/alerts", params={"severity": "critical"}).json()["alerts"]
    assert [a["value"] for a in critical] == [262.0]

    warning = client.get("/alerts", params={"severity": "warning"}).json()["alerts"]
    assert [a["value"] for a in warning] == [245.0]

    # storage keeps the original severity
    assert all(a.severity == "warning" for a in hub.alerts.value)


def test_alerts_reject_unknown_severity(client):
    response = client.get("/alerts", params={"severity": "fatal"})
    assert response.status_code == 422


def test_clear_alerts(client, hub):
    hub.alerts.publish(AlertLog([make_alert()]))
    response = client.delete("/alerts")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert client.get("/alerts").json() == {"alerts": []}


def test_metrics_endpoint(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "fleet_ticks_total" in response.text


def test_stream_subscription_drives_scheduler(fleet):
    async def scenario():
        hub = TelemetryHub(FakeDeviceSource(fleet), FakeAlertStore([make_alert()]))
        events = channel_events(hub, "alerts")
        first = await events.__anext__()
        assert first["event"] == "alerts"
        assert json.loads(first["data"]) == []
        assert hub.running

        # the initial load publishes the stored alerts to the open stream
        second = await events.__anext__()
        assert json.loads(second["data"])[0]["device_id"] == "1000000001"

        await events.aclose()
        assert not hub.running
        await hub.close()

    asyncio.run(scenario())


def test_device_history_limit_follows_configured_bound(client, hub):
    hub.tick()
    assert client.get("/devices/1000000001/telemetry", params={"limit": 50}).status_code == 200
    assert client.get("/devices/1000000001/telemetry", params={"limit": 51}).status_code == 422


def test_stalled_stream_keeps_only_latest_snapshot(fleet):
    async def scenario():
        hub = TelemetryHub(FakeDeviceSource(fleet), FakeAlertStore(), synthesize=fixed_sample(voltage=231.0))
        hub.publish_devices(fleet)
        events = channel_events(hub, "telemetry")
        await events.__anext__()

        for _ in range(1000):
            hub.tick()

        latest = await events.__anext__()
        assert latest["data"] == encode_channel_value("telemetry", hub.telemetry.value)
        assert len(json.loads(latest["data"])["1000000001"]) == 50

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(events.__anext__(), 0.05)
        await events.aclose()
        await hub.close()

    asyncio.run(scenario())
