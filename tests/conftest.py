import asyncio
from datetime import datetime, timezone

import pytest

from fleet_dashboard.models import Alert, Device, TelemetrySample


class FakeDeviceSource:
    def __init__(self, devices=(), fail=False, delay=0.0):
        self.devices = list(devices)
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def load(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("registry unavailable")
        return list(self.devices)


class FakeAlertStore:
    def __init__(self, alerts=(), fail=False, delay=0.0):
        self.alerts = list(alerts)
        self.fail = fail
        self.delay = delay
        self.persisted = []
        self.cleared = 0

    async def load(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("alert store unavailable")
        return list(self.alerts)

    async def persist(self, alert):
        if self.fail:
            raise ConnectionError("alert store unavailable")
        self.persisted.append(alert)

    async def clear(self):
        if self.fail:
            raise ConnectionError("alert store unavailable")
        self.alerts = []
        self.cleared += 1


def make_device(serial, type="Smart Meter", status="Online"):
    return Device(serialNumber=serial, name=f"dev {serial}", type=type, status=status)


def make_alert(device_id="1000000001", value=245.0, minute=0):
    ts = datetime(2024, 5, 1, 10, minute, tzinfo=timezone.utc)
    return Alert(
        id=f"{device_id}-{minute}",
        device_id=device_id,
        timestamp=ts,
        value=value,
        threshold=240.0,
        message=f"High voltage detected: {value:g}V",
    )


def fixed_sample(voltage=230.0, current=4.0):
    def synthesize(device):
        return TelemetrySample(
            device_id=device.serial_number,
            timestamp=datetime.now(timezone.utc),
            temperature=28.0,
            voltage=voltage,
            current=current,
            power=round(voltage * current, 2),
        )
    return synthesize


@pytest.fixture
def fleet():
    return [
        make_device("1000000001", "HVAC", "Online"),
        make_device("1000000002", "Gateway", "Offline"),
        make_device("1000000003", "Smart Meter", "Warning"),
    ]
