from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DEVICE_TYPES = ("Smart Meter", "Gateway", "HVAC")
DEVICE_STATUSES = ("Online", "Offline", "Warning")


def normalize_status(raw: Optional[str]) -> str:
    """Map any casing of a known status to its canonical form."""
    if raw is None:
        return "Offline"
    value = str(raw).strip()
    for status in DEVICE_STATUSES:
        if value.lower() == status.lower():
            return status
    return value


def iso_timestamp(dt: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2024-05-01T10:00:00.000Z"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Device(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    serial_number: str = Field(..., alias="serialNumber", examples=["1000000001"])
    name: str = ""
    type: str = "Smart Meter"
    status: str = "Offline"
    location: str = "—"
    mac_address: str = Field("", alias="macAddress")
    firmware_version: str = Field("", alias="firmwareVersion")
    protocol: str = "MQTT"


class TelemetrySample(BaseModel):
    model_config = ConfigDict(frozen=True)

    device_id: str
    timestamp: datetime
    temperature: float
    voltage: float
    current: float
    power: float


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    device_id: str
    timestamp: datetime
    metric: Literal["voltage"] = "voltage"
    value: float
    threshold: float
    severity: Literal["warning", "critical"] = "warning"
    message: str


class FleetSummary(BaseModel):
    devices: int
    online: int
    active: int
    alerts: int
