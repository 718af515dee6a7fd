"""
MongoDB-backed collaborators of the telemetry hub.

The device registry is only read here; alerts are mirrored on a best-effort
basis and the hub never waits on, retries or reports these writes.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Sequence

from pydantic import ValidationError

from .models import Alert, Device, normalize_status

logger = logging.getLogger(__name__)


class DeviceSource(Protocol):
    async def load(self) -> Sequence[Device]:
        ...


class AlertStore(Protocol):
    async def load(self) -> Sequence[Alert]:
        ...

    async def persist(self, alert: Alert) -> None:
        ...

    async def clear(self) -> None:
        ...


def device_from_document(doc: Dict[str, Any]) -> Device:
    return Device(
        serialNumber=str(doc["serialNumber"]),
        name=str(doc.get("name") or ""),
        type=str(doc.get("type") or ""),
        status=normalize_status(doc.get("status")),
        location=doc.get("location") or "—",
        macAddress=str(doc.get("macAddress") or ""),
        firmwareVersion=str(doc.get("firmwareVersion") or ""),
        protocol=doc.get("protocol") or "MQTT",
    )


def alert_from_document(doc: Dict[str, Any]) -> Alert:
    timestamp = doc["timestamp"]
    if isinstance(timestamp, datetime) and timestamp.tzinfo is None:
        # Mongo hands back naive UTC datetimes
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return Alert(
        id=str(doc["_id"]),
        device_id=str(doc["deviceSerial"]),
        timestamp=timestamp,
        metric="voltage",
        value=float(doc["value"]),
        threshold=float(doc["threshold"]),
        severity="warning",
        message=str(doc.get("message") or ""),
    )


def alert_to_document(alert: Alert) -> Dict[str, Any]:
    return {
        "deviceSerial": alert.device_id,
        "timestamp": alert.timestamp,
        "metric": alert.metric,
        "value": alert.value,
        "threshold": alert.threshold,
        "severity": alert.severity,
        "message": alert.message,
        "createdAt": datetime.now(timezone.utc),
    }


class MongoDeviceSource:
    def __init__(self, collection):
        self.collection = collection

    async def load(self) -> List[Device]:
        """Read the registry, newest device first"""
        devices = []
        cursor = self.collection.find().sort("createdAt", -1)
        async for document in cursor:
            try:
                devices.append(device_from_document(document))
            except (KeyError, ValidationError) as e:
                logger.warning(f"Skipping malformed device document {document.get('_id')}: {e}")
        return devices


class MongoAlertStore:
    def __init__(self, collection, limit: int = 100):
        self.collection = collection
        self.limit = limit

    async def load(self) -> List[Alert]:
        """Read mirrored alerts, newest first"""
        alerts = []
        cursor = self.collection.find().sort("timestamp", -1).limit(self.limit)
        async for document in cursor:
            try:
                alerts.append(alert_from_document(document))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed alert document {document.get('_id')}: {e}")
        return alerts

    async def persist(self, alert: Alert) -> None:
        await self.collection.insert_one(alert_to_document(alert))

    async def clear(self) -> None:
        result = await self.collection.delete_many({})
        logger.info(f"Deleted {result.deleted_count} mirrored alerts")
