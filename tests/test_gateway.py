import asyncio
from datetime import datetime, timezone

from bson import ObjectId

from fleet_dashboard.gateway import (
    MongoAlertStore,
    MongoDeviceSource,
    alert_from_document,
    alert_to_document,
    device_from_document,
)

from conftest import make_alert


class FakeCursor:
    def __init__(self, docs):
        self.docs = list(docs)

    def sort(self, key, direction):
        self.docs.sort(key=lambda d: d[key], reverse=direction < 0)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self.docs:
            yield doc


class FakeCollection:
    def __init__(self, docs=()):
        self.docs = list(docs)

    def find(self, query=None):
        return FakeCursor(self.docs)

    async def insert_one(self, doc):
        self.docs.append(dict(doc, _id=ObjectId()))


def test_device_status_is_normalized():
    device = device_from_document({"serialNumber": "1000000001", "type": "HVAC", "status": "online"})
    assert device.status == "Online"
    assert device.protocol == "MQTT"
    assert device_from_document({"serialNumber": "1000000002"}).status == "Offline"
    assert device_from_document({"serialNumber": "1000000003", "status": " Rebooting "}).status == "Rebooting"


def test_alert_document_round_trip_keeps_fields():
    alert = make_alert(value=251.5)
    doc = alert_to_document(alert)
    assert doc["deviceSerial"] == alert.device_id
    assert doc["severity"] == "warning"

    doc["_id"] = ObjectId()
    doc["timestamp"] = doc["timestamp"].replace(tzinfo=None)
    loaded = alert_from_document(doc)
    assert loaded.id == str(doc["_id"])
    assert loaded.timestamp == alert.timestamp
    assert loaded.value == 251.5


def test_device_source_skips_malformed_documents():
    created = datetime(2024, 5, 1, tzinfo=timezone.utc)
    collection = FakeCollection([
        {"_id": 1, "serialNumber": "1000000001", "type": "HVAC", "status": "Online", "createdAt": created},
        {"_id": 2, "type": "Gateway", "createdAt": created.replace(day=2)},
    ])
    devices = asyncio.run(MongoDeviceSource(collection).load())
    assert [d.serial_number for d in devices] == ["1000000001"]


def test_alert_store_loads_newest_first_with_limit():
    collection = FakeCollection()
    store = MongoAlertStore(collection, limit=2)

    async def scenario():
        for minute in (1, 3, 2):
            await store.persist(make_alert(minute=minute))
        return await store.load()

    alerts = asyncio.run(scenario())
    assert [a.timestamp.minute for a in alerts] == [3, 2]
