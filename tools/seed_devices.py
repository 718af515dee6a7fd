import argparse, asyncio, random, re
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorClient

from fleet_dashboard.models import DEVICE_TYPES
from fleet_dashboard.settings import get_settings

PROTOCOLS = ("MQTT", "DLMS", "DNP3")
LOCATIONS = ("Substation A", "Substation B", "Plant Room", "Rooftop", "Warehouse")


def serial10(value):
    s = str(value)
    if not re.fullmatch(r"\d{10}", s):
        raise ValueError(f"Invalid serial number (expected 10 digits): {s}")
    return s


def make_device(i, offline_ratio):
    device_type = DEVICE_TYPES[i % len(DEVICE_TYPES)]
    return {
        "serialNumber": serial10(1000000000 + i),
        "name": f"{device_type} {i + 1}",
        "type": device_type,
        "location": random.choice(LOCATIONS),
        "macAddress": ":".join(f"{random.randint(0, 255):02X}" for _ in range(6)),
        "firmwareVersion": f"1.{random.randint(0, 9)}.{random.randint(0, 20)}",
        "protocol": random.choice(PROTOCOLS),
        "status": "Offline" if random.random() < offline_ratio else random.choice(["Online", "Online", "Warning"]),
        "createdAt": datetime.now(timezone.utc),
    }


async def seed(count, offline_ratio, drop):
    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongo_uri)
    collection = client[settings.mongo_db][settings.devices_collection]
    try:
        if drop:
            await collection.delete_many({})
        for i in range(count):
            doc = make_device(i, offline_ratio)
            await collection.update_one({"serialNumber": doc["serialNumber"]}, {"$set": doc}, upsert=True)
        print(f"Seeded {count} devices into {settings.mongo_db}.{settings.devices_collection}")
    finally:
        client.close()


if __name__ == "__main__":
    p = argparse.ArgumentParser()
    p.add_argument("--devices", type=int, default=10)
    p.add_argument("--offline-ratio", type=float, default=0.2, help="share of devices seeded as Offline")
    p.add_argument("--drop", action="store_true", help="remove existing devices first")
    args = p.parse_args()

    asyncio.run(seed(args.devices, args.offline_ratio, args.drop))
