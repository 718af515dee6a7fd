#!/usr/bin/env python3
"""
Script to create MongoDB indexes for the fleet dashboard collections
"""
import asyncio

from motor.motor_asyncio import AsyncIOMotorClient

from fleet_dashboard.settings import get_settings


async def create_indexes():
    """Create MongoDB indexes for the device registry and the alert mirror"""
    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongo_uri)
    db = client[settings.mongo_db]
    devices = db[settings.devices_collection]
    alerts = db[settings.alerts_collection]

    print("Creating MongoDB indexes...")

    try:
        await devices.create_index([("serialNumber", 1)], unique=True)
        print(f"✓ Created index: serialNumber:1 (unique) on {settings.devices_collection}")

        await devices.create_index([("createdAt", -1)])
        print(f"✓ Created index: createdAt:-1 on {settings.devices_collection}")

        await alerts.create_index([("timestamp", -1)])
        print(f"✓ Created index: timestamp:-1 on {settings.alerts_collection}")

        await alerts.create_index([("deviceSerial", 1), ("timestamp", -1)])
        print(f"✓ Created index: deviceSerial:1, timestamp:-1 on {settings.alerts_collection}")

        print("\nAll indexes created successfully!")

    except Exception as e:
        print(f"Error creating indexes: {e}")
    finally:
        client.close()

if __name__ == "__main__":
    asyncio.run(create_indexes())
