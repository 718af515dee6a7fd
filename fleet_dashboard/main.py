import asyncio
import json
import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from motor.motor_asyncio import AsyncIOMotorClient
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sse_starlette.sse import EventSourceResponse

from .gateway import MongoAlertStore, MongoDeviceSource
from .hub import TelemetryHub
from .models import Alert, Device, FleetSummary, TelemetrySample
from .settings import get_settings
from .simulator import effective_severity, escalate

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="IoT Fleet Dashboard API", version="1.0.0")

allow_origins = ["*"] if settings.allowed_origins == "*" else [o.strip() for o in settings.allowed_origins.split(",")]
app.add_middleware(CORSMiddleware, allow_origins=allow_origins, allow_methods=["*"], allow_headers=["*"])

# MongoDB connection
client = AsyncIOMotorClient(settings.mongo_uri)
db = client[settings.mongo_db]

hub = TelemetryHub(
    device_source=MongoDeviceSource(db[settings.devices_collection]),
    alert_store=MongoAlertStore(db[settings.alerts_collection], limit=settings.alerts_limit),
    tick_interval_s=settings.tick_interval_s,
    history_limit=settings.history_limit,
    alerts_limit=settings.alerts_limit,
    voltage_threshold=settings.voltage_alert_threshold,
)


def get_hub() -> TelemetryHub:
    return hub


@app.on_event("startup")
async def startup_db_client():
    """Initialize database connection on startup"""
    await client.admin.command('ping')


@app.on_event("shutdown")
async def shutdown_db_client():
    """Stop the simulator and close database connection on shutdown"""
    await hub.close()
    client.close()


@app.get("/health")
async def health():
    await db.command("ping")
    return {"ok": True}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/devices", response_model=List[Device])
async def get_devices(hub: TelemetryHub = Depends(get_hub)):
    """Current device snapshot"""
    return list(hub.devices.value)


@app.post("/devices/refresh", response_model=List[Device])
async def refresh_devices(hub: TelemetryHub = Depends(get_hub)):
    """Reload the device snapshot from the registry"""
    return list(await hub.refresh_devices())


@app.get("/fleet/summary", response_model=FleetSummary)
async def get_fleet_summary(hub: TelemetryHub = Depends(get_hub)):
    return FleetSummary(
        devices=len(hub.devices.value),
        online=hub.online_count,
        active=hub.active_count,
        alerts=len(hub.alerts.value),
    )


@app.get("/telemetry", response_model=Dict[str, TelemetrySample])
async def get_latest_telemetry(hub: TelemetryHub = Depends(get_hub)):
    """Latest sample per device"""
    history = hub.telemetry.value
    return {device_id: history.latest(device_id) for device_id in history.device_ids()}


@app.get("/devices/{device_id}/telemetry")
async def get_device_telemetry(device_id: str,
                               limit: int = Query(settings.history_limit, ge=1, le=settings.history_limit),
                               hub: TelemetryHub = Depends(get_hub)):
    """Recent telemetry for a specific device, newest first"""
    history = hub.telemetry.value
    if device_id not in history:
        raise HTTPException(status_code=404, detail=f"No telemetry for device {device_id}")
    samples = history.get(device_id)[:limit]
    return {"device_id": device_id, "data": [s.model_dump(mode="json") for s in samples]}


@app.get("/alerts", response_model=Dict[str, List[Alert]])
async def get_alerts(severity: Optional[Literal["warning", "critical"]] = None,
                     limit: int = Query(settings.alerts_limit, ge=1, le=settings.alerts_limit),
                     hub: TelemetryHub = Depends(get_hub)):
    """Recent alerts with display severity, optionally filtered by it"""
    margin = settings.critical_margin
    alerts = [escalate(a, margin) for a in hub.alerts.value
              if severity is None or effective_severity(a, margin) == severity]
    return {"alerts": alerts[:limit]}


@app.delete("/alerts")
async def clear_alerts(hub: TelemetryHub = Depends(get_hub)):
    hub.clear_alerts()
    return {"ok": True}


def encode_channel_value(channel: str, value: Any) -> str:
    if channel == "devices":
        payload = [d.model_dump(mode="json", by_alias=True) for d in value]
    elif channel == "telemetry":
        payload = {device_id: [s.model_dump(mode="json") for s in samples]
                   for device_id, samples in value.as_dict().items()}
    else:
        payload = [a.model_dump(mode="json") for a in value]
    return json.dumps(payload)


async def channel_events(hub: TelemetryHub, channel: str):
    """Yield SSE events for every value published on `channel` until the client goes away."""
    # Only the newest snapshot is kept for a slow client
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)

    def offer(value: Any) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(value)

    subscribe = {
        "devices": hub.subscribe_devices,
        "telemetry": hub.subscribe_telemetry,
        "alerts": hub.subscribe_alerts,
    }[channel]
    subscription = subscribe(offer)
    try:
        while True:
            value = await queue.get()
            yield {"event": channel, "data": encode_channel_value(channel, value)}
    finally:
        subscription.cancel()


@app.get("/stream/{channel}", response_class=EventSourceResponse)
async def stream_channel(channel: Literal["devices", "telemetry", "alerts"],
                         hub: TelemetryHub = Depends(get_hub)):
    """Server-sent events for one hub channel"""
    return EventSourceResponse(channel_events(hub, channel))
