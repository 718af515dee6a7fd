"""
TelemetryHub: owner of the device snapshot, telemetry history and alert log.

Three channels (devices, telemetry, alerts) fan out every update to their
subscribers. A single tick task synthesizes samples for every device that is
not offline, raises voltage alerts and mirrors them to the alert store. The
task runs only while at least one subscription of any kind is open.

All methods must be called from the event loop that owns the hub. Ticks,
publishes and clears are synchronous, so they never interleave.
"""
import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from . import metrics
from .channels import Channel, Subscription
from .gateway import AlertStore, DeviceSource
from .models import Alert, Device, TelemetrySample
from .simulator import (
    VOLTAGE_ALERT_THRESHOLD,
    detect_breach,
    generates_telemetry,
    is_online,
    synthesize_sample,
    utc_now,
)
from .stores import ALERTS_LIMIT, HISTORY_LIMIT, AlertLog, HistoryStore

logger = logging.getLogger(__name__)

Synthesizer = Callable[[Device], TelemetrySample]


def merge_alerts(current: AlertLog, loaded: Sequence[Alert]) -> AlertLog:
    """Add stored alerts to the in-memory log; entries already held in memory win."""
    # Stored copies get a new id, so match on device and time as well
    known = {a.id for a in current} | {(a.device_id, a.timestamp) for a in current}
    merged = list(current) + [a for a in loaded
                              if a.id not in known and (a.device_id, a.timestamp) not in known]
    merged.sort(key=lambda a: a.timestamp, reverse=True)
    return AlertLog(merged, current.limit)


class TelemetryHub:
    def __init__(
        self,
        device_source: DeviceSource,
        alert_store: AlertStore,
        tick_interval_s: float = 3.0,
        history_limit: int = HISTORY_LIMIT,
        alerts_limit: int = ALERTS_LIMIT,
        voltage_threshold: float = VOLTAGE_ALERT_THRESHOLD,
        synthesize: Optional[Synthesizer] = None,
        rng: Optional[random.Random] = None,
    ):
        self.device_source = device_source
        self.alert_store = alert_store
        self.tick_interval_s = tick_interval_s
        self.voltage_threshold = voltage_threshold

        rng = rng or random.Random()
        self._synthesize: Synthesizer = synthesize or (lambda device: synthesize_sample(device, rng))

        self.devices: Channel[Tuple[Device, ...]] = Channel("devices", ())
        self.telemetry: Channel[HistoryStore] = Channel("telemetry", HistoryStore(limit=history_limit))
        self.alerts: Channel[AlertLog] = Channel("alerts", AlertLog(limit=alerts_limit))

        self._subscribers = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._alerts_generation = 0

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_devices(self, listener: Callable[[Tuple[Device, ...]], None]) -> Subscription:
        return self._subscribe(self.devices, listener)

    def subscribe_telemetry(self, listener: Callable[[HistoryStore], None]) -> Subscription:
        return self._subscribe(self.telemetry, listener)

    def subscribe_alerts(self, listener: Callable[[AlertLog], None]) -> Subscription:
        return self._subscribe(self.alerts, listener)

    def _subscribe(self, channel: Channel, listener: Callable[[Any], None]) -> Subscription:
        loop = asyncio.get_running_loop()
        self._subscribers += 1
        subscription = channel.subscribe(listener, on_cancel=self._release)
        if self._timer is None:
            self._start(loop)
        return subscription

    def _release(self) -> None:
        self._subscribers -= 1
        if self._subscribers == 0:
            self._stop()

    @property
    def subscriber_count(self) -> int:
        return self._subscribers

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._timer is not None

    def _start(self, loop: asyncio.AbstractEventLoop) -> None:
        logger.info(f"Starting telemetry simulator (every {self.tick_interval_s}s)")
        self._timer = loop.create_task(self._run())
        metrics.scheduler_running.set(1)
        self.load_devices()
        self.load_alerts()

    def _stop(self) -> None:
        if self._timer is None:
            return
        logger.info("No subscribers left, stopping telemetry simulator")
        self._timer.cancel()
        self._timer = None
        metrics.scheduler_running.set(0)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval_s)
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Simulator tick failed: {e}")

    def tick(self, now: Optional[datetime] = None) -> None:
        """Generate one round of telemetry and alerts and publish it."""
        now = now or utc_now()
        with metrics.tick_duration.time():
            samples: List[Tuple[str, TelemetrySample]] = []
            raised: List[Alert] = []

            for device in self.devices.value:
                if not generates_telemetry(device):
                    continue
                try:
                    sample = self._synthesize(device)
                    alert = detect_breach(sample, now, self.voltage_threshold)
                except Exception as e:
                    metrics.device_errors_total.inc()
                    logger.error(f"Telemetry generation failed for device {device.serial_number}: {e}")
                    continue

                samples.append((device.serial_number, sample))
                metrics.samples_generated_total.labels(device_type=device.type or "unknown").inc()
                if alert is not None:
                    raised.append(alert)

            self.telemetry.publish(self.telemetry.value.extend(samples))

            if raised:
                self.alerts.publish(self.alerts.value.extend(raised))
                for alert in raised:
                    metrics.alerts_raised_total.labels(metric=alert.metric).inc()
                    logger.warning(f"Alert raised: {alert.message} (device {alert.device_id})")
                    self._dispatch(self._persist(alert))

            metrics.ticks_total.inc()

    # ------------------------------------------------------------------
    # External sources
    # ------------------------------------------------------------------

    def load_devices(self) -> asyncio.Task:
        """Load the device snapshot; joins a load that is already running."""
        return self._load_once("devices", self._load_devices)

    def load_alerts(self) -> asyncio.Task:
        """Load mirrored alerts; joins a load that is already running."""
        return self._load_once("alerts", self._load_alerts)

    async def refresh_devices(self) -> Tuple[Device, ...]:
        await self.load_devices()
        return self.devices.value

    def _load_once(self, resource: str, load: Callable[[], Awaitable[None]]) -> asyncio.Task:
        task = self._inflight.get(resource)
        if task is not None and not task.done():
            return task
        task = asyncio.get_running_loop().create_task(load())
        self._inflight[resource] = task

        def forget(finished: asyncio.Task) -> None:
            if self._inflight.get(resource) is finished:
                del self._inflight[resource]

        task.add_done_callback(forget)
        return task

    async def _load_devices(self) -> None:
        try:
            devices = await self.device_source.load()
        except Exception as e:
            metrics.source_load_errors_total.labels(resource="devices").inc()
            logger.error(f"Failed to load device snapshot: {e}")
            return
        self.publish_devices(devices)
        logger.info(f"Loaded {len(self.devices.value)} devices")

    async def _load_alerts(self) -> None:
        generation = self._alerts_generation
        try:
            alerts = await self.alert_store.load()
        except Exception as e:
            metrics.source_load_errors_total.labels(resource="alerts").inc()
            logger.error(f"Failed to load alert log: {e}")
            return
        if generation != self._alerts_generation:
            logger.info("Alert log was cleared during load, dropping stored alerts")
            return
        self.alerts.publish(merge_alerts(self.alerts.value, alerts))

    def publish_devices(self, devices: Sequence[Device]) -> None:
        self.devices.publish(tuple(devices))

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def clear_alerts(self) -> None:
        """Empty the alert log now and ask the store to drop its mirror."""
        self._alerts_generation += 1
        self.alerts.publish(self.alerts.value.clear())
        self._dispatch(self._clear_store())

    async def _persist(self, alert: Alert) -> None:
        try:
            await self.alert_store.persist(alert)
        except Exception as e:
            metrics.alert_persist_errors_total.inc()
            logger.warning(f"Failed to persist alert {alert.id}: {e}")

    async def _clear_store(self) -> None:
        try:
            await self.alert_store.clear()
        except Exception as e:
            logger.warning(f"Failed to clear stored alerts: {e}")

    def _dispatch(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Derived reads
    # ------------------------------------------------------------------

    @property
    def online_count(self) -> int:
        """Devices whose status is exactly "Online"."""
        return sum(1 for d in self.devices.value if is_online(d))

    @property
    def active_count(self) -> int:
        """Devices that receive telemetry, i.e. anything not offline."""
        return sum(1 for d in self.devices.value if generates_telemetry(d))

    async def close(self) -> None:
        self._stop()
        pending = list(self._background) + list(self._inflight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
