"""
Synthetic telemetry for fleet devices and the voltage breach rule.

Values are plausible-looking demo data, not a model of any real device
protocol. Each sample is a pure function of the device and the random source.
"""
import random
from datetime import datetime, timezone
from typing import Optional

from .models import Alert, Device, TelemetrySample, iso_timestamp

VOLTAGE_ALERT_THRESHOLD = 240.0
CRITICAL_MARGIN = 10.0

VOLTAGE_BASE = 230.0
VOLTAGE_JITTER = 4.0
VOLTAGE_SPIKE_PROBABILITY = 0.08
VOLTAGE_SPIKE_BASE = 248.0
VOLTAGE_SPIKE_JITTER = 8.0
VOLTAGE_RANGE = (200.0, 270.0)
CURRENT_RANGE = (0.1, 40.0)


def utc_now() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def jitter(rng: random.Random, base: float, magnitude: float) -> float:
    return base + (rng.random() - 0.5) * 2 * magnitude


def generates_telemetry(device: Device) -> bool:
    """Anything not explicitly offline (any casing) produces samples."""
    return str(device.status).strip().lower() != "offline"


def is_online(device: Device) -> bool:
    return device.status == "Online"


def synthesize_sample(device: Device, rng: Optional[random.Random] = None,
                      now: Optional[datetime] = None) -> TelemetrySample:
    rng = rng or random.Random()
    is_hvac = device.type == "HVAC"

    temperature = round(jitter(rng, 20.5 if is_hvac else 28.0, 0.6), 2)

    # Occasional spike on top of the baseline to mimic an unstable supply
    spike = 0.0
    if rng.random() < VOLTAGE_SPIKE_PROBABILITY:
        spike = jitter(rng, VOLTAGE_SPIKE_BASE, VOLTAGE_SPIKE_JITTER)
    voltage = round(clamp(jitter(rng, VOLTAGE_BASE, VOLTAGE_JITTER) + spike, *VOLTAGE_RANGE), 2)

    if device.type == "Gateway":
        current_base = 0.6
    elif is_hvac:
        current_base = 8.0
    else:
        current_base = 4.0
    current = round(clamp(jitter(rng, current_base, current_base * 0.15), *CURRENT_RANGE), 2)

    return TelemetrySample(
        device_id=device.serial_number,
        timestamp=now or utc_now(),
        temperature=temperature,
        voltage=voltage,
        current=current,
        power=round(voltage * current, 2),
    )


def detect_breach(sample: TelemetrySample, timestamp: datetime,
                  threshold: float = VOLTAGE_ALERT_THRESHOLD) -> Optional[Alert]:
    """Return a warning alert when the sample's voltage is strictly above threshold."""
    if not sample.voltage > threshold:
        return None
    return Alert(
        id=f"{sample.device_id}-{iso_timestamp(timestamp)}",
        device_id=sample.device_id,
        timestamp=timestamp,
        metric="voltage",
        value=sample.voltage,
        threshold=threshold,
        severity="warning",
        message=f"High voltage detected: {sample.voltage:g}V",
    )


def effective_severity(alert: Alert, margin: float = CRITICAL_MARGIN) -> str:
    if alert.value > alert.threshold + margin:
        return "critical"
    return alert.severity


def escalate(alert: Alert, margin: float = CRITICAL_MARGIN) -> Alert:
    """Read-time view of an alert with its derived severity; the input is left untouched."""
    severity = effective_severity(alert, margin)
    if severity == alert.severity:
        return alert
    return alert.model_copy(update={"severity": severity})
