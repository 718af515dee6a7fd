from prometheus_client import Counter, Gauge, Histogram

# Prometheus metrics
ticks_total = Counter('fleet_ticks_total', 'Total number of simulator ticks executed')
tick_duration = Histogram('fleet_tick_duration_seconds', 'Time spent in one simulator tick')
samples_generated_total = Counter('fleet_samples_generated_total', 'Total number of telemetry samples generated', ['device_type'])
alerts_raised_total = Counter('fleet_alerts_raised_total', 'Total number of alerts raised', ['metric'])
device_errors_total = Counter('fleet_device_errors_total', 'Total number of per-device failures inside a tick')
alert_persist_errors_total = Counter('fleet_alert_persist_errors_total', 'Total number of failed alert persistence calls')
source_load_errors_total = Counter('fleet_source_load_errors_total', 'Total number of failed loads from external sources', ['resource'])
listener_errors_total = Counter('fleet_listener_errors_total', 'Total number of subscriber callbacks that raised', ['channel'])
active_subscribers = Gauge('fleet_active_subscribers', 'Number of active subscribers', ['channel'])
scheduler_running = Gauge('fleet_scheduler_running', 'Whether the simulator tick loop is running')
