from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    mongo_uri: str = "mongodb://mongo:27017"
    mongo_db: str = "iotdb"
    devices_collection: str = "devices"
    alerts_collection: str = "alerts"
    tick_interval_s: float = 3.0
    history_limit: int = 50
    alerts_limit: int = 100
    voltage_alert_threshold: float = 240.0
    critical_margin: float = 10.0
    log_level: str = "INFO"
    allowed_origins: str = "*"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
