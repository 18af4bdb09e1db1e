from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", alias="LOG_LEVEL")


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    env: str = Field(default="development", alias="APP_ENV")
    host: str = Field(default="0.0.0.0", alias="APP_HOST")
    port: int = Field(default=8000, alias="APP_PORT")
    timezone: str = Field(default="", alias="APP_TIMEZONE")

    database_url: str = Field(default="sqlite:///./data/tickets.db", alias="DATABASE_URL")

    storage_namespace: str = Field(default="", alias="STORAGE_NAMESPACE")
    tickets_key: str = Field(default="tickets", alias="TICKETS_KEY")
    serial_counter_key: str = Field(default="ticket-serial-counter", alias="SERIAL_COUNTER_KEY")

    update_pulse_seconds: float = Field(default=3.0, alias="UPDATE_PULSE_SECONDS")

    admin_token: str | None = Field(default=None, alias="ADMIN_TOKEN")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def storage_keys(self) -> tuple[str, str]:
        return (
            f"{self.storage_namespace}{self.tickets_key}",
            f"{self.storage_namespace}{self.serial_counter_key}",
        )


@lru_cache
def get_settings() -> AppConfig:
    return AppConfig()
