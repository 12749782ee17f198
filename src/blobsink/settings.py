from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from blobsink.time_bucket import parse_period

# Sentinel for BLOBSINK_SCHEMAS that turns schema processing off.
NO_SCHEMAS = "none"

# Outbound pool to the storage backend.
MAX_SOCKETS = 40
MAX_FREE_SOCKETS = 10
SOCKET_TIMEOUT_S = 60.0
KEEPALIVE_TIMEOUT_S = 30.0


class Settings(BaseSettings):
    """
    Service configuration, sourced from BLOBSINK_* environment variables.
    """
    model_config = SettingsConfigDict(
        env_prefix="BLOBSINK_",
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    account: str = Field(min_length=1)
    container: str = Field(min_length=1)
    key: Optional[str] = None
    sas: Optional[str] = None
    endpoint: Optional[str] = None

    period: str = "1 hour"
    format: str = "%Y%m%dT%H%M%S"
    schemas: str = "./schemas"
    write_headers: bool = False

    host: str = "0.0.0.0"
    port: int = Field(8080, validation_alias=AliasChoices("BLOBSINK_PORT", "PORT", "port"))
    log_level: str = "info"
    api_debug: bool = False
    slow_ms: int = Field(default=750, ge=0)

    @model_validator(mode="after")
    def _check(self) -> "Settings":
        if bool(self.key) == bool(self.sas):
            raise ValueError("exactly one of BLOBSINK_KEY or BLOBSINK_SAS must be set")
        parse_period(self.period)
        return self

    @property
    def base_url(self) -> str:
        if self.endpoint:
            return self.endpoint.rstrip("/")
        return f"https://{self.account}.blob.core.windows.net"

    @property
    def schemas_enabled(self) -> bool:
        return bool(self.schemas) and self.schemas.strip().lower() != NO_SCHEMAS


def load_settings() -> Settings:
    return Settings()
