from __future__ import annotations
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ----------------
    # WhatsApp Cloud API
    # ----------------
    phone_number_id: str = Field("", alias="WHATSAPP_PHONE_NUMBER_ID")
    access_token: str = Field("", alias="WHATSAPP_ACCESS_TOKEN")
    meta_api_version: str = Field("v24.0", alias="META_API_VERSION")
    graph_base_url: str = Field("https://graph.facebook.com", alias="META_GRAPH_URL")

    @property
    def credentials_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    # ----------------
    # Rate limiting / backoff
    # ----------------
    whatsapp_rate_limit: int = Field(80, ge=1, le=1000, alias="WHATSAPP_RATE_LIMIT")  # msg/s
    api_timeout: float = Field(30.0, alias="API_TIMEOUT")
    api_max_retries: int = Field(3, alias="API_MAX_RETRIES")
    api_backoff_base: float = Field(1.0, alias="API_BACKOFF_BASE")
    api_backoff_cap: float = Field(60.0, alias="API_BACKOFF_CAP")
    pair_rate_limit_wait: float = Field(6.0, alias="PAIR_RATE_LIMIT_WAIT")  # error 131056

    # ----------------
    # Worker / parallelism
    # ----------------
    max_workers: int = Field(10, ge=1, alias="DISPATCH_CONCURRENCY")

    # ----------------
    # Metrics / logging / API
    # ----------------
    metrics_port: int = Field(9000, alias="METRICS_PORT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field("logs/campaign-dispatch.log", alias="LOG_FILE")
    api_key: Optional[str] = Field(None, alias="API_KEY")

    # ----------------
    # Pydantic settings
    # ----------------
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
