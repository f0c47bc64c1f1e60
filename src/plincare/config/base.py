"""Base configuration settings."""

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Integration engine settings.

    Note: TLS material is passed through to the stock transport untouched;
    the engine does not interpret certificates.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Plincare Integration Engine"
    app_version: str = "0.1.0"
    environment: str = Field(
        default_factory=lambda: os.getenv("ENVIRONMENT", "development")
    )
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "console"

    # MLLP listener
    mllp_host: str = "0.0.0.0"
    mllp_port: int = 2100
    mllp_read_chunk_size: int = 4096
    mllp_max_frame_size: int = 10 * 1024 * 1024  # 10MB
    mllp_negative_ack_on_error: bool = False
    mllp_ack_include_msa: bool = False
    mllp_ssl_certfile: Optional[str] = None
    mllp_ssl_keyfile: Optional[str] = None

    # Identity used in MSH-3 / MSH-4 of produced messages
    sending_application: str = "PFI"
    sending_facility: str = "PHARMACIE"
    hl7_version: str = "2.5"

    # Downstream FHIR gateway
    gateway_url: str = "http://localhost:3000"
    delivery_timeout_seconds: float = 5.0

    # Internal HTTP API
    api_host: str = "127.0.0.1"
    api_port: int = 3001

    # Outbound write-back to the legacy HIS
    his_mllp_host: Optional[str] = None
    his_mllp_port: int = 2575
    writeback_timeout_seconds: float = 5.0

    # CDA defaults (DMP publication)
    default_rpps: str = "10000000001"
    default_author_family: str = "SYSTEM"
    default_author_given: str = "PFI"
    default_finess: str = "999999999"
    default_establishment: str = "Établissement de Santé PFI"

    @field_validator("delivery_timeout_seconds", "writeback_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Outbound calls must always be bounded."""
        if v <= 0:
            raise ValueError("timeouts must be strictly positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Restrict the renderer to the supported ones."""
        if v not in ("json", "console"):
            raise ValueError(f"Unsupported log format: {v}")
        return v

    @property
    def mllp_tls_enabled(self) -> bool:
        """Whether the listener should wrap connections in TLS."""
        return bool(self.mllp_ssl_certfile and self.mllp_ssl_keyfile)
