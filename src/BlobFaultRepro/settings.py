"""Typed settings for the blob fault-injection harness.

Values come from ``BLOBFAULT_*`` environment variables, with the short
names ``DEBUG_SHARE`` and ``STORAGE_CONNECTION_STRING`` accepted as aliases.
Explicit keyword overrides passed to :func:`load_settings` win over the environment.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Optional

from azure.storage.blob import BlobServiceClient
from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from BlobFaultRepro.errors import ConfigurationError
from BlobFaultRepro.strategies import MiB
from BlobFaultRepro.transport import FaultInjectorEndpoint

__all__ = ["ReproSettings", "load_settings", "require"]

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class ReproSettings(BaseSettings):
    """Settings for one harness run."""

    model_config = SettingsConfigDict(
        env_prefix="BLOBFAULT_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    data_root: Optional[Path] = Field(
        None,
        validation_alias=AliasChoices("BLOBFAULT_DATA_ROOT", "DEBUG_SHARE"),
        description="Directory holding the work directory",
    )
    connection_string: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("BLOBFAULT_CONNECTION_STRING", "STORAGE_CONNECTION_STRING"),
        description="Storage account connection string",
        repr=False,
    )
    container_name: str = Field("icm387357955", description="Container receiving the test blob")
    blob_name: str = Field(
        default_factory=lambda: str(uuid.uuid4()), description="Name of the test blob"
    )
    work_dir_name: str = Field("icm-data", description="Work directory name under data_root")

    proxy_host: str = Field("localhost", description="Fault injector host")
    proxy_http_port: int = Field(7777, ge=1, le=65535)
    proxy_https_port: int = Field(7778, ge=1, le=65535)
    proxy_https: bool = Field(False, description="Talk to the fault injector over TLS")

    read_timeout_s: float = Field(10.0, gt=0, description="Read timeout for stalled responses")
    connect_timeout_s: float = Field(10.0, gt=0)

    reference_size: int = Field(9 * MiB - 1, ge=0, description="Size of the reference payload")
    iterations: int = Field(100, ge=0, description="Download attempts per run")
    parallelism: Optional[int] = Field(None, ge=1, description="Concurrent attempts")

    log_level: str = Field("INFO")
    log_json: bool = Field(False, description="Also write JSONL logs into the work directory")

    @field_validator("data_root", mode="before")
    @classmethod
    def expand_data_root(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        return Path(value).expanduser()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @property
    def work_dir(self) -> Path:
        if self.data_root is None:
            raise ConfigurationError("data_root is not configured (set BLOBFAULT_DATA_ROOT or DEBUG_SHARE)")
        return self.data_root / self.work_dir_name

    def fault_injector_endpoint(self) -> FaultInjectorEndpoint:
        return FaultInjectorEndpoint(
            host=self.proxy_host,
            http_port=self.proxy_http_port,
            https_port=self.proxy_https_port,
            https=self.proxy_https,
        )

    def masked_dump(self) -> str:
        payload = self.model_dump(mode="json")
        if payload.get("connection_string"):
            payload["connection_string"] = "***masked***"
        return json.dumps(payload, indent=2, sort_keys=True)


def load_settings(**overrides: Any) -> ReproSettings:
    """Load settings from the environment, applying non-``None`` overrides.

    Raises:
        ConfigurationError: If any value fails validation.
    """
    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        return ReproSettings(**explicit)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


def require(settings: ReproSettings) -> ReproSettings:
    """Ensure the values a run cannot do without are present and usable.

    Raises:
        ConfigurationError: If the data root or connection string is missing,
            or the storage SDK cannot parse the connection string.
    """
    missing = []
    if settings.data_root is None:
        missing.append("data root (BLOBFAULT_DATA_ROOT / DEBUG_SHARE)")
    if not settings.connection_string:
        missing.append("connection string (BLOBFAULT_CONNECTION_STRING / STORAGE_CONNECTION_STRING)")
    if missing:
        raise ConfigurationError("Missing required configuration: " + ", ".join(missing))
    try:
        client = BlobServiceClient.from_connection_string(settings.connection_string)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid connection string: {exc}") from exc
    client.close()
    return settings
