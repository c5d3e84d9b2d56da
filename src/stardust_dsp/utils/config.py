from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

CONFIG_ENV_VAR = "STARDUST_CONFIG"


class ValidationConfig(BaseModel):
    mode: Literal["api", "local"] = "api"
    base_url: str = "https://api.ddex-workbench.org"
    api_path: str = "/v1/validate"
    timeout_seconds: float = Field(30.0, ge=1.0, le=120.0)
    max_attempts: int = Field(3, ge=1)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{self.api_path}"


class PipelineConfig(BaseModel):
    platform_party_id: str = "STARDUST_DSP"
    platform_party_name: str = "Stardust DSP Platform"
    cdn_base_url: str = "https://cdn.stardust-dsp.org"
    max_concurrency: int = Field(4, ge=1, le=64)
    auto_create_distributors: bool = True

    @field_validator("cdn_base_url")
    @classmethod
    def _strip_cdn_slash(cls, value: str) -> str:
        return value.rstrip("/")


class ReportingConfig(BaseModel):
    download_url_ttl_days: int = Field(7, ge=1, le=7)
    transport_timeout_seconds: float = Field(30.0, ge=1.0, le=300.0)
    max_delivery_retries: int = Field(3, ge=0)
    pending_batch_limit: int = Field(50, ge=1)
    retry_batch_limit: int = Field(20, ge=1)
    sendgrid_api_key: str | None = None
    email_sender: str = "reports@stardust-dsp.org"


class StorageSettings(BaseModel):
    backend: Literal["memory", "json"] = "memory"
    json_path: Path = Path(".stardust/documents.json")
    objects: Literal["minio", "local"] = "local"
    local_root: Path = Path(".stardust/objects")


class AppConfig(BaseModel):
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    storage: StorageSettings = Field(default_factory=StorageSettings)


def load_app_config(path: Path | None = None) -> AppConfig:
    """Load config from ``path`` or ``$STARDUST_CONFIG``; defaults when neither is set."""

    if path is None:
        env_path = os.getenv(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else None
    if path is None:
        return AppConfig()
    data = _load_config_data(path)
    return AppConfig.model_validate(data)


def _load_config_data(path: Path) -> dict:
    if path.suffix.lower() in {".yaml", ".yml"}:
        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)
