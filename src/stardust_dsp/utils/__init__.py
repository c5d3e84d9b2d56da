from .config import (
    AppConfig,
    PipelineConfig,
    ReportingConfig,
    StorageSettings,
    ValidationConfig,
    load_app_config,
)
from .timestamps import utc_now, utc_now_iso

__all__ = [
    "AppConfig",
    "PipelineConfig",
    "ReportingConfig",
    "StorageSettings",
    "ValidationConfig",
    "load_app_config",
    "utc_now",
    "utc_now_iso",
]
