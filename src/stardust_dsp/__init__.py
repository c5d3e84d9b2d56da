"""Public package exports for Stardust DSP with lazy imports."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "AppConfig",
    "Delivery",
    "ProcessingStatus",
    "ReleaseGraph",
    "Runtime",
    "StageOutcome",
    "load_app_config",
    "parse_duration",
    "parse_ern",
    "resolve_period",
]

_EXPORT_MODULES: dict[str, str] = {
    "AppConfig": "stardust_dsp.utils.config",
    "load_app_config": "stardust_dsp.utils.config",
    "Delivery": "stardust_dsp.domain.models",
    "ProcessingStatus": "stardust_dsp.domain.models",
    "ReleaseGraph": "stardust_dsp.domain.release_graph",
    "Runtime": "stardust_dsp.interfaces.runtime",
    "StageOutcome": "stardust_dsp.application.outcome",
    "parse_duration": "stardust_dsp.durations",
    "parse_ern": "stardust_dsp.ern_xml",
    "resolve_period": "stardust_dsp.periods",
}


def __getattr__(name: str) -> Any:
    if name not in _EXPORT_MODULES:
        raise AttributeError(f"module 'stardust_dsp' has no attribute {name!r}")

    module = import_module(_EXPORT_MODULES[name])
    value = getattr(module, name)
    globals()[name] = value
    return value
