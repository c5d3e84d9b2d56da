from pathlib import Path

import pytest

from stardust_dsp.utils.config import AppConfig, ValidationConfig, load_app_config


def test_defaults_without_config_file(monkeypatch) -> None:
    monkeypatch.delenv("STARDUST_CONFIG", raising=False)

    config = load_app_config()

    assert config.validation.endpoint == "https://api.ddex-workbench.org/v1/validate"
    assert config.validation.max_attempts == 3
    assert config.storage.backend == "memory"
    assert config.reporting.download_url_ttl_days == 7


def test_yaml_config_is_loaded(tmp_path: Path) -> None:
    path = tmp_path / "stardust.yaml"
    path.write_text(
        "validation:\n"
        "  mode: local\n"
        "  base_url: https://validator.internal/\n"
        "pipeline:\n"
        "  auto_create_distributors: false\n"
        "storage:\n"
        "  backend: json\n"
        f"  json_path: {tmp_path / 'docs.json'}\n",
        encoding="utf-8",
    )

    config = load_app_config(path)

    assert config.validation.mode == "local"
    assert config.validation.endpoint == "https://validator.internal/v1/validate"
    assert config.pipeline.auto_create_distributors is False
    assert config.storage.json_path == tmp_path / "docs.json"


def test_json_config_from_environment(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "stardust.json"
    path.write_text('{"reporting": {"sendgrid_api_key": "SG.test-key", "max_delivery_retries": 5}}', encoding="utf-8")
    monkeypatch.setenv("STARDUST_CONFIG", str(path))

    config = load_app_config()

    assert config.reporting.sendgrid_api_key == "SG.test-key"
    assert config.reporting.max_delivery_retries == 5


def test_empty_yaml_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")

    assert load_app_config(path) == AppConfig()


@pytest.mark.parametrize(
    "data",
    [
        {"validation": {"timeout_seconds": 0.5}},
        {"validation": {"timeout_seconds": 500}},
        {"validation": {"mode": "remote"}},
        {"reporting": {"download_url_ttl_days": 8}},
        {"pipeline": {"max_concurrency": 0}},
    ],
)
def test_out_of_range_values_are_rejected(data) -> None:
    with pytest.raises(ValueError):
        AppConfig.model_validate(data)


def test_validation_endpoint_strips_trailing_slash() -> None:
    assert ValidationConfig(base_url="http://localhost:8080//").endpoint == "http://localhost:8080/v1/validate"
