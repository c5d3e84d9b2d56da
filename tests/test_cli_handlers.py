from pathlib import Path

import pytest

from conftest import SINGLE_TRACK_ERN

from stardust_dsp.domain.jobs import PARSE_TOPIC
from stardust_dsp.errors import DocumentNotFoundError
from stardust_dsp.interfaces import cli_handlers
from stardust_dsp.interfaces.cli_handlers import ReportKind


def test_receive_manifest_without_processing_leaves_jobs_queued(runtime, tmp_path: Path) -> None:
    manifest = tmp_path / "manifest.xml"
    manifest.write_text(SINGLE_TRACK_ERN, encoding="utf-8")

    result = cli_handlers.receive_manifest(runtime, manifest, "nebula", "42", process=False)

    assert result["outcome"] == "completed"
    assert result["deliveryId"] == "nebula_42"
    assert "stages" not in result
    assert runtime.queue.pending() == {PARSE_TOPIC: 1}


def test_receive_manifest_rejects_missing_file(runtime, tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Manifest not found"):
        cli_handlers.receive_manifest(runtime, tmp_path / "absent.xml", "nebula")


def test_reprocess_and_status(runtime, tmp_path: Path) -> None:
    manifest = tmp_path / "manifest.xml"
    manifest.write_text(SINGLE_TRACK_ERN, encoding="utf-8")
    cli_handlers.receive_manifest(runtime, manifest, "nebula", "42")

    result = cli_handlers.reprocess_delivery(runtime, "nebula_42")

    assert result["reprocessCount"] == 1
    assert result["status"] == "completed"
    status = cli_handlers.delivery_status(runtime, "nebula_42")
    assert status["reprocessCount"] == 1
    assert status["acknowledgment"]["documentId"] == "ACK_nebula_42"

    with pytest.raises(DocumentNotFoundError):
        cli_handlers.delivery_status(runtime, "nebula_43")


def test_statement_report_requires_statement_id(runtime) -> None:
    with pytest.raises(ValueError, match="statement-id"):
        cli_handlers.generate_report(runtime, ReportKind.STATEMENT, "CSV")


def test_load_runtime_uses_config_file(tmp_path: Path) -> None:
    config = tmp_path / "stardust.json"
    config.write_text('{"validation": {"mode": "local"}, "pipeline": {"platform_party_id": "PADPIDA-TEST"}}')

    runtime = cli_handlers.load_runtime(config)

    assert runtime.config.pipeline.platform_party_id == "PADPIDA-TEST"
