"""CLI interface for Stardust DSP."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import typer

from .domain.models import RoyaltyMethod
from .errors import StardustError
from .interfaces.cli_handlers import (
    ReportKind,
    delivery_status,
    generate_report,
    load_runtime,
    receive_manifest,
    reprocess_delivery,
)
from .interfaces.runtime import Runtime

app = typer.Typer(help="Stardust DSP command line interface")

_state: dict[str, Any] = {"config": None}


@app.callback()
def configure(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        envvar="STARDUST_CONFIG",
        help="YAML or JSON config file. Use storage.backend=json to keep state between commands.",
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level."),
) -> None:
    """Ingest DDEX ERN deliveries and run royalty and reporting jobs."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    _state["config"] = config


def _run(action: Callable[[Runtime], Any]) -> None:
    try:
        result = action(load_runtime(_state["config"]))
    except (StardustError, ValueError) as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo(json.dumps(result, indent=2, default=str))


@app.command("receive")
def receive_command(
    manifest: Path = typer.Argument(..., help="Local ERN manifest.xml to ingest"),
    distributor: str = typer.Option(..., "--distributor", "-d", help="Distributor id owning the delivery"),
    token: str | None = typer.Option(None, "--token", help="Delivery timestamp token (defaults to now in ms)"),
    process: bool = typer.Option(True, "--process/--no-process", help="Run the pipeline after intake."),
) -> None:
    """Land a manifest in the delivery inbox and record the delivery."""

    _run(lambda runtime: receive_manifest(runtime, manifest, distributor, token, process))


@app.command("work")
def work_command(
    max_rounds: int = typer.Option(100, "--max-rounds", min=1, help="Upper bound on queue passes."),
) -> None:
    """Drain queued ingestion jobs."""

    _run(lambda runtime: dict(runtime.worker.drain(max_rounds=max_rounds)))


@app.command("reprocess")
def reprocess_command(
    delivery_id: str = typer.Argument(...),
    process: bool = typer.Option(True, "--process/--no-process", help="Run the pipeline after requeueing."),
) -> None:
    """Reset a delivery to pending and queue it for parsing again."""

    _run(lambda runtime: reprocess_delivery(runtime, delivery_id, process))


@app.command("status")
def status_command(delivery_id: str = typer.Argument(...)) -> None:
    """Show a delivery's processing status."""

    _run(lambda runtime: delivery_status(runtime, delivery_id))


@app.command("aggregate-usage")
def aggregate_usage_command(
    window_end: datetime | None = typer.Option(None, "--window-end", help="End of the window (defaults to now)."),
    window_hours: int = typer.Option(1, "--window-hours", min=1),
) -> None:
    """Fold play events of one window into daily analytics."""

    _run(lambda runtime: runtime.usage.aggregate_window(window_end, window_hours))


@app.command("record-play")
def record_play_command(
    track_id: str = typer.Argument(...),
    release_id: str = typer.Argument(...),
    user_id: str = typer.Option(..., "--user", "-u", help="Listener id"),
    country: str | None = typer.Option(None, "--country", "-c"),
    dsp: str | None = typer.Option(None, "--dsp"),
) -> None:
    """Record one play of a track."""

    _run(lambda runtime: {"playId": runtime.plays.record_play(track_id, release_id, user_id, country=country, dsp=dsp)})


@app.command("update-play")
def update_play_command(
    play_id: str = typer.Argument(...),
    duration: float = typer.Option(..., "--duration", min=0, help="Seconds listened"),
    percentage: float = typer.Option(..., "--percentage", min=0, max=100),
    completed: bool = typer.Option(False, "--completed", help="Mark the play completed regardless of percentage."),
) -> None:
    """Report listening progress for a play."""

    _run(lambda runtime: runtime.plays.update_play_progress(play_id, duration, percentage, completed))


@app.command("cleanup-plays")
def cleanup_plays_command(
    max_age_days: int = typer.Option(30, "--max-age-days", min=1),
    limit: int = typer.Option(500, "--limit", min=1, max=500),
) -> None:
    """Delete stale incomplete play events."""

    _run(lambda runtime: {"deleted": runtime.usage.cleanup_old_plays(max_age_days, limit)})


@app.command("calculate-royalties")
def calculate_royalties_command(
    period: str = typer.Option(..., "--period", "-p", help="YYYY-MM, YYYY-Qn, YYYY or START_END"),
    territory: str | None = typer.Option(None, "--territory", "-t"),
    method: RoyaltyMethod = typer.Option(RoyaltyMethod.PRO_RATA, "--method", case_sensitive=False),
) -> None:
    """Generate a royalty statement for a period."""

    _run(lambda runtime: runtime.royalties.calculate(period, territory, method, generated_by="cli").to_document())


@app.command("approve-statement")
def approve_statement_command(statement_id: str = typer.Argument(...)) -> None:
    """Approve a draft statement for payment."""

    _run(lambda runtime: runtime.statements.approve(statement_id).to_document())


@app.command("process-payments")
def process_payments_command() -> None:
    """Schedule payments for approved statements."""

    _run(lambda runtime: runtime.payments.process_approved())


@app.command("generate-report")
def generate_report_command(
    kind: ReportKind = typer.Option(ReportKind.DSR, "--kind", case_sensitive=False),
    report_format: str = typer.Option("DDEX", "--format", "-f", help="DDEX (XML), CSV or JSON"),
    start_date: str | None = typer.Option(None, "--start-date"),
    end_date: str | None = typer.Option(None, "--end-date"),
    territory: str | None = typer.Option(None, "--territory", "-t"),
    distributor: str | None = typer.Option(None, "--distributor", "-d"),
    statement_id: str | None = typer.Option(None, "--statement-id"),
    schedule_delivery: bool = typer.Option(False, "--schedule-delivery", help="Queue for the dispatch job."),
) -> None:
    """Render a DSR or royalty statement report into object storage."""

    _run(
        lambda runtime: generate_report(
            runtime,
            kind,
            report_format,
            start_date=start_date,
            end_date=end_date,
            territory=territory,
            distributor_id=distributor,
            statement_id=statement_id,
            schedule_delivery=schedule_delivery,
        )
    )


@app.command("generate-monthly-dsr")
def generate_monthly_dsr_command() -> None:
    """Generate last month's DSR for every distributor that asked for one."""

    _run(lambda runtime: runtime.reports.generate_monthly_dsr())


@app.command("dispatch-reports")
def dispatch_reports_command() -> None:
    """Deliver reports whose scheduled delivery is due."""

    _run(lambda runtime: runtime.dispatcher.dispatch_pending())


@app.command("retry-reports")
def retry_reports_command() -> None:
    """Retry failed report deliveries with backoff."""

    _run(lambda runtime: runtime.dispatcher.retry_failed())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
