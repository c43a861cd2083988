# src/labflow/cli.py
"""labflow Command Line Interface.

Entry point for the labflow CLI tool: inspection helpers for publish
transactions, idempotency keys and settings, plus opening draft transactions.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError

from labflow import __version__
from labflow.contracts.enums import TransactionState
from labflow.contracts.errors import ReportFormatError
from labflow.core.canonical import compute_structured_fingerprint
from labflow.core.config import LabflowSettings, load_settings
from labflow.core.idempotency import build_key, compute_content_fingerprint
from labflow.publishing.reports import TransactionReporter, load_report
from labflow.publishing.state_machine import ALLOWED_TRANSITIONS, TERMINAL_STATES, verify_history

__all__ = ["app"]

app = typer.Typer(
    name="labflow",
    help="labflow: publish transactions and attempt telemetry.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"labflow version {__version__}")
        raise typer.Exit()


def _fail(title: str, message: str, details: list[str] | None = None) -> None:
    typer.secho(f"Error: {title}", fg=typer.colors.RED, err=True)
    typer.echo(f"  {message}", err=True)
    for detail in details or []:
        typer.echo(f"  - {detail}", err=True)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR). Overrides the settings file; WARNING without one.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing). Overrides the settings file.",
    ),
) -> None:
    """labflow: publish transactions and attempt telemetry."""
    from labflow.core.logging import configure_logging

    if log_level is not None and log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
        raise typer.BadParameter(f"unknown log level {log_level!r}", param_hint="--log-level")
    configure_logging(json_output=json_logs, level=log_level or "WARNING")
    # Commands that load a settings file re-apply its logging section under these overrides
    ctx.obj = {"log_level": log_level, "json_logs": True if json_logs else None}


def _load_settings_or_exit(ctx: typer.Context, settings: Path) -> LabflowSettings:
    from labflow.core.logging import configure_logging_from_settings

    try:
        resolved = load_settings(settings.expanduser())
    except FileNotFoundError:
        _fail("File Not Found", f"Settings file does not exist: {settings}")
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = [f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()]
        _fail("Configuration Validation Failed", f"Invalid settings in {settings.name}", details)
        raise typer.Exit(1) from None
    except ValueError as e:
        # Environment variable expansion errors
        _fail("Configuration Error", str(e))
        raise typer.Exit(1) from None

    overrides = ctx.obj or {}
    configure_logging_from_settings(
        resolved.logging,
        level=overrides.get("log_level"),
        json_output=overrides.get("json_logs"),
    )
    return resolved


@app.command()
def transitions(
    state: str | None = typer.Argument(None, help="Only show transitions out of this state."),
) -> None:
    """Print the publish transaction transition table."""
    if state is None:
        states = list(ALLOWED_TRANSITIONS)
    else:
        try:
            states = [TransactionState(state.strip())]
        except ValueError:
            _fail("Unknown State", f"'{state}' is not a transaction state", [s.value for s in TransactionState])
            raise typer.Exit(1) from None

    for source in states:
        targets = sorted(target.value for target in ALLOWED_TRANSITIONS[source])
        if source in TERMINAL_STATES:
            typer.echo(f"{source.value} -> (terminal)")
        else:
            typer.echo(f"{source.value} -> {', '.join(targets)}")


@app.command()
def key(
    tenant: str = typer.Argument(..., help="Tenant id."),
    lab: str = typer.Argument(..., help="Lab id."),
    version: str = typer.Argument(..., help="Lab version id."),
    content_hash: str = typer.Argument(..., metavar="HASH", help="Content hash."),
) -> None:
    """Print the publish idempotency key for the given parts."""
    typer.echo(build_key(tenant, lab, version, content_hash))


@app.command()
def fingerprint(
    text: str | None = typer.Argument(None, help="Text to fingerprint."),
    file: Path | None = typer.Option(None, "--file", "-f", help="Fingerprint this file's UTF-8 content instead."),
    structured: bool = typer.Option(
        False,
        "--json",
        help="Treat the input as JSON and fingerprint its canonical form (key order independent).",
    ),
) -> None:
    """Print the SHA-256 content fingerprint of TEXT or a file."""
    if file is not None:
        try:
            text = file.read_text(encoding="utf-8")
        except FileNotFoundError:
            _fail("File Not Found", f"File does not exist: {file}")
            raise typer.Exit(1) from None

    if not structured:
        typer.echo(compute_content_fingerprint(text))
        return
    try:
        typer.echo(compute_structured_fingerprint(json.loads(text or "")))
    except ValueError as e:
        # JSONDecodeError, or NaN/Infinity rejected by canonicalization
        _fail("Invalid JSON", str(e))
        raise typer.Exit(1) from None


@app.command("verify-report")
def verify_report(
    path: Path = typer.Argument(..., help="Transaction report JSON written by save_report."),
) -> None:
    """Check that a saved report's state history is a legal walk of the table."""
    try:
        transaction = load_report(path)
    except FileNotFoundError:
        _fail("File Not Found", f"Report does not exist: {path}")
        raise typer.Exit(1) from None
    except ReportFormatError as e:
        _fail("Malformed Report", str(e))
        raise typer.Exit(1) from None

    problems = verify_history(transaction)
    if problems:
        _fail("History Invalid", f"{len(problems)} problem(s) in {path.name}", problems)
        raise typer.Exit(1)

    typer.secho(
        f"OK: {transaction.transaction_id} ({transaction.state.value}, {len(transaction.state_history)} entries)",
        fg=typer.colors.GREEN,
    )


@app.command()
def draft(
    ctx: typer.Context,
    lab: str = typer.Argument(..., help="Lab id."),
    version: str = typer.Argument(..., help="Lab version id."),
    settings: Path = typer.Option(..., "--settings", "-s", help="Path to settings YAML file."),
    actor: str = typer.Option("", "--actor", help="Who opens the transaction."),
    source: str | None = typer.Option(None, "--source", help="Transaction source; defaults to publishing.default_source."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Report directory; defaults to publishing.reports_dir."),
) -> None:
    """Open a draft publish transaction and write its report."""
    resolved = _load_settings_or_exit(ctx, settings)
    reporter = TransactionReporter.from_settings(resolved.publishing)

    transaction = reporter.create_draft(source, actor, lab, version)
    path = reporter.save_report(transaction, output_dir)

    typer.echo(f"{transaction.transaction_id} {transaction.idempotency_key}")
    typer.echo(str(path))


@app.command()
def config(
    ctx: typer.Context,
    settings: Path = typer.Argument(..., help="Path to settings YAML file."),
) -> None:
    """Print resolved settings (file, LABFLOW_* overrides and defaults)."""
    resolved = _load_settings_or_exit(ctx, settings)
    typer.echo(yaml.safe_dump(json.loads(resolved.model_dump_json()), sort_keys=False).rstrip())


if __name__ == "__main__":
    app()
