# tests/cli/test_cli.py
"""Tests for the labflow CLI."""

import hashlib
import json
from pathlib import Path
from unittest.mock import patch

import yaml
from typer.testing import CliRunner

from labflow import __version__
from labflow.cli import app
from labflow.contracts.enums import TransactionSource, TransactionState
from labflow.contracts.publishing import StateHistoryEntry
from labflow.publishing.reports import TransactionReporter, load_report

runner = CliRunner()


class TestGlobalOptions:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "transitions" in result.output

    def test_invalid_log_level(self) -> None:
        result = runner.invoke(app, ["--log-level", "chatty", "key", "t", "l", "v", "h"])
        assert result.exit_code != 0


class TestTransitions:
    def test_full_table(self) -> None:
        result = runner.invoke(app, ["transitions"])
        assert result.exit_code == 0
        lines = result.stdout.strip().splitlines()
        assert len(lines) == len(TransactionState)
        assert "draft -> cancelled, validating" in lines
        assert "activated -> (terminal)" in lines

    def test_single_state(self) -> None:
        result = runner.invoke(app, ["transitions", "activate_requested"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "activate_requested -> activated, failed_retryable, failed_terminal"

    def test_unknown_state(self) -> None:
        result = runner.invoke(app, ["transitions", "flying"])
        assert result.exit_code == 1


class TestKeyAndFingerprint:
    def test_key(self) -> None:
        result = runner.invoke(app, ["key", "Acme", "Lab-1", "V3", "ABC"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "publish:acme:lab-1:v3:abc"

    def test_key_blank_part(self) -> None:
        result = runner.invoke(app, ["key", "acme", "", "v3", "abc"])
        assert result.stdout.strip() == "publish:acme:unknown:v3:abc"

    def test_fingerprint_text(self) -> None:
        result = runner.invoke(app, ["fingerprint", "hello"])
        assert result.exit_code == 0
        assert result.stdout.strip() == hashlib.sha256(b"hello").hexdigest()

    def test_fingerprint_file(self, tmp_path: Path) -> None:
        path = tmp_path / "content.txt"
        path.write_text("bundle-bytes", encoding="utf-8")
        result = runner.invoke(app, ["fingerprint", "--file", str(path)])
        assert result.stdout.strip() == hashlib.sha256(b"bundle-bytes").hexdigest()

    def test_fingerprint_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["fingerprint", "--file", str(tmp_path / "nope.txt")])
        assert result.exit_code == 1

    def test_fingerprint_json_ignores_key_order(self) -> None:
        first = runner.invoke(app, ["fingerprint", "--json", '{"b": 1, "a": [1, 2]}'])
        second = runner.invoke(app, ["fingerprint", "--json", '{"a": [1, 2], "b": 1}'])
        assert first.exit_code == 0
        assert first.stdout.strip() == second.stdout.strip()
        assert len(first.stdout.strip()) == 64

    def test_fingerprint_json_invalid(self) -> None:
        result = runner.invoke(app, ["fingerprint", "--json", "{not json"])
        assert result.exit_code == 1


class TestVerifyReport:
    def test_valid_report(self, tmp_path: Path) -> None:
        reporter = TransactionReporter(tenant_id="acme")
        tx = reporter.create_draft(None, "alice", "lab-1", "v1")
        reporter.cancel(tx, "alice")
        path = reporter.save_report(tx, tmp_path)

        result = runner.invoke(app, ["verify-report", str(path)])

        assert result.exit_code == 0
        assert "OK" in result.stdout
        assert "cancelled" in result.stdout

    def test_tampered_history(self, tmp_path: Path) -> None:
        reporter = TransactionReporter()
        tx = reporter.create_draft(None, "alice", "lab-1", "v1")
        tx.state_history.append(StateHistoryEntry(from_state=TransactionState.DRAFT, to_state=TransactionState.BUILT, at="x"))
        tx.state = TransactionState.BUILT
        path = reporter.save_report(tx, tmp_path)

        result = runner.invoke(app, ["verify-report", str(path)])
        assert result.exit_code == 1

    def test_malformed_report(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({"transactionId": 5}), encoding="utf-8")
        result = runner.invoke(app, ["verify-report", str(path)])
        assert result.exit_code == 1

    def test_missing_report(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["verify-report", str(tmp_path / "missing.json")])
        assert result.exit_code == 1


class TestConfig:
    def test_prints_resolved_settings(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("telemetry:\n  max_events_per_batch: 7\n", encoding="utf-8")

        result = runner.invoke(app, ["config", str(path)])

        assert result.exit_code == 0
        data = yaml.safe_load(result.stdout)
        assert data["telemetry"]["max_events_per_batch"] == 7
        assert data["logging"]["level"] == "INFO"

    def test_invalid_settings(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("telemetry:\n  max_events_per_batch: -1\n", encoding="utf-8")
        result = runner.invoke(app, ["config", str(path)])
        assert result.exit_code == 1

    def test_missing_settings(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["config", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1

    def test_logging_section_applied(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("logging:\n  level: error\n", encoding="utf-8")

        with patch("labflow.core.logging.configure_logging_from_settings") as configure:
            result = runner.invoke(app, ["config", str(path)])

        assert result.exit_code == 0
        configure.assert_called_once()
        settings = configure.call_args[0][0]
        assert settings.level == "ERROR"
        assert configure.call_args[1] == {"level": None, "json_output": None}

    def test_command_line_logging_overrides_settings(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("logging:\n  level: error\n", encoding="utf-8")

        with patch("labflow.core.logging.configure_logging_from_settings") as configure:
            result = runner.invoke(app, ["--log-level", "DEBUG", "--json-logs", "config", str(path)])

        assert result.exit_code == 0
        assert configure.call_args[1] == {"level": "DEBUG", "json_output": True}


class TestDraft:
    def _settings(self, tmp_path: Path) -> Path:
        path = tmp_path / "settings.yaml"
        path.write_text(
            "publishing:\n"
            "  tenant_id: Globex\n"
            "  default_source: devkit_hidden_build\n"
            f"  reports_dir: {tmp_path / 'reports'}\n",
            encoding="utf-8",
        )
        return path

    def test_writes_draft_into_reports_dir(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["draft", "Lab-1", "v2", "--settings", str(self._settings(tmp_path)), "--actor", "alice"])

        assert result.exit_code == 0
        header, report_path = result.stdout.strip().splitlines()
        assert header.endswith("publish:globex:lab-1:v2:pending")
        path = Path(report_path)
        assert path.parent == tmp_path / "reports"

        tx = load_report(path)
        assert tx.state is TransactionState.DRAFT
        assert tx.source is TransactionSource.HIDDEN_BUILD
        assert tx.lab.tenant_id == "Globex"
        assert runner.invoke(app, ["verify-report", str(path)]).exit_code == 0

    def test_output_dir_and_source_override_settings(self, tmp_path: Path) -> None:
        result = runner.invoke(
            app,
            [
                "draft",
                "lab",
                "v1",
                "-s",
                str(self._settings(tmp_path)),
                "--source",
                "devkit_guided_setup",
                "-o",
                str(tmp_path / "elsewhere"),
            ],
        )

        assert result.exit_code == 0
        path = Path(result.stdout.strip().splitlines()[-1])
        assert path.parent == tmp_path / "elsewhere"
        assert load_report(path).source is TransactionSource.GUIDED_SETUP

    def test_missing_settings(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["draft", "lab", "v1", "-s", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1
