"""Tests for the command-line entry point."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from garagesync import app
from garagesync.configuration import load_runtime_configuration
from garagesync.sync import DirectoryBackupClient


def _reset_logger() -> None:
    logger = logging.getLogger("garagesync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "data"
    (path / "config").mkdir(parents=True)
    (path / "config" / "local.yml").write_text(
        "remote:\n  kind: directory\n  directory: mirror\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("GARAGESYNC_DATA_DIR", str(path))
    monkeypatch.delenv("GARAGESYNC_LOG_LEVEL", raising=False)
    yield path
    _reset_logger()


def test_build_orchestrator_uses_configuration(data_dir: Path):
    bundle = load_runtime_configuration(data_dir)

    orchestrator = app.build_orchestrator(bundle)
    try:
        assert isinstance(orchestrator.remote, DirectoryBackupClient)
        assert orchestrator.remote.backup_path == data_dir / "mirror" / "latest.json"
        assert orchestrator.interval == 300
        assert orchestrator.journal.path == data_dir / "state" / "sync_state.json"
        assert (data_dir / "state" / "garage.db").exists()
    finally:
        orchestrator.store.close()


def test_build_orchestrator_without_remote_adds_diagnostic(tmp_path: Path):
    data_dir = tmp_path / "plain"
    data_dir.mkdir()
    bundle = load_runtime_configuration(data_dir)

    orchestrator = app.build_orchestrator(bundle)
    try:
        assert orchestrator.remote is None
        assert any("No backup endpoint" in diag.message for diag in bundle.diagnostics)
    finally:
        orchestrator.store.close()


def test_main_runs_one_shot_command(data_dir: Path, capsys):
    exit_code = app.main(["sync", "push"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "[sync] Synced 0 records" in out
    assert (data_dir / "mirror" / "latest.json").exists()
    assert (data_dir / "logs" / "garagesync.log").exists()


def test_main_reports_unknown_command(data_dir: Path, capsys):
    app.main(["teleport"])

    assert "Unknown command 'teleport'" in capsys.readouterr().out


def test_main_interactive_loop_runs_until_exit(data_dir: Path, monkeypatch, capsys):
    lines = iter(["help", "exit"])
    monkeypatch.setattr("builtins.input", lambda _prompt="": next(lines))

    exit_code = app.main([])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Commands" in out
    assert "[Goodbye]" in out
