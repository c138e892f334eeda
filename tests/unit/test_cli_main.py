from __future__ import annotations

import json

from click.testing import CliRunner

from shell import __version__
from shell.main import main


def _env(tmp_path):
    return {"CHAGEE_HOME": str(tmp_path / "home"), "CHAGEE_LOG_LEVEL": "ERROR"}


def test_version(tmp_path):
    result = CliRunner().invoke(main, ["--version"], env=_env(tmp_path))
    assert result.exit_code == 0
    assert __version__ in result.output


def test_one_shot_commands_persist_bootstrap_flags(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["--mode", "live", "--json", "-c", "status"], env=_env(tmp_path))
    assert result.exit_code == 0, result.output
    status = json.loads(result.stdout.strip().splitlines()[-1])
    assert status["phase"] == "UNAUTH"
    assert status["mode"] == "live"

    doc = json.loads((tmp_path / "home" / "session.json").read_text())
    assert doc["session"]["mode"] == "live"
    assert doc["session"]["jsonOutput"] is True


def test_positional_words_form_one_command(tmp_path):
    result = CliRunner().invoke(main, ["region", "list"], env=_env(tmp_path))
    assert result.exit_code == 0
    assert "Singapore" in result.output


def test_repl_reads_stdin_until_exit(tmp_path):
    result = CliRunner().invoke(main, [], input="mode live\nstatus\nexit\nmode dry-run\n", env=_env(tmp_path))
    assert result.exit_code == 0
    assert "mode: live" in result.output
    assert "mode: dry-run" not in result.output


def test_bad_mode_is_rejected_by_click(tmp_path):
    result = CliRunner().invoke(main, ["--mode", "fast"], env=_env(tmp_path))
    assert result.exit_code == 2


def test_yolo_flag_is_accepted(tmp_path):
    result = CliRunner().invoke(main, ["--yolo", "-c", "status"], env=_env(tmp_path))
    assert result.exit_code == 0, result.output
    assert "--yolo" in CliRunner().invoke(main, ["--help"], env=_env(tmp_path)).output
