"""Tests for the click CLI."""

import pytest
from click.testing import CliRunner

from coinquery.cli import main


@pytest.fixture
def runner(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("OPENAI_API_KEY", "GROQ_API_KEY", "CQ_DEFAULT_MODEL", "CQ_COINS_FILE", "MOBULA_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    return CliRunner()


def test_routes_lists_every_route(runner, monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gk")

    result = runner.invoke(main, ["routes"])

    assert result.exit_code == 0
    assert "o3-mini (default): openai / o3-mini" in result.output
    assert "✅ groq" in result.output
    assert "endpoint: https://api.groq.com/openai/v1/chat/completions" in result.output


def test_doctor_reports_missing_keys(runner):
    result = runner.invoke(main, ["doctor"])

    assert result.exit_code == 0
    assert "❌ Mobula API key" in result.output
    assert "Coin table (built-in)" in result.output
    assert "❌ Default model route: o3-mini" in result.output
    assert "Environment check complete" in result.output


def test_doctor_reports_bad_coin_table(runner, monkeypatch, tmp_path):
    bad = tmp_path / "coins.json"
    bad.write_text("{}")
    monkeypatch.setenv("CQ_COINS_FILE", str(bad))

    result = runner.invoke(main, ["doctor"])

    assert result.exit_code == 0
    assert "❌ Coin table" in result.output


def test_exec_check_accepts_valid_program(runner, tmp_path):
    program = tmp_path / "program.py"
    program.write_text('data = {"price": await price("btc")}\nreturn data\n')

    result = runner.invoke(main, ["exec", str(program), "--check"])

    assert result.exit_code == 0
    assert "Program is valid" in result.output


def test_exec_check_rejects_imports(runner, tmp_path):
    program = tmp_path / "program.py"
    program.write_text("import os\ndata = os.listdir('.')\nreturn data\n")

    result = runner.invoke(main, ["exec", str(program), "--check"])

    assert result.exit_code == 1
    assert "not allowed" in result.output
