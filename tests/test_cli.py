"""Smoke tests for the RuleGuard command line."""

import tempfile
from pathlib import Path

import click
import pytest
from click.testing import CliRunner

from ruleguard.cli.main import cli
from ruleguard.cli.trade import parse_rule_option
from ruleguard.db.store import DataStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def invoke(temp_dir: Path):
    runner = CliRunner()

    def run(*args: str):
        return runner.invoke(
            cli,
            ["--data-dir", str(temp_dir), "--config", str(temp_dir / "config.toml"), *args],
        )

    return run


class TestParseRuleOption:
    """*For any* REF=OUTCOME option, the applied rule is built from it."""

    def test_known_id(self):
        applied = parse_rule_option("abc123=broken", ["abc123"])
        assert applied.rule_id == "abc123"
        assert applied.outcome == "Broken"

    def test_text_reference(self):
        applied = parse_rule_option("Wait for the close = Followed", [], promote=True)
        assert applied.rule_id is None
        assert applied.text == "Wait for the close"
        assert applied.outcome == "Followed"
        assert applied.promote

    def test_text_may_contain_equals(self):
        assert parse_rule_option("risk=reward >= 2=na", []).text == "risk=reward >= 2"

    @pytest.mark.parametrize("value", ["no outcome", "=followed", "rule=maybe"])
    def test_malformed(self, value: str):
        with pytest.raises(click.BadParameter):
            parse_rule_option(value, [])


class TestCommands:
    """Each command runs end to end against a temporary data directory."""

    def test_help_lists_commands(self, invoke):
        result = invoke("--help")
        assert result.exit_code == 0
        for name in ("log", "trades", "rules", "progress", "achievements", "migrate"):
            assert name in result.output

    def test_log_and_list(self, invoke, temp_dir: Path):
        assert invoke("rules", "add", "Never move the stop").exit_code == 0

        result = invoke(
            "log", "infy", "long", "100", "101", "1",
            "--date", "2024-06-20",
            "--rule", "Never move the stop=followed",
        )
        assert result.exit_code == 0, result.output
        assert "First Steps" in result.output

        [trade] = DataStore(temp_dir / "ruleguard.db").get_trades()
        assert trade.symbol == "INFY"
        assert trade.rule_compliant

        result = invoke("trades")
        assert result.exit_code == 0
        assert "Showing 1 of 1 trades" in result.output

        assert invoke("rules", "list").exit_code == 0
        assert DataStore(temp_dir / "ruleguard.db").get_rules()[0].violations == 0

    def test_log_rejects_bad_number(self, invoke, temp_dir: Path):
        result = invoke("log", "INFY", "long", "abc", "101", "1")
        assert result.exit_code == 1
        assert "not logged" in result.output
        assert DataStore(temp_dir / "ruleguard.db").get_trades() == []

    def test_log_with_image(self, invoke, temp_dir: Path):
        image = temp_dir / "chart.png"
        image.write_bytes(b"png")

        result = invoke("log", "TCS", "short", "200", "190", "2", "--image", str(image))

        assert result.exit_code == 0, result.output
        [trade] = DataStore(temp_dir / "ruleguard.db").get_trades()
        assert len(trade.image_ids) == 1

        result = invoke("detach", str(trade.id), str(trade.image_ids[0]))
        assert result.exit_code == 0, result.output

    def test_delete(self, invoke, temp_dir: Path):
        invoke("log", "TCS", "short", "200", "190", "2")
        [trade] = DataStore(temp_dir / "ruleguard.db").get_trades()

        assert invoke("delete", str(trade.id), "--yes").exit_code == 0
        assert DataStore(temp_dir / "ruleguard.db").get_trades() == []
        assert invoke("delete", str(trade.id), "--yes").exit_code == 1

    def test_progress_and_achievements(self, invoke):
        invoke("log", "INFY", "long", "100", "103", "1", "--rule", "Plan the trade=followed")

        result = invoke("progress")
        assert result.exit_code == 0, result.output
        assert "Progress" in result.output

        result = invoke("achievements")
        assert result.exit_code == 0, result.output
        assert "Perfect Month" not in result.output

        result = invoke("challenges")
        assert result.exit_code == 0, result.output

    def test_migrate(self, invoke):
        result = invoke("migrate")
        assert result.exit_code == 0, result.output
        assert "Schema version: 3" in result.output

    def test_migrate_backups(self, invoke, temp_dir: Path):
        result = invoke("migrate", "--backups")
        assert result.exit_code == 0, result.output
        assert "No backups" in result.output

        result = invoke("migrate", "--restore", "backup:pnl_fixed_v1:1", "--yes")
        assert result.exit_code == 1
        assert "Failed to restore" in result.output

    def test_migrate_restore(self, invoke, temp_dir: Path):
        legacy = {
            "id": 1,
            "date": "2024-06-20",
            "symbol": "INFY",
            "type": "Short",
            "entry": 100,
            "exit": 110,
            "size": 2,
            "pnl": 20,
            "ruleCompliant": False,
        }
        store = DataStore(temp_dir / "ruleguard.db")
        store.write_collection("trades", [legacy])
        assert invoke("migrate").exit_code == 0

        [backup_id] = store.list_collections("backup:")
        result = invoke("migrate", "--restore", backup_id, "--yes")

        assert result.exit_code == 0, result.output
        assert "Restored 1 trades" in result.output
        assert store.load("trades") == [legacy]
