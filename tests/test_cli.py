"""Tests for the click commands in main.py."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from database.models import create_category, create_sku_history, get_product, list_sku_history
from main import cli
from tests.conftest import _NoCloseConnection


@pytest.fixture
def runner(db: sqlite3.Connection, monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    """CliRunner whose commands use the in-memory database."""
    wrapper = _NoCloseConnection(db)
    monkeypatch.setattr("main._open_db", lambda: wrapper)
    monkeypatch.setattr("main.settings.sku_history_retention_days", None)
    return CliRunner()


@pytest.fixture
def seeded(runner: CliRunner, db: sqlite3.Connection, fragments: list[str]) -> CliRunner:
    """Two Shirts products, SKUs TM-SHI-FRAG0001 and TM-SHI-FRAG0002."""
    create_category(db, "Shirts")
    for name in ("Oxford", "Polo"):
        result = runner.invoke(cli, ["add-product", name, "--category", "Shirts"])
        assert result.exit_code == 0, result.output
    return runner


# =========================================================================
# Entity commands
# =========================================================================


class TestAddCommands:
    def test_add_category(self, runner: CliRunner, db: sqlite3.Connection) -> None:
        result = runner.invoke(cli, ["add-category", "Shirts"])
        assert result.exit_code == 0
        assert "Created category #1: Shirts" in result.output

    def test_add_category_duplicate(self, runner: CliRunner, db: sqlite3.Connection) -> None:
        create_category(db, "Shirts")
        result = runner.invoke(cli, ["add-category", "Shirts"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_add_product(self, seeded: CliRunner) -> None:
        result = seeded.invoke(cli, ["add-product", "Tee"])
        assert result.exit_code == 0
        assert "Created product #3: TM-UNC-FRAG0003" in result.output

    def test_add_product_unknown_category(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["add-product", "Tee", "--category", "Nope"])
        assert result.exit_code == 1
        assert "no category named 'Nope'" in result.output

    def test_add_product_unmapped_type(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["add-product", "Card", "--type", "gift_card"])
        assert result.exit_code == 1
        assert "No SKU generator mapping" in result.output

    def test_add_variant(self, seeded: CliRunner) -> None:
        result = seeded.invoke(
            cli, ["add-variant", "1", "--value", "color=Red", "--value", "size=Large"]
        )
        assert result.exit_code == 0
        assert "TM-SHI-FRAG0001-RED-LAR" in result.output

    def test_add_variant_bad_value(self, seeded: CliRunner) -> None:
        result = seeded.invoke(cli, ["add-variant", "1", "--value", "Red"])
        assert result.exit_code == 1
        assert "PROPERTY=VALUE" in result.output

    def test_add_variant_missing_product(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["add-variant", "42"])
        assert result.exit_code == 1


# =========================================================================
# regenerate
# =========================================================================


class TestRegenerate:
    def test_regenerates(self, seeded: CliRunner, db: sqlite3.Connection) -> None:
        result = seeded.invoke(cli, ["regenerate", "product", "--reason", "rebrand"])
        assert result.exit_code == 0, result.output
        assert "Updated SKU: TM-SHI-FRAG0001 → TM-SHI-FRAG0003" in result.output
        assert "Finished regenerating SKUs for 2 of 2 product record(s)" in result.output
        assert get_product(db, 1)["sku"] == "TM-SHI-FRAG0003"

    def test_dry_run(self, seeded: CliRunner, db: sqlite3.Connection) -> None:
        result = seeded.invoke(cli, ["regenerate", "product", "--dry-run"])
        assert result.exit_code == 0
        assert "Would update SKU" in result.output
        assert get_product(db, 1)["sku"] == "TM-SHI-FRAG0001"

    def test_unmapped_type(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["regenerate", "gift_card"])
        assert result.exit_code == 1
        assert "No SKU generator mapping" in result.output

    def test_failures_exit_nonzero(self, seeded: CliRunner) -> None:
        with patch(
            "services.lifecycle.models.update_entity",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            result = seeded.invoke(cli, ["regenerate", "product"])
        assert result.exit_code == 1
        assert "2 record(s) failed" in result.output


# =========================================================================
# history
# =========================================================================


class TestHistory:
    def test_lists_records(self, seeded: CliRunner) -> None:
        result = seeded.invoke(cli, ["history"])
        assert result.exit_code == 0
        assert "TM-SHI-FRAG0001" in result.output
        assert "Showing 2 record(s)" in result.output

    def test_filter_by_entity(self, seeded: CliRunner) -> None:
        result = seeded.invoke(cli, ["history", "product", "--id", "2"])
        assert "Showing history for product ID: 2" in result.output
        assert "TM-SHI-FRAG0002" in result.output
        assert "TM-SHI-FRAG0001" not in result.output.split("Date")[-1]

    def test_limit_note(self, seeded: CliRunner) -> None:
        result = seeded.invoke(cli, ["history", "--limit", "1"])
        assert "Results limited to 1 records" in result.output

    def test_no_records(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["history", "--sku", "NOPE"])
        assert result.exit_code == 0
        assert "No history records found." in result.output

    def test_invalid_event(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["history", "--event", "renamed"])
        assert result.exit_code == 1
        assert "Invalid event type" in result.output


# =========================================================================
# history-cleanup
# =========================================================================


class TestHistoryCleanup:
    @pytest.fixture
    def aged(self, db: sqlite3.Connection) -> None:
        for i in range(12):
            create_sku_history(
                db, "product", i, "created", new_sku=f"OLD-{i}", created_at="2000-01-01 00:00:00"
            )
        create_sku_history(db, "product", 99, "created", new_sku="NEW")

    def test_no_policy(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["history-cleanup"])
        assert result.exit_code == 0
        assert "No retention policy configured" in result.output

    def test_configured_retention(
        self,
        runner: CliRunner,
        db: sqlite3.Connection,
        aged: None,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr("main.settings.sku_history_retention_days", 30)
        result = runner.invoke(cli, ["history-cleanup", "--force"])
        assert result.exit_code == 0
        assert "Successfully deleted 12 history record(s)" in result.output
        assert [r["new_sku"] for r in list_sku_history(db)] == ["NEW"]

    def test_dry_run_shows_sample(
        self, runner: CliRunner, db: sqlite3.Connection, aged: None
    ) -> None:
        result = runner.invoke(cli, ["history-cleanup", "--days", "30", "--dry-run"])
        assert result.exit_code == 0
        assert "Found 12 history record(s)" in result.output
        assert "Showing 10 of 12 records..." in result.output
        assert len(list_sku_history(db)) == 13

    def test_before_date(self, runner: CliRunner, db: sqlite3.Connection, aged: None) -> None:
        result = runner.invoke(cli, ["history-cleanup", "--before", "2001-01-01", "--force"])
        assert result.exit_code == 0
        assert len(list_sku_history(db)) == 1

    def test_invalid_date(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["history-cleanup", "--before", "01/02/2001"])
        assert result.exit_code == 1
        assert "YYYY-MM-DD" in result.output

    def test_confirmation_declined(
        self, runner: CliRunner, db: sqlite3.Connection, aged: None
    ) -> None:
        result = runner.invoke(cli, ["history-cleanup", "--days", "30"], input="n\n")
        assert result.exit_code == 0
        assert "Operation cancelled." in result.output
        assert len(list_sku_history(db)) == 13

    def test_nothing_to_delete(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["history-cleanup", "--days", "30"])
        assert result.exit_code == 0
        assert "No history records found before" in result.output
