"""Tests for CLI commands.

These tests verify command registration and run the commands end to end
against a temporary ledger database.
"""

from unittest.mock import MagicMock, patch

import pytest

from household_ledger.bankdata_client import BankDataClient, ProviderAccount
from household_ledger.config import create_default_config
from household_ledger.runner.main import create_cli, main
from household_ledger.state_store import LedgerStore

from conftest import csv_bytes, provider_transaction


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        parser = create_cli()
        for command in ("init-config", "status", "accounts", "watchdog", "sync", "serve"):
            assert parser.parse_args([command]).command == command

    def test_import_defaults_to_transactions(self):
        args = create_cli().parse_args(["import", "ledger.csv"])
        assert args.record_kind == "transactions"
        assert args.dry_run is False

    def test_import_rejects_unknown_type(self):
        with pytest.raises(SystemExit):
            create_cli().parse_args(["import", "ledger.csv", "--type", "invoices"])

    def test_sync_options(self):
        args = create_cli().parse_args(
            ["sync", "--account-id", "acc-1", "--date-from", "2024-01-01", "--date-to", "2024-01-31", "--force"]
        )
        assert args.account_id == "acc-1"
        assert args.date_from == "2024-01-01"
        assert args.date_to == "2024-01-31"
        assert args.force is True

    def test_no_command_prints_help(self):
        assert main([]) == 1


class TestCLICommands:
    @pytest.fixture
    def config_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_STATE_DB", str(tmp_path / "ledger.db"))
        monkeypatch.delenv("SCORING_MODE", raising=False)
        path = tmp_path / "config.yaml"
        create_default_config(path)
        return path

    def test_init_config(self, tmp_path):
        path = tmp_path / "new" / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init-config"]) == 1

    def test_import_and_status(self, config_path, tmp_path, capsys):
        source = tmp_path / "banks.csv"
        source.write_bytes(csv_bytes("Name", "Main Bank", "", "Savings Bank"))

        assert main(["-c", str(config_path), "import", str(source), "--type", "banks"]) == 0
        output = capsys.readouterr().out
        assert "completed" in output

        store = LedgerStore(tmp_path / "ledger.db")
        assert store.count_dimension("bank") == 2

        (job,) = store.list_import_jobs()
        assert main(["-c", str(config_path), "status", job.id]) == 0
        assert "Processed:  2" in capsys.readouterr().out

    def test_import_with_record_errors_returns_zero(self, config_path, tmp_path, capsys):
        source = tmp_path / "categories.csv"
        source.write_bytes(
            csv_bytes("Flow,Major Category,Category,Sub Category", "OUTFLOW,FIXED_COSTS,Home,Rent", "OUTFLOW,,x,y")
        )

        assert main(["-c", str(config_path), "import", str(source), "--type", "categories"]) == 0
        assert "Record errors" in capsys.readouterr().out

    def test_import_dry_run_writes_nothing(self, config_path, tmp_path, capsys):
        source = tmp_path / "categories.csv"
        source.write_bytes(
            csv_bytes("Flow,Major Category,Category,Sub Category", "OUTFLOW,FIXED_COSTS,Home,Rent", "OUTFLOW,,x,y")
        )

        code = main(["-c", str(config_path), "import", str(source), "--type", "categories", "--dry-run"])

        assert code == 1
        output = capsys.readouterr().out
        assert "1 of 2 records have errors" in output
        assert "Major Category is required" in output
        assert LedgerStore(tmp_path / "ledger.db").list_import_jobs() == []

    def test_import_dry_run_valid_file(self, config_path, tmp_path, capsys):
        source = tmp_path / "banks.csv"
        source.write_bytes(csv_bytes("Name", "Main Bank"))

        assert main(["-c", str(config_path), "import", str(source), "--type", "banks", "--dry-run"]) == 0
        assert "1 records ready for import" in capsys.readouterr().out
        assert LedgerStore(tmp_path / "ledger.db").count_dimension("bank") == 0

    def test_import_missing_file(self, config_path, tmp_path):
        assert main(["-c", str(config_path), "import", str(tmp_path / "nope.csv")]) == 1

    def test_status_unknown_job(self, config_path):
        assert main(["-c", str(config_path), "status", "nope"]) == 1

    def test_status_overview(self, config_path, capsys):
        assert main(["-c", str(config_path), "status"]) == 0
        assert "Ledger Status" in capsys.readouterr().out

    def test_status_lists_recent_imports_and_transactions(self, config_path, tmp_path, capsys):
        source = tmp_path / "ledger.csv"
        source.write_bytes(
            csv_bytes(
                "Date,Origin,Bank,Flow,Major Category,Category,Sub Category,Description,Income Amount,Outgoing Amount",
                "2024-01-16,Shared,Main Bank,OUTFLOW,,,,Weekly shopping,,85.50",
            )
        )
        assert main(["-c", str(config_path), "import", str(source)]) == 0
        capsys.readouterr()

        assert main(["-c", str(config_path), "status"]) == 0
        output = capsys.readouterr().out
        assert "Recent imports" in output
        assert "ledger.csv" in output
        assert "Latest transactions" in output
        assert "Weekly shopping" in output

    def test_template(self, config_path, tmp_path):
        output = tmp_path / "tpl.xlsx"

        assert main(["-c", str(config_path), "template", "--type", "categories", "-o", str(output)]) == 0
        assert output.exists()

    def test_sync(self, config_path, tmp_path, capsys):
        client = MagicMock(spec=BankDataClient)
        client.list_linked_account_ids.return_value = ["acc-1"]
        client.get_account.return_value = ProviderAccount(id="acc-1", owner_name="Ana", institution_name="Bank A")
        client.get_transactions.return_value = [
            provider_transaction("tx-1", "-50.00"),
            provider_transaction("tx-2", "1000.00"),
        ]

        with patch("household_ledger.services.api.BankDataClient.from_config", return_value=client):
            assert main(["-c", str(config_path), "sync"]) == 0

        output = capsys.readouterr().out
        assert "Created:    2" in output
        assert LedgerStore(tmp_path / "ledger.db").count_transactions() == 2

    def test_sync_requires_credentials(self, config_path, monkeypatch):
        monkeypatch.setenv("BANKDATA_SECRET_ID", "")

        assert main(["-c", str(config_path), "sync"]) == 1

    def test_watchdog(self, config_path, capsys):
        assert main(["-c", str(config_path), "watchdog"]) == 0
        assert "0 stale job(s)" in capsys.readouterr().out
