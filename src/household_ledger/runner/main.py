"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

import yaml

from ..config import Config, create_default_config, load_config
from ..readers import write_template
from ..schemas.records import RecordKind
from ..services import IngestionAPI, ImportJobTracker
from ..state_store import LedgerStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="household-ledger",
        description="Import spreadsheets and sync bank accounts into the household ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    kinds = [k.value for k in RecordKind]

    # import command
    import_parser = subparsers.add_parser("import", help="Import a CSV/XLSX file")
    import_parser.add_argument("file", type=Path, help="File to import")
    import_parser.add_argument(
        "--type",
        dest="record_kind",
        choices=kinds,
        default=RecordKind.TRANSACTIONS.value,
        help="What the file contains (default: transactions)",
    )
    import_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only check the rows and report errors, write nothing",
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Show ledger stats or one job's progress")
    status_parser.add_argument("job_id", nargs="?", help="Import job id")

    # template command
    template_parser = subparsers.add_parser("template", help="Write an XLSX import template")
    template_parser.add_argument("--type", dest="record_kind", choices=kinds, required=True)
    template_parser.add_argument("-o", "--output", type=Path, help="Output path")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync transactions from the bank-data provider")
    sync_parser.add_argument("--account-id", help="Only this provider account")
    sync_parser.add_argument("--date-from", help="Start date YYYY-MM-DD (default: window start)")
    sync_parser.add_argument("--date-to", help="End date YYYY-MM-DD (default: today)")
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Sync even if the account was synced recently",
    )

    subparsers.add_parser("accounts", help="List linked provider accounts")
    subparsers.add_parser("watchdog", help="Fail import jobs stuck in processing")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the JSON web API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8080)

    return parser


def _print_errors(errors: list[dict], limit: int = 20) -> None:
    for error in errors[:limit]:
        where = error.get("recordIndex") or error.get("transactionId") or error.get("accountId") or "-"
        print(f"   - [{where}] {error['message']}")
    if len(errors) > limit:
        print(f"   ... and {len(errors) - limit} more")


def _print_job(progress: dict) -> None:
    print(f"\n📦 Import job {progress['jobId']}")
    print("=" * 40)
    print(f"  Source:     {progress['sourceLabel']} ({progress['recordKind']})")
    print(f"  Status:     {progress['status']}")
    print(f"  Records:    {progress['totalRecords']}")
    print(f"  Processed:  {progress['processedRecords']}")
    print(f"  Failed:     {progress['failedRecords']}")
    print(f"  Progress:   {progress['percentage']}%")
    if progress["errorMessage"]:
        print(f"  Error:      {progress['errorMessage']}")
    if progress["errorReport"]:
        print("\n⚠️  Record errors:")
        _print_errors(progress["errorReport"])
    print()


def _print_validation(response: dict) -> int:
    if not response["success"]:
        print(f"❌ {response['error']['message']}")
        return 1

    report = response["data"]
    icon = "✓" if report["isValid"] else "⚠️ "
    print(f"\n{icon} {response['message']}")
    if report["errors"]:
        _print_errors(report["errors"])
        if report["hasMoreErrors"]:
            print(f"   ... {report['errorCount']} errors in total")
    print()
    return 0 if report["isValid"] else 1


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def cmd_import(config: Config, path: Path, record_kind: str, dry_run: bool = False) -> int:
    """Import a spreadsheet file and wait for the job to finish."""
    if not path.exists():
        print(f"❌ File not found: {path}")
        return 1

    store = LedgerStore(config.state_db_path)
    api = IngestionAPI(store, config)

    if dry_run:
        return _print_validation(api.validate_import(path.read_bytes(), path.name, record_kind))

    response = api.submit_import(path.read_bytes(), path.name, record_kind, run_async=False)
    if not response["success"]:
        print(f"❌ {response['error']['message']}")
        return 1

    job_id = response["data"]["jobId"]
    progress = api.get_import_status(job_id)["data"]
    _print_job(progress)
    return 0 if progress["status"] == "completed" else 1


def cmd_status(config: Config, job_id: str | None = None) -> int:
    """Show ledger statistics, or the progress of one job."""
    store = LedgerStore(config.state_db_path)
    api = IngestionAPI(store, config)

    if job_id:
        response = api.get_import_status(job_id)
        if not response["success"]:
            print(f"❌ {response['error']['message']}")
            return 1
        _print_job(response["data"])
        return 0

    stats = store.get_stats()
    print("\n📊 Ledger Status")
    print("=" * 40)
    print(f"  Transactions:   {stats['transactions']}")
    print(f"  Origins:        {stats['origins']}")
    print(f"  Banks:          {stats['banks']}")
    print(f"  Categories:     {stats['categories']}")
    for status, count in sorted(stats["jobs_by_status"].items()):
        print(f"  Jobs {status + ':':<11}{count}")

    jobs = api.tracker.list_jobs(limit=5)
    if jobs:
        print("\n  Recent imports:")
        for job in jobs:
            print(
                f"   {job.id[:8]}  {job.status.value:<10} {job.processed_records}/{job.total_records}"
                f"  {job.source_label}"
            )

    recent = store.list_transactions(limit=5)
    if recent:
        print("\n  Latest transactions:")
        for record in recent:
            amount = record.income_amount if record.income_amount is not None else record.outgoing_amount
            print(f"   {record.date}  {record.flow.value:<7} {amount!s:>10}  {record.description}")
    print()
    return 0


def cmd_template(record_kind: str, output: Path | None) -> int:
    """Write an import template."""
    kind = RecordKind(record_kind)
    path = write_template(kind, output or Path(f"{kind.value}_template.xlsx"))
    print(f"✓ Wrote {path}")
    return 0


def cmd_sync(
    config: Config,
    account_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    force: bool = False,
) -> int:
    """Sync provider transactions into the ledger."""
    errors = config.validate()
    if not config.bankdata.secret_id or not config.bankdata.secret_key:
        errors.append("bankdata.secret_id and bankdata.secret_key are required for sync")
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    store = LedgerStore(config.state_db_path)
    api = IngestionAPI(store, config)

    print("🔄 Syncing with bank-data provider...")
    response = api.trigger_sync(account_id, date_from, date_to, force_sync=force)
    if not response["success"]:
        print(f"❌ {response['error']['message']}")
        return 1

    data = response["data"]
    print()
    print("📊 Sync Results")
    print("=" * 40)
    if "accountsProcessed" in data:
        print(f"  Accounts:   {data['accountsProcessed']}")
    else:
        print(f"  Account:    {data['accountId']}{' (skipped)' if data['skipped'] else ''}")
        print(f"  Window:     {data['dateFrom']} .. {data['dateTo']}")
    print(f"  Created:    {data['created']}")
    print(f"  Updated:    {data['updated']}")
    print()

    if data["errors"]:
        print("⚠️  Errors encountered:")
        _print_errors(data["errors"])
        return 1

    print("✓ Sync completed successfully")
    return 0


def cmd_accounts(config: Config) -> int:
    """List linked provider accounts."""
    store = LedgerStore(config.state_db_path)
    response = IngestionAPI(store, config).list_accounts()
    if not response["success"]:
        print(f"❌ {response['error']['message']}")
        return 1

    accounts = response["data"]
    if not accounts:
        print("No linked accounts")
        return 0
    for account in accounts:
        if "error" in account:
            print(f"  ❌ {account['id']}: {account['error']}")
            continue
        balance = account["balance"] or {}
        print(
            f"  🏦 {account['id']}  {account['institution'] or '-'}  {account['iban'] or '-'}"
            f"  {balance.get('amount', '-')} {balance.get('currency') or account['currency'] or ''}"
            f"  ({account['recentTransactionCount']} recent)"
        )
    return 0


def cmd_watchdog(config: Config) -> int:
    """Fail stale import jobs."""
    store = LedgerStore(config.state_db_path)
    failed = ImportJobTracker(store, config).fail_stale_jobs()
    print(f"✓ {len(failed)} stale job(s) failed")
    for job_id in failed:
        print(f"   - {job_id}")
    return 0


def cmd_serve(config: Config, config_path: Path, host: str, port: int) -> int:
    """Start the JSON web API."""
    from ..web.app import run_server

    print(f"🌐 Starting web API on http://{host}:{port}/ ...")
    try:
        run_server(host=host, port=port, config_path=config_path, state_db_path=config.state_db_path)
    except KeyboardInterrupt:
        print("\n✓ Web API stopped")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "import":
        return cmd_import(config, parsed.file, parsed.record_kind, dry_run=parsed.dry_run)
    elif parsed.command == "status":
        return cmd_status(config, parsed.job_id)
    elif parsed.command == "template":
        return cmd_template(parsed.record_kind, parsed.output)
    elif parsed.command == "sync":
        return cmd_sync(
            config,
            account_id=parsed.account_id,
            date_from=parsed.date_from,
            date_to=parsed.date_to,
            force=parsed.force,
        )
    elif parsed.command == "accounts":
        return cmd_accounts(config)
    elif parsed.command == "watchdog":
        return cmd_watchdog(config)
    elif parsed.command == "serve":
        return cmd_serve(config, parsed.config, parsed.host, parsed.port)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
