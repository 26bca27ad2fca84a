"""Bank-data provider synchronization service.

Pulls booked transactions of linked accounts from the provider and writes
them to the ledger through the ingestion pipeline. Provider transactions
carry an external id, so re-syncing an overlapping window updates rows in
place instead of duplicating them.

Failures are isolated: a bad transaction becomes one error entry and the
account continues; a failing account becomes one error entry and the run
continues with the next account.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from ..errors import ProviderError, ValidationError
from ..schemas.normalizer import get_field, normalize
from ..schemas.records import SourceKind, UpsertOutcome
from ..scoring import create_scorer
from .pipeline import IngestionPipeline

if TYPE_CHECKING:
    from ..bankdata_client import BankDataClient
    from ..config import Config
    from ..scoring import CategoryScorer
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

# Balance types in order of preference for account summaries
_BALANCE_PREFERENCE = ("interimAvailable", "closingBooked", "expected", "interimBooked")


@dataclass
class SyncError:
    """One failure during a sync run."""

    account_id: str | None
    message: str
    transaction_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "transactionId": self.transaction_id,
            "message": self.message,
        }


@dataclass
class SyncResult:
    """Result of syncing one account."""

    account_id: str
    date_from: date
    date_to: date
    created: int = 0
    updated: int = 0
    errors: list[SyncError] = field(default_factory=list)
    skipped: bool = False

    @property
    def success(self) -> bool:
        """Return True if sync completed without errors."""
        return len(self.errors) == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "dateFrom": self.date_from.isoformat(),
            "dateTo": self.date_to.isoformat(),
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class SyncAllResult:
    """Aggregate result of syncing every linked account."""

    accounts_processed: int = 0
    created: int = 0
    updated: int = 0
    errors: list[SyncError] = field(default_factory=list)
    accounts: list[SyncResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def add(self, result: SyncResult) -> None:
        self.accounts_processed += 1
        self.created += result.created
        self.updated += result.updated
        self.errors.extend(result.errors)
        self.accounts.append(result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountsProcessed": self.accounts_processed,
            "created": self.created,
            "updated": self.updated,
            "errors": [e.to_dict() for e in self.errors],
            "accounts": [a.to_dict() for a in self.accounts],
        }


class BankSyncService:
    """Service for synchronizing provider transactions into the ledger."""

    def __init__(
        self,
        client: BankDataClient,
        store: LedgerStore,
        config: Config,
        scorer: CategoryScorer | None = None,
    ) -> None:
        """Initialize the sync service.

        Args:
            client: Client for the bank-data provider.
            store: Ledger store.
            config: Application configuration.
            scorer: Category scorer; built from config per run if None.
        """
        self.client = client
        self.store = store
        self.config = config
        self.scorer = scorer

    def default_window(self, today: date | None = None) -> tuple[date, date]:
        """The default sync window: the last sync.default_window_days days up to today."""
        today = today or date.today()
        return today - timedelta(days=self.config.sync.default_window_days), today

    def _window(self, date_from: date | None, date_to: date | None) -> tuple[date, date]:
        default_from, default_to = self.default_window()
        date_to = date_to or default_to
        date_from = date_from or (date_to - (default_to - default_from))
        if date_from > date_to:
            raise ValidationError(
                f"date_from {date_from.isoformat()} is after date_to {date_to.isoformat()}",
                field="date_from",
            )
        return date_from, date_to

    def _recently_synced(self, account_id: str) -> bool:
        interval = self.config.sync.min_interval_minutes
        if interval <= 0:
            return False
        last = self.store.get_last_sync_run(account_id)
        if last is None:
            return False
        finished = datetime.fromisoformat(last["finished_at"].replace("Z", "+00:00"))
        return datetime.now(timezone.utc) - finished < timedelta(minutes=interval)

    def sync_account(
        self,
        account_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
        force: bool = False,
        pipeline: IngestionPipeline | None = None,
    ) -> SyncResult:
        """Sync one account's booked transactions into the ledger.

        Args:
            account_id: Provider account id.
            date_from: Start of window (inclusive); defaults to the configured window.
            date_to: End of window (inclusive); defaults to today.
            force: Ignore sync.min_interval_minutes.
            pipeline: Pipeline to reuse across accounts of one run.

        Returns:
            SyncResult with created/updated counts and error entries.

        Raises:
            ValidationError: If date_from is after date_to.
        """
        date_from, date_to = self._window(date_from, date_to)
        result = SyncResult(account_id=account_id, date_from=date_from, date_to=date_to)
        try:
            self._sync_into(result, force, pipeline)
        except Exception as e:
            # Account-level failures are reported in the result, never raised
            logger.exception("Sync of account %s failed", account_id)
            result.errors.append(SyncError(account_id, f"{type(e).__name__}: {e}"))
        return result

    def _sync_into(
        self, result: SyncResult, force: bool, pipeline: IngestionPipeline | None
    ) -> None:
        account_id, date_from, date_to = result.account_id, result.date_from, result.date_to

        if not force and self._recently_synced(account_id):
            logger.info(
                "Skipping account %s: synced less than %d minutes ago",
                account_id,
                self.config.sync.min_interval_minutes,
            )
            result.skipped = True
            return

        try:
            account = self.client.get_account(account_id)
            transactions = self.client.get_transactions(account_id, date_from, date_to)
        except ProviderError as e:
            logger.error("Provider failure for account %s: %s", account_id, e)
            result.errors.append(SyncError(account_id, str(e)))
            return

        origin = account.owner_name or self.config.sync.default_origin
        bank = account.bank_name or account.iban or account_id
        logger.info(
            "Syncing account %s (%s, %s): %d transactions %s..%s",
            account_id,
            origin,
            bank,
            len(transactions),
            date_from,
            date_to,
        )

        own_scorer = None
        if pipeline is None:
            own_scorer = self.scorer or create_scorer(self.config)
            pipeline = IngestionPipeline(self.store, own_scorer, self.config)

        try:
            for raw in transactions:
                transaction_id = get_field(raw, "transactionId", "internalTransactionId")
                try:
                    draft = normalize(
                        raw, SourceKind.PROVIDER_SYNC, origin=origin, bank=bank, account_id=account_id
                    )
                    _, outcome = pipeline.ingest(draft)
                except Exception as e:
                    logger.warning(
                        "Failed to sync transaction %s of account %s: %s", transaction_id, account_id, e
                    )
                    result.errors.append(SyncError(account_id, str(e), transaction_id=transaction_id))
                    continue

                if outcome == UpsertOutcome.CREATED:
                    result.created += 1
                else:
                    result.updated += 1
        finally:
            if own_scorer is not None and own_scorer is not self.scorer:
                own_scorer.close()

        self.store.record_sync_run(
            account_id,
            date_from.isoformat(),
            date_to.isoformat(),
            result.created,
            result.updated,
            len(result.errors),
        )
        logger.info(
            "Account %s synced: %d created, %d updated, %d errors",
            account_id,
            result.created,
            result.updated,
            len(result.errors),
        )

    def sync_all_accounts(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        force: bool = False,
    ) -> SyncAllResult:
        """Sync every linked account, isolating failures per account.

        Raises:
            ValidationError: If date_from is after date_to.
        """
        date_from, date_to = self._window(date_from, date_to)
        total = SyncAllResult()

        try:
            account_ids = self.client.list_linked_account_ids()
        except ProviderError as e:
            logger.error("Could not list linked accounts: %s", e)
            total.errors.append(SyncError(None, f"Could not list linked accounts: {e}"))
            return total

        scorer = self.scorer or create_scorer(self.config)
        pipeline = IngestionPipeline(self.store, scorer, self.config)
        try:
            for account_id in account_ids:
                total.add(
                    self.sync_account(account_id, date_from, date_to, force=force, pipeline=pipeline)
                )
        finally:
            if scorer is not self.scorer:
                scorer.close()

        logger.info(
            "Sync complete: %d accounts, %d created, %d updated, %d errors",
            total.accounts_processed,
            total.created,
            total.updated,
            len(total.errors),
        )
        return total

    def list_accounts(self) -> list[dict[str, Any]]:
        """Summaries of every linked account.

        Raises:
            ProviderError: If the accounts cannot be enumerated.
        """
        summaries = []
        date_from, date_to = self.default_window()
        for account_id in self.client.list_linked_account_ids():
            try:
                account = self.client.get_account(account_id)
                balances = self.client.get_balances(account_id)
                recent = self.client.get_transactions(account_id, date_from, date_to)
            except ProviderError as e:
                logger.warning("Could not summarize account %s: %s", account_id, e)
                summaries.append({"id": account_id, "error": str(e)})
                continue

            booking_dates = [d for d in (get_field(t, "bookingDate", "valueDate") for t in recent) if d]
            last_sync = self.store.get_last_sync_run(account_id)
            summaries.append(
                {
                    "id": account.id,
                    "name": account.name,
                    "iban": account.iban,
                    "currency": account.currency,
                    "status": account.status,
                    "institution": account.bank_name,
                    "owner": account.owner_name,
                    "balance": _pick_balance(balances),
                    "recentTransactionCount": len(recent),
                    "lastTransactionDate": max(booking_dates) if booking_dates else None,
                    "lastSyncedAt": last_sync["finished_at"] if last_sync else None,
                }
            )
        return summaries


def _pick_balance(balances: list[dict]) -> dict[str, Any] | None:
    by_type = {b.get("balanceType"): b for b in balances}
    for balance_type in _BALANCE_PREFERENCE:
        if balance_type in by_type:
            chosen = by_type[balance_type]
            break
    else:
        if not balances:
            return None
        chosen = balances[0]
    amount = chosen.get("balanceAmount") or {}
    return {
        "amount": amount.get("amount"),
        "currency": amount.get("currency"),
        "type": chosen.get("balanceType"),
    }
