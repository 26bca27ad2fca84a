"""
Caller-facing ingestion API.

Wraps the job tracker and the sync service in response envelopes:
- success: {"success": True, "data": ...}
- failure: {"success": False, "error": {"code": ..., "message": ...}}

Used by both the CLI and the web views.
"""

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

from ..bankdata_client import BankDataClient
from ..errors import NotFoundError, ProviderError, SourceParseError, ValidationError
from .bank_sync import BankSyncService
from .import_jobs import ImportJobTracker

if TYPE_CHECKING:
    from ..config import Config
    from ..scoring import CategoryScorer
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)


def ok(data: Any, message: str | None = None) -> dict[str, Any]:
    response: dict[str, Any] = {"success": True, "data": data}
    if message:
        response["message"] = message
    return response


def fail(code: str, message: str, **details: Any) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    error.update(details)
    return {"success": False, "error": error}


def parse_iso_date(value: Any, field: str) -> date | None:
    """Parse an optional YYYY-MM-DD request parameter."""
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(
            f"{field} must be an ISO date (YYYY-MM-DD), got {value!r}", field=field
        ) from None


class IngestionAPI:
    """Entry points for imports and provider syncs."""

    def __init__(
        self,
        store: "LedgerStore",
        config: "Config",
        client: BankDataClient | None = None,
        scorer: "CategoryScorer | None" = None,
    ):
        self.store = store
        self.config = config
        self.scorer = scorer
        self.tracker = ImportJobTracker(store, config, scorer=scorer)
        self._client = client
        self._sync: BankSyncService | None = None

    @property
    def sync_service(self) -> BankSyncService:
        if self._sync is None:
            client = self._client or BankDataClient.from_config(self.config.bankdata)
            self._sync = BankSyncService(client, self.store, self.config, scorer=self.scorer)
        return self._sync

    def _check_upload(self, payload: bytes) -> dict[str, Any] | None:
        if not payload:
            return fail("validation_error", "Uploaded file is empty", field="file")
        limit = self.config.imports.max_upload_mb
        if len(payload) > self.config.imports.max_upload_bytes:
            return fail("validation_error", f"File size exceeds {limit}MB limit", field="file")
        return None

    def submit_import(
        self, payload: bytes, filename: str, record_kind: str, run_async: bool = True
    ) -> dict[str, Any]:
        """Start a bulk import; returns the job id without waiting for it."""
        rejected = self._check_upload(payload)
        if rejected:
            return rejected
        try:
            job_id = self.tracker.submit(payload, filename, record_kind, run_async=run_async)
        except ValidationError as e:
            return fail("validation_error", str(e), field=e.field)
        return ok({"jobId": job_id}, message=f"Import of {filename} started")

    def validate_import(self, payload: bytes, filename: str, record_kind: str) -> dict[str, Any]:
        """Dry run of an import: per-row errors and a preview, nothing written."""
        rejected = self._check_upload(payload)
        if rejected:
            return rejected
        try:
            report = self.tracker.validate(payload, filename, record_kind)
        except ValidationError as e:
            return fail("validation_error", str(e), field=e.field)
        except SourceParseError as e:
            return fail("validation_error", str(e), field="file")

        if report["isValid"]:
            message = f"File validation successful. {report['totalRecords']} records ready for import."
        else:
            message = f"{report['errorCount']} of {report['totalRecords']} records have errors"
        return ok(report, message=message)

    def get_import_status(self, job_id: str) -> dict[str, Any]:
        try:
            return ok(self.tracker.get_status(job_id))
        except NotFoundError:
            return fail("not_found", f"Import job {job_id} not found")

    def trigger_sync(
        self,
        account_id: str | None = None,
        date_from: Any = None,
        date_to: Any = None,
        force_sync: bool = False,
    ) -> dict[str, Any]:
        """Sync one account (account_id given) or every linked account."""
        try:
            start = parse_iso_date(date_from, "dateFrom")
            end = parse_iso_date(date_to, "dateTo")
            if account_id:
                result = self.sync_service.sync_account(account_id, start, end, force=force_sync)
                data = result.to_dict()
                message = f"Synced account {account_id}: {result.created} created, {result.updated} updated"
            else:
                total = self.sync_service.sync_all_accounts(start, end, force=force_sync)
                data = total.to_dict()
                message = (
                    f"Synced {total.accounts_processed} accounts: "
                    f"{total.created} created, {total.updated} updated"
                )
        except ValidationError as e:
            return fail("validation_error", str(e), field=e.field)
        return ok(data, message=message)

    def list_accounts(self) -> dict[str, Any]:
        try:
            return ok(self.sync_service.list_accounts())
        except ProviderError as e:
            logger.error("Listing accounts failed: %s", e)
            return fail("provider_error", str(e))
