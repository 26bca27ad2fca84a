"""
Import Job Tracker.

Runs bulk imports asynchronously and tracks their progress.

Features:
- Submission returns a job id immediately; rows are processed on a worker thread
- Atomic claim (pending -> processing) so a job is never processed twice
- Per-record failures land in the error report; the job still completes
- Job-level failures (unreadable file, unexpected exception) fail the job
- Watchdog for jobs stuck in processing
- Dry-run validation that parses a file without writing anything
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from ..errors import RECORD_ERRORS, NotFoundError, ValidationError
from ..readers import read_rows
from ..schemas.normalizer import jsonable
from ..schemas.records import ImportJob, RecordKind
from ..scoring import create_scorer
from .pipeline import IngestionPipeline
from .record_kinds import get_checker, get_handler

if TYPE_CHECKING:
    from ..config import Config
    from ..scoring import CategoryScorer
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

# Dry-run reports carry at most this many errors and preview rows
MAX_REPORTED_ERRORS = 10
PREVIEW_ROWS = 5


def parse_record_kind(value: Any) -> RecordKind:
    """Parse a record kind label ("transactions", "Banks", ...)."""
    try:
        return RecordKind(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(k.value for k in RecordKind)
        raise ValidationError(
            f"Unknown record kind {value!r} (expected one of {valid})", field="type"
        ) from None


class ImportJobTracker:
    """
    Service for submitting and tracking bulk import jobs.

    Job state lives in the ledger store, so any process sharing the database
    can poll a job by id.
    """

    def __init__(
        self,
        store: "LedgerStore",
        config: "Config",
        scorer: "CategoryScorer | None" = None,
    ):
        """
        Initialize the tracker.

        Args:
            store: Ledger store for job persistence and ledger writes
            config: Application configuration
            scorer: Scorer shared by all jobs; one is built per job from config if None
        """
        self.store = store
        self.config = config
        self.scorer = scorer
        self._threads: dict[str, threading.Thread] = {}

    def submit(
        self,
        payload: bytes,
        filename: str,
        record_kind: RecordKind | str,
        run_async: bool = True,
    ) -> str:
        """
        Create an import job and start processing it.

        Args:
            payload: Uploaded file bytes
            filename: Original file name (job source label)
            record_kind: What the file contains
            run_async: Process on a daemon thread (True) or inline (False)

        Returns:
            Job id

        Raises:
            ValidationError: If the record kind is unknown
        """
        kind = parse_record_kind(record_kind)
        job_id = uuid.uuid4().hex
        self.store.create_import_job(job_id, filename, kind)
        logger.info("Submitted import job %s (%s, %s)", job_id, kind.value, filename)

        if run_async:
            thread = threading.Thread(
                target=self.run_job,
                args=(job_id, payload, filename, kind),
                name=f"import-{job_id[:8]}",
                daemon=True,
            )
            self._threads[job_id] = thread
            thread.start()
        else:
            self.run_job(job_id, payload, filename, kind)

        return job_id

    def run_job(
        self, job_id: str, payload: bytes, filename: str, record_kind: RecordKind
    ) -> ImportJob | None:
        """
        Process a claimed job to a terminal state.

        Returns:
            Final job state, or None if the job could not be claimed
        """
        if not self.store.claim_import_job(job_id):
            logger.warning("Could not claim import job %s - already taken or not pending", job_id)
            return None

        scorer = self.scorer or create_scorer(self.config)
        try:
            rows = read_rows(payload, filename)
            self.store.set_import_job_total(job_id, len(rows))
            logger.info("Import job %s: %d %s rows", job_id, len(rows), record_kind.value)

            handler = get_handler(record_kind)
            pipeline = IngestionPipeline(self.store, scorer, self.config)

            for index, row in enumerate(rows, start=1):
                try:
                    handler(pipeline, row)
                except RECORD_ERRORS as e:
                    logger.warning("Import job %s: record %d failed: %s", job_id, index, e)
                    self.store.record_import_failure(job_id, index, str(e))
                    continue
                self.store.record_import_success(job_id)

            self.store.complete_import_job(job_id)
        except Exception as e:
            logger.exception("Import job %s failed", job_id)
            self.store.fail_import_job(job_id, f"{type(e).__name__}: {e}")
        finally:
            if scorer is not self.scorer:
                scorer.close()
            self._threads.pop(job_id, None)

        job = self.store.get_import_job(job_id)
        if job is not None:
            logger.info(
                "Import job %s %s: %d processed, %d failed of %d",
                job_id,
                job.status.value,
                job.processed_records,
                job.failed_records,
                job.total_records,
            )
        return job

    def validate(self, payload: bytes, filename: str, record_kind: RecordKind | str) -> dict[str, Any]:
        """
        Parse every row of a file and report the rows an import would reject.

        Nothing is written and no job is created. Dimension references are
        not looked up, so a row that passes can still fail with NotFoundError
        during the real import.

        Raises:
            ValidationError: If the record kind is unknown
            SourceParseError: If the file cannot be read
        """
        kind = parse_record_kind(record_kind)
        rows = read_rows(payload, filename)
        checker = get_checker(kind)

        errors = []
        for index, row in enumerate(rows, start=1):
            try:
                checker(row)
            except ValidationError as e:
                errors.append({"recordIndex": index, "field": e.field, "message": e.message})

        logger.info(
            "Validated %s (%s): %d rows, %d invalid", filename, kind.value, len(rows), len(errors)
        )
        return {
            "recordKind": kind.value,
            "isValid": not errors,
            "totalRecords": len(rows),
            "errorCount": len(errors),
            "errors": errors[:MAX_REPORTED_ERRORS],
            "hasMoreErrors": len(errors) > MAX_REPORTED_ERRORS,
            "preview": [jsonable(row) for row in rows[:PREVIEW_ROWS]],
        }

    def get_job(self, job_id: str) -> ImportJob:
        """
        Raises:
            NotFoundError: If no job has this id
        """
        job = self.store.get_import_job(job_id)
        if job is None:
            raise NotFoundError("import job", job_id)
        return job

    def get_status(self, job_id: str) -> dict[str, Any]:
        """Progress snapshot of a job."""
        return self.get_job(job_id).to_progress()

    def wait(self, job_id: str, timeout: float | None = None) -> ImportJob:
        """Block until a job started by this tracker finishes (or timeout)."""
        thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
        return self.get_job(job_id)

    def list_jobs(self, limit: int = 20) -> list[ImportJob]:
        return self.store.list_import_jobs(limit=limit)

    def fail_stale_jobs(self) -> list[str]:
        """
        Fail jobs stuck in processing longer than imports.job_timeout_minutes.

        A worker that died (process restart, killed thread) leaves its job in
        processing forever; pollers would wait indefinitely without this.
        """
        timeout = timedelta(minutes=self.config.imports.job_timeout_minutes)
        cutoff = (datetime.now(timezone.utc) - timeout).isoformat().replace("+00:00", "Z")
        job_ids = self.store.fail_stale_import_jobs(
            cutoff, f"Timed out after {self.config.imports.job_timeout_minutes} minutes in processing"
        )
        for job_id in job_ids:
            logger.warning("Watchdog failed stale import job %s", job_id)
        return job_ids
