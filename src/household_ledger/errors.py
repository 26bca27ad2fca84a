"""
Error taxonomy for the ingestion pipeline.

Record-scoped errors (ValidationError, NotFoundError, ConflictError) are
collected per record and never abort a job or a sync. FatalJobError stops
the job it belongs to. ProviderError covers the bank-data provider.
"""


class LedgerError(Exception):
    """Base exception for ledger errors."""

    pass


class ValidationError(LedgerError):
    """A single input record is malformed."""

    def __init__(self, message: str, field: str | None = None, record_index: int | None = None):
        self.message = message
        self.field = field
        self.record_index = record_index
        super().__init__(f"{field}: {message}" if field else message)


class ConflictError(LedgerError):
    """A uniqueness race was lost while inserting a natural key."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"Conflicting insert for {entity} {key!r}")


class NotFoundError(LedgerError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key!r}")


class ProviderError(LedgerError):
    """The bank-data provider failed (auth, rate limit, network, 5xx)."""

    pass


class FatalJobError(LedgerError):
    """A job-level failure; the job is marked failed."""

    pass


class SourceParseError(FatalJobError):
    """The uploaded source file could not be read at all."""

    pass


# Errors the per-record boundary absorbs into the error report.
RECORD_ERRORS = (ValidationError, NotFoundError, ConflictError)
