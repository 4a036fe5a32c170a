"""
Typed exception hierarchy for the ledger.

Every business-rule violation is a typed exception with a machine-readable
``code`` class attribute and structured attributes, so callers catch by type
and boundaries (``ledger_services.api``) serialize by code instead of parsing
messages.

    LedgerError (base)
    |
    +-- ValidationError
    |   +-- DuplicateAccountCodeError
    |   +-- ConfigurationError
    +-- NotFoundError
    +-- UnbalancedEntryError
    +-- UnknownAccountError
    +-- MissingAccountConfigurationError
    +-- InvalidTransitionError
    |   +-- AlreadyPostedError
    |   +-- AlreadyVoidedError
    |   +-- ReopenReasonTooShortError
    +-- PeriodError
    |   +-- PeriodClosedError
    |   +-- PeriodLockedError
    |   +-- PeriodAlreadyCalculatedError
    +-- IdempotencyError
    |   +-- DuplicateEventError
    |   +-- DuplicateTransactionError
    |   +-- EventConflictError
    |   +-- UnsupportedEventTypeError
    +-- HasMatchedTransactionsError
    +-- ImmutabilityViolationError

DuplicateEventError is the idempotency short-circuit of event ingestion:
EventIngestionService catches it and returns status DUPLICATE instead of
raising it at callers.  DuplicateTransactionError reaches callers only when a
concurrent import stored the same fingerprint first; otherwise known rows
are counted in duplicates_skipped.
"""

from uuid import UUID


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses define a ``code`` class attribute.
    """

    code: str = "LEDGER_ERROR"


# Input validation


class ValidationError(LedgerError):
    """Malformed input, rejected before any mutation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class DuplicateAccountCodeError(ValidationError):
    """Account code already exists in the chart of accounts."""

    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code {account_code} already exists", field="code")


class ConfigurationError(ValidationError):
    """Ledger configuration file is malformed."""

    code: str = "CONFIGURATION_ERROR"


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Posting


class UnbalancedEntryError(LedgerError):
    """Journal entry debits do not equal credits within tolerance."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: str, credits: str):
        self.debits = debits
        self.credits = credits
        super().__init__(f"Unbalanced entry: debits={debits}, credits={credits}")


class UnknownAccountError(LedgerError):
    """Account does not exist, is inactive, or is not a detail account."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_ref: str, reason: str = "not found"):
        self.account_ref = account_ref
        self.reason = reason
        super().__init__(f"Unknown account {account_ref}: {reason}")


class MissingAccountConfigurationError(LedgerError):
    """An event requires a GL account that is not configured."""

    code: str = "MISSING_ACCOUNT_CONFIGURATION"

    def __init__(self, role: str, account_code: str | None):
        self.role = role
        self.account_code = account_code
        super().__init__(
            f"Missing account configuration for {role} "
            f"(account code {account_code or 'unset'})"
        )


# State machines


class InvalidTransitionError(LedgerError):
    """Illegal state-machine move."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id} in status {from_status}"
        )


class AlreadyPostedError(InvalidTransitionError):
    """Journal entry has already been posted."""

    code: str = "ALREADY_POSTED"

    def __init__(self, entry_id: str):
        super().__init__("JournalEntry", entry_id, "posted", "post")


class AlreadyVoidedError(InvalidTransitionError):
    """Journal entry has already been voided."""

    code: str = "ALREADY_VOIDED"

    def __init__(self, entry_id: str, operation: str = "void"):
        super().__init__("JournalEntry", entry_id, "voided", operation)


class ReopenReasonTooShortError(InvalidTransitionError):
    """A closed period reopens only with a reason of the minimum length."""

    def __init__(self, period_code: str, min_length: int):
        self.entity_type = "FiscalPeriod"
        self.entity_id = period_code
        self.from_status = "closed"
        self.operation = "reopen"
        self.min_length = min_length
        LedgerError.__init__(
            self,
            f"Cannot reopen FiscalPeriod {period_code}: "
            f"reason must be at least {min_length} characters",
        )


# Periods


class PeriodError(LedgerError):
    """Base exception for fiscal period errors."""

    code: str = "PERIOD_ERROR"


class PeriodClosedError(PeriodError):
    """Attempted to post into a period that is not Open."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, fiscal_year: int, fiscal_month: int, status: str | None):
        self.fiscal_year = fiscal_year
        self.fiscal_month = fiscal_month
        self.status = status
        super().__init__(
            f"Fiscal period {fiscal_year}-{fiscal_month:02d} is not open "
            f"(status: {status or 'missing'})"
        )


class PeriodLockedError(PeriodError):
    """Locked periods cannot be reopened or modified."""

    code: str = "PERIOD_LOCKED"

    def __init__(self, fiscal_year: int, fiscal_month: int):
        self.fiscal_year = fiscal_year
        self.fiscal_month = fiscal_month
        super().__init__(f"Fiscal period {fiscal_year}-{fiscal_month:02d} is locked")


class PeriodAlreadyCalculatedError(PeriodError):
    """A depreciation run already exists for the period."""

    code: str = "PERIOD_ALREADY_CALCULATED"

    def __init__(self, fiscal_year: int, fiscal_month: int, run_id: str, status: str):
        self.fiscal_year = fiscal_year
        self.fiscal_month = fiscal_month
        self.run_id = run_id
        self.status = status
        super().__init__(
            f"Depreciation for {fiscal_year}-{fiscal_month:02d} already "
            f"{status.lower()} (run {run_id})"
        )


# Idempotency


class IdempotencyError(LedgerError):
    """Base exception for idempotency-key conditions."""

    code: str = "IDEMPOTENCY_ERROR"


class DuplicateEventError(IdempotencyError):
    """Event already reached a final outcome; the ingestor reports it as DUPLICATE."""

    code: str = "DUPLICATE_EVENT"

    def __init__(
        self,
        event_id: str,
        outcome: str | None = None,
        journal_entry_id: UUID | None = None,
    ):
        self.event_id = event_id
        self.outcome = outcome
        self.journal_entry_id = journal_entry_id
        super().__init__(f"Event already processed: {event_id}")


class DuplicateTransactionError(IdempotencyError):
    """Bank transaction fingerprint already stored."""

    code: str = "DUPLICATE_TRANSACTION"

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__(f"Bank transaction already imported: {fingerprint}")


class EventConflictError(IdempotencyError):
    """A concurrent writer claimed the same event first."""

    code: str = "EVENT_CONFLICT"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} is being processed concurrently")


class UnsupportedEventTypeError(IdempotencyError):
    """No posting rule is registered for the event type."""

    code: str = "UNSUPPORTED_EVENT_TYPE"

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"No posting rule registered for event type {event_type}")


# Reconciliation


class HasMatchedTransactionsError(LedgerError):
    """Statement cannot be deleted while transactions are matched."""

    code: str = "HAS_MATCHED_TRANSACTIONS"

    def __init__(self, statement_id: str, matched_count: int):
        self.statement_id = statement_id
        self.matched_count = matched_count
        super().__init__(
            f"Cannot delete statement {statement_id}: "
            f"{matched_count} transaction(s) are matched"
        )


# Immutability


class ImmutabilityViolationError(LedgerError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Immutability violation on {entity_type} {entity_id}: {reason}")
