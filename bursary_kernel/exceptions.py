"""
Typed exception hierarchy for the bursary kernel.

Only genuinely exceptional conditions are raised.  Validation problems
(missing fields, future dates, unknown students, wrong approval level,
double voids) and configuration gaps (no approval bracket for an amount)
are returned as failure results by the services and never reach this
module.  What IS raised here forces the surrounding transaction to roll
back: a payment whose journal entry cannot be posted must not leave a
half-written ledger behind.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BursaryKernelError (base)
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |   +-- InvalidAccountError
    |   +-- EmptyJournalEntryError
    |   +-- InvalidJournalLineError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ApprovalError
    |   +-- ApprovalRequestNotFoundError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError
        +-- ConfigurationNotFoundError

===============================================================================
ERROR CODES
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Posting         | UNBALANCED_ENTRY            | Journal debits != credits
                | INVALID_ACCOUNT             | Unknown or inactive GL account code
                | EMPTY_JOURNAL_ENTRY         | Fewer than two journal lines
                | INVALID_JOURNAL_LINE        | Line with no side, both sides or a negative
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
----------------|-----------------------------|-----------------------------------------
Approval        | APPROVAL_REQUEST_NOT_FOUND  | History lookup for an unknown request
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only record
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_NOT_FOUND     | No configuration set with that name

===============================================================================
HANDLING PATTERN
===============================================================================

    try:
        result = processor.record_payment(request)
    except PostingError as e:
        # Transaction already rolled back; nothing was written.
        return {"success": False, "error": str(e), "code": e.code}
    if not result.success:
        return {"success": False, "error": result.error}
"""


class BursaryKernelError(Exception):
    """
    Base exception for all bursary kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "BURSARY_KERNEL_ERROR"


# Posting-related exceptions


class PostingError(BursaryKernelError):
    """Base exception for general ledger posting errors."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: int, credits: int):
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Unbalanced journal entry: debits={debits}, credits={credits}"
        )


class InvalidAccountError(PostingError):
    """Account is invalid for posting."""

    code: str = "INVALID_ACCOUNT"

    def __init__(self, account_code: str, reason: str):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Invalid account {account_code}: {reason}")


class EmptyJournalEntryError(PostingError):
    """A journal entry needs at least one debit and one credit line."""

    code: str = "EMPTY_JOURNAL_ENTRY"

    def __init__(self, line_count: int):
        self.line_count = line_count
        super().__init__(
            f"Journal entry must have at least 2 lines, got {line_count}"
        )


class InvalidJournalLineError(PostingError):
    """A journal line must carry exactly one positive side."""

    code: str = "INVALID_JOURNAL_LINE"

    def __init__(self, account_code: str, debit: int, credit: int):
        self.account_code = account_code
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Invalid journal line on {account_code}: debit={debit}, credit={credit}"
        )


# Audit exceptions


class AuditError(BursaryKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str | None, actual_hash: str | None):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Approval exceptions


class ApprovalError(BursaryKernelError):
    """Base exception for approval workflow errors."""

    code: str = "APPROVAL_ERROR"


class ApprovalRequestNotFoundError(ApprovalError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


# Immutability exceptions


class ImmutabilityError(BursaryKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(BursaryKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class ConfigurationNotFoundError(ConfigurationError):
    """No configuration set with the requested name exists."""

    code: str = "CONFIGURATION_NOT_FOUND"

    def __init__(self, set_name: str):
        self.set_name = set_name
        super().__init__(f"Configuration set not found: {set_name}")
