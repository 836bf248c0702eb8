"""
Document reference formatting.

Receipt numbers, transaction references and invoice numbers are legal
documents, so uniqueness comes from a locked sequence counter rather than
from randomness alone.  The date prefix keeps them readable.

    TXN-20240101-000042-9F1C3A7B
    RCP-20240101-000042
"""

import secrets
from datetime import date


class ReferencePrefix:
    TRANSACTION = "TXN"
    RECEIPT = "RCP"
    INVOICE = "INV"
    VOID = "VOID"
    JOURNAL = "JE"


def format_reference(prefix: str, on_date: date, seq: int, with_nonce: bool = False) -> str:
    """Build ``PREFIX-YYYYMMDD-NNNNNN`` with an optional 8-hex-digit nonce."""
    ref = f"{prefix}-{on_date:%Y%m%d}-{seq:06d}"
    if with_nonce:
        ref = f"{ref}-{secrets.token_hex(4).upper()}"
    return ref
