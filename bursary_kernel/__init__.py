"""
Bursary Kernel

The transactional core of the school bursary ledger:
- Fee invoices with oldest-due-first payment allocation
- Student credit from overpayments, applied to later invoices
- Payment voiding that preserves history
- Multi-level monetary approval workflow
- Double-entry journal posting and hash-chained audit trail
"""

__version__ = "0.1.0"
