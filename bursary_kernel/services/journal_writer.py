"""
JournalWriter -- double-entry posting to the general ledger.

Responsibility:
    Turns a list of debit/credit lines into a balanced, posted
    ``JournalEntry``.  Every money movement recorded by the bursary services
    (fee invoice, fee payment, credit application, credit adjustment) is
    mirrored in the GL through this class.  Also voids entries when the
    source document is voided or cancelled, and aggregates account
    balances for the reconciliation checks.

Architecture position:
    Kernel > Services -- imperative shell.  Called by PaymentProcessor,
    VoidProcessor, InvoiceService and CreditService.  Never commits.

Invariants enforced:
    - At least two lines, each with exactly one positive side.
    - Every account code resolves to an active ``GLAccount``.
    - Sum of debits equals sum of credits, exactly (integer minor units).
    - Lines are append-only; a voided entry keeps its lines and is simply
      excluded from balances.

Failure modes:
    - EmptyJournalEntryError, InvalidJournalLineError, InvalidAccountError,
      UnbalancedEntryError.  All are raised, so the caller's whole
      transaction rolls back.

Audit relevance:
    JOURNAL_POSTED / JOURNAL_VOIDED audit events; ``source_ledger_txn_id``
    and ``source_invoice_id`` link each entry to its business document.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bursary_kernel.domain.clock import Clock, SystemClock
from bursary_kernel.domain.references import ReferencePrefix, format_reference
from bursary_kernel.exceptions import (
    EmptyJournalEntryError,
    InvalidAccountError,
    InvalidJournalLineError,
    UnbalancedEntryError,
)
from bursary_kernel.logging_config import get_logger
from bursary_kernel.models.account import AccountType, GLAccount
from bursary_kernel.models.audit_event import AuditAction
from bursary_kernel.models.journal import JournalEntry, JournalEntryType, JournalLine
from bursary_kernel.services.auditor_service import AuditorService
from bursary_kernel.services.sequence_service import SequenceService

logger = get_logger("services.journal_writer")


@dataclass(frozen=True)
class JournalLineSpec:
    """A line to post: one account, one side."""

    account_code: str
    debit: int = 0
    credit: int = 0
    description: str | None = None

    @classmethod
    def dr(cls, account_code: str, amount: int, description: str | None = None) -> "JournalLineSpec":
        return cls(account_code=account_code, debit=amount, description=description)

    @classmethod
    def cr(cls, account_code: str, amount: int, description: str | None = None) -> "JournalLineSpec":
        return cls(account_code=account_code, credit=amount, description=description)


@dataclass(frozen=True)
class AccountBalance:
    """Posted, non-voided activity on one GL account."""

    code: str
    name: str
    account_type: AccountType
    debits: int
    credits: int

    @property
    def net_debit(self) -> int:
        return self.debits - self.credits

    @property
    def net_credit(self) -> int:
        return self.credits - self.debits


class JournalWriter:
    """
    Posts and voids journal entries.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT decide which accounts a business event hits; the calling
          service builds the lines from its ``AccountRoles``.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    # ------------------------------------------------------------------
    # Chart of accounts
    # ------------------------------------------------------------------

    def ensure_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
    ) -> GLAccount:
        """Create the account if its code is unknown; otherwise return it."""
        account = self._session.execute(
            select(GLAccount).where(GLAccount.code == code)
        ).scalar_one_or_none()
        if account is None:
            account = GLAccount(
                code=code,
                name=name,
                account_type=AccountType(account_type).value,
                is_active=True,
            )
            self._session.add(account)
            self._session.flush()
            logger.info("gl_account_created", extra={"account_code": code})
        return account

    def _resolve_accounts(self, codes: Iterable[str]) -> dict[str, GLAccount]:
        wanted = set(codes)
        accounts = {
            a.code: a
            for a in self._session.execute(
                select(GLAccount).where(GLAccount.code.in_(wanted))
            ).scalars()
        }
        for code in sorted(wanted):
            account = accounts.get(code)
            if account is None:
                raise InvalidAccountError(code, "account does not exist")
            if not account.is_active:
                raise InvalidAccountError(code, "account is inactive")
        return accounts

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_entry(
        self,
        entry_type: JournalEntryType,
        entry_date: date,
        lines: Sequence[JournalLineSpec],
        description: str,
        created_by_id: UUID,
        student_id: UUID | None = None,
        source_ledger_txn_id: UUID | None = None,
        source_invoice_id: UUID | None = None,
    ) -> JournalEntry:
        """
        Validate and persist a balanced journal entry.

        Preconditions:
            - ``lines`` holds at least one debit and one credit.

        Postconditions:
            - A posted ``JournalEntry`` with a unique ``JE-`` reference and
              its lines are flushed, and a JOURNAL_POSTED event is audited.

        Raises:
            EmptyJournalEntryError: fewer than two lines.
            InvalidJournalLineError: a line with no side, both sides or a
                negative amount.
            InvalidAccountError: unknown or inactive account code.
            UnbalancedEntryError: debits != credits.
        """
        if len(lines) < 2:
            raise EmptyJournalEntryError(len(lines))

        for line in lines:
            if line.debit < 0 or line.credit < 0 or (line.debit > 0) == (line.credit > 0):
                raise InvalidJournalLineError(line.account_code, line.debit, line.credit)

        total_debits = sum(line.debit for line in lines)
        total_credits = sum(line.credit for line in lines)
        if total_debits != total_credits:
            raise UnbalancedEntryError(total_debits, total_credits)

        accounts = self._resolve_accounts(line.account_code for line in lines)

        seq = self._sequence_service.next_value(SequenceService.JOURNAL_ENTRY)
        entry = JournalEntry(
            entry_ref=format_reference(ReferencePrefix.JOURNAL, entry_date, seq),
            entry_type=JournalEntryType(entry_type).value,
            entry_date=entry_date,
            description=description,
            student_id=student_id,
            source_ledger_txn_id=source_ledger_txn_id,
            source_invoice_id=source_invoice_id,
            is_posted=True,
            created_by_id=created_by_id,
            created_at=self._clock.now(),
        )
        self._session.add(entry)
        self._session.flush()

        for number, line in enumerate(lines, start=1):
            self._session.add(
                JournalLine(
                    journal_entry_id=entry.id,
                    line_number=number,
                    gl_account_id=accounts[line.account_code].id,
                    debit_amount=line.debit,
                    credit_amount=line.credit,
                    description=line.description,
                )
            )
        self._session.flush()
        self._session.refresh(entry, attribute_names=["lines"])

        self._auditor.record_change(
            entity_type=JournalEntry.__tablename__,
            entity_id=entry.id,
            action=AuditAction.JOURNAL_POSTED,
            actor_id=created_by_id,
            new_values={
                "entry_ref": entry.entry_ref,
                "entry_type": entry.entry_type,
                "entry_date": entry_date,
                "total": total_debits,
                "lines": [
                    {"account": line.account_code, "debit": line.debit, "credit": line.credit}
                    for line in lines
                ],
            },
        )

        logger.info(
            "journal_entry_posted",
            extra={
                "entry_ref": entry.entry_ref,
                "entry_type": entry.entry_type,
                "line_count": len(lines),
                "total": total_debits,
            },
        )
        return entry

    # ------------------------------------------------------------------
    # Voiding
    # ------------------------------------------------------------------

    def void_entries_for_source(
        self,
        ledger_txn_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> list[JournalEntry]:
        """Void every live entry posted for a ledger transaction."""
        return self._void_where(
            [JournalEntry.source_ledger_txn_id == ledger_txn_id], reason, actor_id,
        )

    def void_entries_for_invoice(
        self,
        invoice_id: UUID,
        reason: str,
        actor_id: UUID,
        entry_type: JournalEntryType | None = JournalEntryType.FEE_INVOICE,
    ) -> list[JournalEntry]:
        """Void the live entries posted for an invoice (by default its billing entry)."""
        criteria = [JournalEntry.source_invoice_id == invoice_id]
        if entry_type is not None:
            criteria.append(JournalEntry.entry_type == JournalEntryType(entry_type).value)
        return self._void_where(criteria, reason, actor_id)

    def _void_where(self, criteria: list, reason: str, actor_id: UUID) -> list[JournalEntry]:
        entries = list(
            self._session.execute(
                select(JournalEntry)
                .where(*criteria)
                .where(JournalEntry.is_voided.is_(False))
                .order_by(JournalEntry.created_at)
                .with_for_update()
            ).scalars()
        )
        now = self._clock.now()
        for entry in entries:
            entry.is_voided = True
            entry.voided_reason = reason
            entry.voided_by_id = actor_id
            entry.voided_at = now
            self._session.flush()
            self._auditor.record_change(
                entity_type=JournalEntry.__tablename__,
                entity_id=entry.id,
                action=AuditAction.JOURNAL_VOIDED,
                actor_id=actor_id,
                old_values={"is_voided": False},
                new_values={"is_voided": True, "voided_reason": reason},
            )
            logger.info("journal_entry_voided", extra={"entry_ref": entry.entry_ref})
        return entries

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def account_balances(self) -> dict[str, AccountBalance]:
        """Debit and credit totals per account over posted, non-voided entries.

        Accounts without activity are included with zero totals.
        """
        totals = {
            row.gl_account_id: (row.debits, row.credits)
            for row in self._session.execute(
                select(
                    JournalLine.gl_account_id,
                    func.coalesce(func.sum(JournalLine.debit_amount), 0).label("debits"),
                    func.coalesce(func.sum(JournalLine.credit_amount), 0).label("credits"),
                )
                .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
                .where(JournalEntry.is_posted.is_(True))
                .where(JournalEntry.is_voided.is_(False))
                .group_by(JournalLine.gl_account_id)
            )
        }

        balances: dict[str, AccountBalance] = {}
        for account in self._session.execute(
            select(GLAccount).order_by(GLAccount.code)
        ).scalars():
            debits, credits = totals.get(account.id, (0, 0))
            balances[account.code] = AccountBalance(
                code=account.code,
                name=account.name,
                account_type=AccountType(account.account_type),
                debits=int(debits),
                credits=int(credits),
            )
        return balances
