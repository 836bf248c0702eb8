"""
Tests for the audit hash chain and the sequence allocator.

Covers:
- Each audit event links to its predecessor; the first one is genesis
- validate_chain() accepts an intact chain and pinpoints tampering
- Audit rows reject ORM updates and deletes
- get_trace() and get_recent_events() ordering
- SequenceService values are gap-free and independent per name
"""

from uuid import uuid4

import pytest
from sqlalchemy import update

from bursary_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from bursary_kernel.models.audit_event import AuditAction, AuditEvent
from bursary_kernel.services.sequence_service import SequenceService


def _record(auditor_service, actor_id, entity_id=None, action=AuditAction.CREDIT_ADDED, **values):
    return auditor_service.record_change(
        entity_type="credit_transactions",
        entity_id=entity_id or uuid4(),
        action=action,
        actor_id=actor_id,
        new_values=values or {"amount": 100},
    )


class TestAuditChain:

    def test_events_are_linked(self, auditor_service, test_actor_id):
        first = _record(auditor_service, test_actor_id)
        second = _record(auditor_service, test_actor_id)

        assert first.is_genesis
        assert second.prev_hash == first.hash
        assert second.seq == first.seq + 1

    def test_intact_chain_validates(self, auditor_service, test_actor_id):
        for amount in (100, 200, 300):
            _record(auditor_service, test_actor_id, amount=amount)

        assert auditor_service.validate_chain() is True

    def test_empty_chain_validates(self, auditor_service):
        assert auditor_service.validate_chain() is True

    def test_business_operations_keep_chain_intact(
        self, auditor_service, student, create_invoice, record_payment,
    ):
        create_invoice(student, 5_000)
        record_payment(student, 7_000)

        assert auditor_service.validate_chain() is True

    def test_tampered_payload_detected(self, session, auditor_service, test_actor_id):
        _record(auditor_service, test_actor_id, amount=100)
        victim = _record(auditor_service, test_actor_id, amount=200)
        _record(auditor_service, test_actor_id, amount=300)

        # Core UPDATE bypasses the ORM immutability listener.
        session.execute(
            update(AuditEvent.__table__)
            .where(AuditEvent.__table__.c.id == victim.id)
            .values(payload={"old_values": None, "new_values": {"amount": 20}})
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor_service.validate_chain()
        assert exc_info.value.seq == victim.seq
        assert exc_info.value.code == "AUDIT_CHAIN_BROKEN"

    def test_broken_link_detected(self, session, auditor_service, test_actor_id):
        _record(auditor_service, test_actor_id)
        victim = _record(auditor_service, test_actor_id)

        session.execute(
            update(AuditEvent.__table__)
            .where(AuditEvent.__table__.c.id == victim.id)
            .values(prev_hash="0" * 64)
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor_service.validate_chain()
        assert exc_info.value.seq == victim.seq

    def test_orm_update_rejected(self, session, auditor_service, test_actor_id):
        event = _record(auditor_service, test_actor_id)

        event.action = AuditAction.CREDIT_REVERSED.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_orm_delete_rejected(self, session, auditor_service, test_actor_id):
        event = _record(auditor_service, test_actor_id)

        session.delete(event)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAuditQueries:

    def test_trace_for_one_entity(self, auditor_service, test_actor_id):
        entity_id = uuid4()
        _record(auditor_service, test_actor_id, entity_id=entity_id)
        _record(auditor_service, test_actor_id)
        _record(auditor_service, test_actor_id, entity_id=entity_id, action=AuditAction.CREDIT_REVERSED)

        trace = auditor_service.get_trace("credit_transactions", entity_id)

        assert not trace.is_empty
        assert trace.actions == (AuditAction.CREDIT_ADDED, AuditAction.CREDIT_REVERSED)
        assert trace.entries[0].seq < trace.entries[1].seq

    def test_trace_of_unknown_entity_is_empty(self, auditor_service):
        assert auditor_service.get_trace("credit_transactions", uuid4()).is_empty

    def test_payment_trace(self, auditor_service, student, record_payment):
        payment = record_payment(student, 1_000)

        trace = auditor_service.get_trace("ledger_transactions", payment.transaction_id)

        assert trace.actions == (AuditAction.PAYMENT_RECORDED,)
        assert trace.entries[0].payload["new_values"]["amount"] == 1_000

    def test_recent_events_newest_first(self, auditor_service, test_actor_id):
        events = [_record(auditor_service, test_actor_id) for _ in range(3)]

        recent = auditor_service.get_recent_events(limit=2)

        assert [e.seq for e in recent] == [events[2].seq, events[1].seq]


class TestSequenceService:

    def test_first_value_is_one(self, session):
        sequences = SequenceService(session)
        assert sequences.current_value("scratch") is None
        assert sequences.next_value("scratch") == 1
        assert sequences.current_value("scratch") == 1

    def test_values_are_gap_free(self, session):
        sequences = SequenceService(session)
        assert [sequences.next_value("scratch") for _ in range(5)] == [1, 2, 3, 4, 5]

    def test_names_are_independent(self, session):
        sequences = SequenceService(session)
        sequences.next_value("scratch_a")
        sequences.next_value("scratch_a")

        assert sequences.next_value("scratch_b") == 1
        assert sequences.current_value("scratch_a") == 2

    def test_rolled_back_value_is_reused(self, session):
        sequences = SequenceService(session)
        sequences.next_value("scratch")
        session.commit()

        sequences.next_value("scratch")
        session.rollback()

        assert sequences.next_value("scratch") == 2
