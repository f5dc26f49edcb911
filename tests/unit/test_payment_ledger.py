from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from coursepay.models.payment import ContentType, PaymentRecord, PaymentStatus
from coursepay.services.payment_ledger import PaymentLedger, generate_reference

REFERENCE_PATTERN = re.compile(r"^course_course-1_user-1_\d{13}_[0-9a-f]{6}$")


def test_reference_format() -> None:
    reference = generate_reference(ContentType.COURSE, "course-1", "user-1")

    assert REFERENCE_PATTERN.match(reference)


def test_create_inserts_pending_record(db, make_payment) -> None:
    payment = make_payment(amount=5000)

    stored = PaymentLedger(db).find_by_reference(payment.reference)
    assert stored is not None
    assert stored.status is PaymentStatus.PENDING
    assert stored.amount == Decimal("5000.00")
    assert stored.currency == "KES"
    assert stored.verified_at is None
    assert REFERENCE_PATTERN.match(stored.reference)


def test_same_purchase_twice_gets_distinct_references(make_payment) -> None:
    first = make_payment()
    second = make_payment()

    assert first.reference != second.reference
    assert first.id != second.id


def test_reference_uniqueness_is_enforced_by_storage(db, make_payment) -> None:
    payment = make_payment()

    db.add(PaymentRecord(
        user_id="user-2", content_id="course-9", content_type=ContentType.COURSE,
        amount=Decimal("10"), currency="KES", reference=payment.reference,
    ))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_find_unknown_reference_returns_none(db) -> None:
    assert PaymentLedger(db).find_by_reference("course_nope_nobody_0_000000") is None


def test_finalize_moves_pending_once(db, make_payment) -> None:
    payment = make_payment()
    ledger = PaymentLedger(db)

    first = ledger.finalize(payment.reference, PaymentStatus.COMPLETED, {"status": "success"})
    db.commit()
    assert first.transitioned is True
    assert first.payment.status is PaymentStatus.COMPLETED
    verified_at = first.payment.verified_at
    assert verified_at is not None

    second = ledger.finalize(payment.reference, PaymentStatus.FAILED, {"status": "failed"})
    db.commit()
    assert second.transitioned is False
    assert second.payment.status is PaymentStatus.COMPLETED
    assert second.payment.verified_at == verified_at
    assert second.payment.gateway_response == {"status": "success"}


def test_finalize_unknown_reference_returns_none(db) -> None:
    assert PaymentLedger(db).finalize("course_x_y_0_000000", PaymentStatus.COMPLETED, {}) is None


def test_finalize_refuses_pending_as_outcome(db, make_payment) -> None:
    payment = make_payment()

    with pytest.raises(ValueError):
        PaymentLedger(db).finalize(payment.reference, PaymentStatus.PENDING, {})


def test_interleaved_finalizers_only_first_transitions(session_factory, make_payment) -> None:
    payment = make_payment()
    reference = payment.reference
    first_session, second_session = session_factory(), session_factory()
    try:
        first_ledger, second_ledger = PaymentLedger(first_session), PaymentLedger(second_session)

        # Both observe pending before either writes
        assert first_ledger.find_by_reference(reference).status is PaymentStatus.PENDING
        assert second_ledger.find_by_reference(reference).status is PaymentStatus.PENDING

        winner = first_ledger.finalize(reference, PaymentStatus.COMPLETED, {"status": "success"})
        first_session.commit()
        loser = second_ledger.finalize(reference, PaymentStatus.FAILED, {"status": "failed"})
        second_session.commit()

        assert winner.transitioned is True
        assert loser.transitioned is False
        assert loser.payment.status is PaymentStatus.COMPLETED
    finally:
        first_session.close()
        second_session.close()


def test_list_for_user_is_newest_first_and_scoped(db, make_payment) -> None:
    older = make_payment(user_id="user-1", content_id="course-1")
    newer = make_payment(user_id="user-1", content_id="course-2")
    make_payment(user_id="user-2", content_id="course-1")
    older.created_at = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    total, payments = PaymentLedger(db).list_for_user("user-1")

    assert total == 2
    assert [p.reference for p in payments] == [newer.reference, older.reference]


def test_search_and_revenue(db, make_payment) -> None:
    ledger = PaymentLedger(db)
    paid = make_payment(content_id="course-abc", amount=5000)
    make_payment(content_id="course-xyz", amount=1200)
    quiz = make_payment(content_id="quiz-1", content_type=ContentType.QUIZ, amount=250.5)
    ledger.finalize(paid.reference, PaymentStatus.COMPLETED, {})
    ledger.finalize(quiz.reference, PaymentStatus.COMPLETED, {})
    db.commit()

    total, found = ledger.search(search="COURSE-ABC")
    assert total == 1
    assert found[0].reference == paid.reference

    total, completed = ledger.search(status=PaymentStatus.COMPLETED)
    assert total == 2
    assert {p.reference for p in completed} == {paid.reference, quiz.reference}

    assert ledger.total_revenue() == Decimal("5250.50")


def test_search_treats_wildcards_literally(make_payment, db) -> None:
    make_payment()

    total, _ = PaymentLedger(db).search(search="%")
    assert total == 0


def test_find_stale_pending(db, make_payment) -> None:
    ledger = PaymentLedger(db)
    stale = make_payment(content_id="course-old")
    make_payment(content_id="course-new")
    done = make_payment(content_id="course-done")
    stale.created_at = datetime.utcnow() - timedelta(days=2)
    done.created_at = datetime.utcnow() - timedelta(days=2)
    db.commit()
    ledger.finalize(done.reference, PaymentStatus.FAILED, {})
    db.commit()

    found = ledger.find_stale_pending(datetime.utcnow() - timedelta(days=1))

    assert [p.reference for p in found] == [stale.reference]
