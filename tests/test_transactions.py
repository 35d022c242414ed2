from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from models import TransactionStatus, TransactionType
from schemas import TransactionIn, TransactionUpdate
from services import (
    AttachmentService,
    NotFoundError,
    TransactionFilters,
    TransactionService,
)
from uploads import UploadService


def _expense(account_id, category_id, amount=10_000, **kwargs) -> TransactionIn:
    return TransactionIn(
        amount_cents=amount,
        date=kwargs.pop("date", date(2025, 1, 31)),
        description=kwargs.pop("description", "Laptop"),
        type=TransactionType.expense,
        account_id=account_id,
        category_id=category_id,
        **kwargs,
    )


def test_installments_split_and_schedule(session, checking, food):
    txns = TransactionService(session)
    first = txns.create(_expense(checking.id, food.id, total_installments=3))

    assert first.installment_number == 1
    assert first.total_installments == 3
    assert first.status == TransactionStatus.completed
    assert first.amount_cents == 3_334
    assert first.description == "Laptop (1/3)"

    children = txns.list_all(TransactionFilters(parent_transaction_id=first.id))
    children = sorted(children, key=lambda t: t.installment_number)
    assert [c.installment_number for c in children] == [2, 3]
    assert [c.amount_cents for c in children] == [3_333, 3_333]
    assert [c.date for c in children] == [date(2025, 2, 28), date(2025, 3, 31)]
    assert all(c.status == TransactionStatus.scheduled for c in children)
    assert children[1].description == "Laptop (3/3)"

    session.refresh(checking)
    assert checking.current_balance_cents == 100_000 - 3_334


def test_pay_scheduled_installment(session, checking, food):
    txns = TransactionService(session)
    first = txns.create(_expense(checking.id, food.id, total_installments=2))
    second = txns.list_all(TransactionFilters(parent_transaction_id=first.id))[0]

    paid = txns.pay(second.id)
    assert paid.status == TransactionStatus.completed
    session.refresh(checking)
    assert checking.current_balance_cents == 100_000 - 10_000

    with pytest.raises(ValueError, match="already completed"):
        txns.pay(second.id)


def test_pay_rejects_cancelled(session, checking, food):
    txns = TransactionService(session)
    txn = txns.create(
        _expense(checking.id, food.id, status=TransactionStatus.cancelled)
    )
    with pytest.raises(ValueError, match="Cancelled"):
        txns.pay(txn.id)


def test_update_moves_effect_between_accounts(session, checking, savings, food):
    txns = TransactionService(session)
    txn = txns.create(_expense(checking.id, food.id, amount=5_000))

    updated = txns.update(
        txn.id, TransactionUpdate(account_id=savings.id, amount_cents=7_000)
    )
    assert updated.account_id == savings.id
    assert updated.account.name == "Savings"

    session.refresh(checking)
    session.refresh(savings)
    assert checking.current_balance_cents == 100_000
    assert savings.current_balance_cents == 50_000 - 7_000


def test_category_type_must_match(session, checking, salary):
    with pytest.raises(ValueError, match="type mismatch"):
        TransactionService(session).create(_expense(checking.id, salary.id))


def test_unknown_account_is_not_found(session, food):
    with pytest.raises(NotFoundError):
        TransactionService(session).create(_expense(999, food.id))


def test_list_filters(session, checking, food, salary):
    txns = TransactionService(session)
    txns.create(_expense(checking.id, food.id, date=date(2025, 1, 10)))
    txns.create(_expense(checking.id, food.id, date=date(2025, 2, 10)))
    txns.create(
        TransactionIn(
            amount_cents=50_000,
            date=date(2025, 2, 5),
            description="Salary",
            type=TransactionType.income,
            account_id=checking.id,
            category_id=salary.id,
        )
    )

    feb = txns.list_all(
        TransactionFilters(date_from=date(2025, 2, 1), date_to=date(2025, 2, 28))
    )
    assert len(feb) == 2
    assert feb[0].date == date(2025, 2, 10)

    incomes = txns.list_all(TransactionFilters(type=TransactionType.income))
    assert [t.description for t in incomes] == ["Salary"]


def test_delete_unlinks_installment_children(session, checking, food):
    txns = TransactionService(session)
    first = txns.create(_expense(checking.id, food.id, total_installments=3))
    txns.delete(first.id)

    remaining = txns.list_all()
    assert len(remaining) == 2
    assert all(t.parent_transaction_id is None for t in remaining)
    session.refresh(checking)
    assert checking.current_balance_cents == 100_000


def test_attachment_file_removed_when_save_fails(
    session, checking, food, tmp_path, monkeypatch
):
    txn = TransactionService(session).create(_expense(checking.id, food.id))
    uploads = UploadService(get_settings(), upload_dir=tmp_path)

    def fail_commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(session, "commit", fail_commit)
    with pytest.raises(SQLAlchemyError):
        AttachmentService(session, uploads).create(txn.id, b"%PDF-1.4", "receipt.pdf")

    assert list((tmp_path / "attachments").iterdir()) == []
