from datetime import date

import pytest

from ledger import ledger_total, signed_amount, split_installments
from models import Account, TransactionStatus, TransactionType
from schemas import TransactionIn, TransactionUpdate
from services import TransactionService


def _assert_balanced(session, *accounts: Account) -> None:
    for account in accounts:
        session.refresh(account)
        expected = account.initial_balance_cents + ledger_total(session, account.id)
        assert account.current_balance_cents == expected


def test_signed_amount_by_type():
    assert signed_amount(1_000, TransactionType.income) == 1_000
    assert signed_amount(1_000, TransactionType.expense) == -1_000
    assert signed_amount(1_000, TransactionType.payment) == -1_000


@pytest.mark.parametrize(
    "total,count",
    [(10_000, 3), (1, 1), (99_999, 7), (100, 100), (123_456, 12)],
)
def test_split_installments_sums_to_total(total, count):
    parts = split_installments(total, count)
    assert len(parts) == count
    assert sum(parts) == total
    assert all(p == parts[-1] for p in parts[1:])
    assert parts[0] >= parts[-1]


def test_split_installments_puts_remainder_on_first():
    assert split_installments(10_000, 3) == [3_334, 3_333, 3_333]


def test_split_installments_rejects_bad_input():
    with pytest.raises(ValueError):
        split_installments(100, 0)
    with pytest.raises(ValueError):
        split_installments(0, 2)
    with pytest.raises(ValueError):
        split_installments(1, 2)


def test_balance_follows_create_update_delete_sequence(
    session, checking, savings, food, salary
):
    txns = TransactionService(session)

    pay = txns.create(
        TransactionIn(
            amount_cents=300_000,
            date=date(2025, 1, 5),
            description="Salary",
            type=TransactionType.income,
            account_id=checking.id,
            category_id=salary.id,
        )
    )
    _assert_balanced(session, checking, savings)
    assert checking.current_balance_cents == 400_000

    lunch = txns.create(
        TransactionIn(
            amount_cents=4_500,
            date=date(2025, 1, 6),
            description="Lunch",
            type=TransactionType.expense,
            account_id=checking.id,
            category_id=food.id,
        )
    )
    groceries = txns.create(
        TransactionIn(
            amount_cents=12_000,
            date=date(2025, 1, 7),
            description="Groceries",
            type=TransactionType.expense,
            account_id=savings.id,
            category_id=food.id,
        )
    )
    _assert_balanced(session, checking, savings)

    txns.update(lunch.id, TransactionUpdate(amount_cents=6_000))
    _assert_balanced(session, checking, savings)

    txns.update(groceries.id, TransactionUpdate(account_id=checking.id))
    _assert_balanced(session, checking, savings)
    assert savings.current_balance_cents == 50_000

    txns.update(lunch.id, TransactionUpdate(status=TransactionStatus.cancelled))
    _assert_balanced(session, checking, savings)

    txns.update(lunch.id, TransactionUpdate(status=TransactionStatus.completed))
    _assert_balanced(session, checking, savings)
    assert checking.current_balance_cents == 382_000

    txns.update(
        lunch.id, TransactionUpdate(type=TransactionType.income, category_id=salary.id)
    )
    _assert_balanced(session, checking, savings)
    assert checking.current_balance_cents == 394_000

    txns.update(
        lunch.id, TransactionUpdate(type=TransactionType.expense, category_id=food.id)
    )
    _assert_balanced(session, checking, savings)
    assert checking.current_balance_cents == 382_000

    txns.delete(pay.id)
    _assert_balanced(session, checking, savings)

    txns.delete(groceries.id)
    _assert_balanced(session, checking, savings)
    assert checking.current_balance_cents == 100_000 - 6_000


def test_pending_transactions_do_not_touch_balance(session, checking, food):
    txn = TransactionService(session).create(
        TransactionIn(
            amount_cents=9_900,
            date=date(2025, 2, 1),
            description="Pending bill",
            type=TransactionType.expense,
            status=TransactionStatus.pending,
            account_id=checking.id,
            category_id=food.id,
        )
    )
    session.refresh(checking)
    assert txn.status == TransactionStatus.pending
    assert checking.current_balance_cents == 100_000
