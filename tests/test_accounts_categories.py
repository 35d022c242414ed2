from datetime import date

import pytest

from models import AccountType, CategoryType, TransactionType
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    CategoryIn,
    CategoryUpdate,
    RecurringExpenseIn,
    TransactionIn,
)
from services import (
    AccountService,
    CategoryService,
    ConflictError,
    NotFoundError,
    RecurringExpenseService,
    TransactionService,
)


def _lunch(account_id, category_id) -> TransactionIn:
    return TransactionIn(
        amount_cents=2_500,
        date=date(2025, 1, 3),
        description="Lunch",
        type=TransactionType.expense,
        account_id=account_id,
        category_id=category_id,
    )


def test_new_account_starts_at_initial_balance(checking):
    assert checking.current_balance_cents == 100_000
    assert checking.initial_balance_cents == 100_000


def test_changing_initial_balance_shifts_current(session, checking, food):
    TransactionService(session).create(_lunch(checking.id, food.id))
    account = AccountService(session).update(
        checking.id, AccountUpdate(initial_balance_cents=120_000, name=" Main ")
    )
    assert account.name == "Main"
    assert account.initial_balance_cents == 120_000
    assert account.current_balance_cents == 120_000 - 2_500


def test_recalculate_repairs_drifted_balance(session, checking, food):
    TransactionService(session).create(_lunch(checking.id, food.id))
    checking.current_balance_cents = 1
    session.commit()

    repaired = AccountService(session).recalculate(checking.id)
    assert repaired.current_balance_cents == 100_000 - 2_500


def test_delete_account_with_transactions_is_rejected(session, checking, savings, food):
    TransactionService(session).create(_lunch(checking.id, food.id))
    accounts = AccountService(session)
    with pytest.raises(ValueError, match="has transactions"):
        accounts.delete(checking.id)

    expense = RecurringExpenseService(session, today=date(2025, 1, 1)).create(
        RecurringExpenseIn(
            name="Rent",
            type="fixed",
            amount_cents=150_000,
            start_date=date(2025, 2, 5),
            account_id=savings.id,
        )
    )
    accounts.delete(savings.id)
    session.refresh(expense)
    assert expense.account_id is None
    with pytest.raises(NotFoundError):
        accounts.get(savings.id)


def test_credit_card_usage_fields(session):
    card = AccountService(session).create(
        AccountIn(
            name="Card",
            type=AccountType.credit_card,
            initial_balance_cents=-30_000,
            credit_limit_cents=100_000,
            due_day=10,
        )
    )
    out = AccountOut.model_validate(card)
    assert out.used_credit_cents == 30_000
    assert out.available_credit_cents == 70_000
    assert out.utilization_rate == 30.0


def test_inactive_accounts_can_be_filtered(session, checking):
    AccountService(session).update(checking.id, AccountUpdate(is_active=False))
    assert AccountService(session).list_all(include_inactive=False) == []
    assert len(AccountService(session).list_all()) == 1


def test_category_names_are_unique_per_type(session, food):
    categories = CategoryService(session)
    with pytest.raises(ConflictError):
        categories.create(CategoryIn(name="food", type=CategoryType.expense))
    income_food = categories.create(CategoryIn(name="Food", type=CategoryType.income))
    assert income_food.type == CategoryType.income

    with pytest.raises(ConflictError):
        categories.update(income_food.id, CategoryUpdate(type=CategoryType.expense))


def test_category_type_filter(session, food, salary):
    categories = CategoryService(session)
    assert [c.name for c in categories.list_all(CategoryType.income)] == ["Salary"]
    assert len(categories.list_all()) == 2


def test_category_in_use_cannot_be_deleted(session, checking, food, salary):
    TransactionService(session).create(_lunch(checking.id, food.id))
    categories = CategoryService(session)
    with pytest.raises(ValueError, match="in use"):
        categories.delete(food.id)

    categories.delete(salary.id)
    with pytest.raises(NotFoundError):
        categories.get(salary.id)
