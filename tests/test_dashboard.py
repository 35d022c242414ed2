from datetime import date

from models import AccountType, RecurringType, TransactionStatus, TransactionType
from schemas import (
    AccountIn,
    AccountUpdate,
    BillPaymentIn,
    BudgetIn,
    CategoryIn,
    RecurringExpenseIn,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    DashboardService,
    RecurringExpenseService,
    TransactionService,
)

TODAY = date(2025, 3, 15)


def _txn(account, category, amount, on, type=TransactionType.expense, **kwargs):
    return TransactionIn(
        amount_cents=amount,
        date=on,
        description=kwargs.pop("description", "Entry"),
        type=type,
        account_id=account.id,
        category_id=category.id,
        **kwargs,
    )


def test_dashboard_aggregates(session, checking, savings, food, salary):
    transport = CategoryService(session).create(
        CategoryIn(name="Transport", type="expense", color="#f59e0b")
    )
    closed = AccountService(session).create(
        AccountIn(name="Old wallet", type=AccountType.wallet, initial_balance_cents=5_000)
    )
    AccountService(session).update(closed.id, AccountUpdate(is_active=False))

    txns = TransactionService(session)
    txns.create(_txn(checking, salary, 500_000, date(2025, 3, 1), type=TransactionType.income))
    txns.create(_txn(checking, food, 40_000, date(2025, 3, 3), description="Market"))
    txns.create(_txn(savings, transport, 10_000, date(2025, 3, 4)))
    txns.create(
        _txn(checking, food, 99_000, date(2025, 3, 20), status=TransactionStatus.scheduled)
    )
    txns.create(_txn(checking, food, 7_000, date(2025, 2, 10)))

    BudgetService(session).create(
        BudgetIn(
            amount_cents=100_000,
            category_id=food.id,
            start_date=date(2025, 3, 1),
            end_date=date(2025, 3, 31),
        )
    )
    recurring = RecurringExpenseService(session, today=TODAY)
    internet = recurring.create(
        RecurringExpenseIn(
            name="Internet",
            type=RecurringType.fixed,
            amount_cents=12_000,
            due_day=10,
            start_date=date(2025, 3, 10),
        )
    )
    recurring.pay_bill(
        internet.id,
        BillPaymentIn(month="2025-03", account_id=checking.id, category_id=food.id),
    )

    data = DashboardService(session, today=TODAY, savings_goal_percent=20).get_data()

    assert data["month"] == "2025-03"
    assert data["total_balance_cents"] == (
        100_000 + 500_000 - 40_000 - 7_000 - 12_000 + 50_000 - 10_000
    )
    assert data["monthly_income_cents"] == 500_000
    assert data["monthly_expense_cents"] == 40_000 + 10_000 + 12_000
    assert data["monthly_balance_cents"] == 500_000 - 62_000
    assert data["transactions_this_month"] == 4
    assert data["transactions_last_month"] == 1
    assert data["active_accounts"] == 2
    assert data["accounts_by_type"]["checking"] == 1
    assert data["accounts_by_type"]["wallet"] == 0

    goal = data["savings_goal"]
    assert goal["planned_cents"] == 100_000
    assert goal["achieved_cents"] == 438_000
    assert goal["achieved_percent"] == 87.6

    assert data["budget_limit_cents"] == 100_000
    assert data["budget_used_percent"] == 62.0

    assert len(data["monthly_summary"]) == 12
    assert data["monthly_summary"][-1]["month"] == "2025-03"
    assert data["monthly_summary"][-2]["expense_cents"] == 7_000
    assert data["fixed_expenses_summary"][-1]["total_cents"] == 12_000

    recent = data["recent_transactions"]
    assert len(recent) == 6
    assert recent[0]["date"] == "2025-03-20"
    income_rows = [r for r in recent if r["type"] == "income"]
    assert income_rows[0]["amount_cents"] == 500_000
    assert all(r["amount_cents"] < 0 for r in recent if r["type"] == "expense")

    categories = data["category_summary"]
    assert categories[0]["name"] == "Food"
    assert categories[0]["total_cents"] == 52_000
    assert categories[1]["name"] == "Transport"

    assert data["recurring_summary"]["total_fixed_cents"] == 12_000


def test_dashboard_empty_database(session):
    data = DashboardService(session, today=TODAY, savings_goal_percent=20).get_data()
    assert data["total_balance_cents"] == 0
    assert data["budget_used_percent"] == 0.0
    assert data["savings_goal"]["achieved_percent"] == 0.0
    assert data["recent_transactions"] == []
    assert data["category_summary"] == []
