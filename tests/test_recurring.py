from datetime import date

import pytest

from models import RecurringFrequency, RecurringStatus, RecurringType, TransactionType
from recurrence import add_months, clamp_date, next_due_date
from schemas import BillPaymentIn, RecurringExpenseIn, RecurringExpenseUpdate
from services import ConflictError, RecurringExpenseService, TransactionService

TODAY = date(2025, 3, 5)


def _service(session, today=TODAY) -> RecurringExpenseService:
    return RecurringExpenseService(session, today=today)


def _internet(**kwargs) -> RecurringExpenseIn:
    values = dict(
        name="Internet",
        type=RecurringType.fixed,
        amount_cents=12_000,
        frequency=RecurringFrequency.monthly,
        due_day=10,
        start_date=date(2025, 1, 10),
    )
    values.update(kwargs)
    return RecurringExpenseIn(**values)


def test_clamp_and_add_months():
    assert clamp_date(2024, 2, 31) == date(2024, 2, 29)
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2025, 2, 28), 1, desired_day=31) == date(2025, 3, 31)
    assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)


def test_next_due_date_monthly():
    start = date(2025, 1, 15)
    monthly = RecurringFrequency.monthly
    assert next_due_date(start, 15, monthly, today=date(2025, 3, 10)) == date(2025, 3, 15)
    assert next_due_date(start, 15, monthly, today=date(2025, 3, 15)) == date(2025, 4, 15)
    assert next_due_date(start, 31, monthly, today=date(2025, 2, 10)) == date(2025, 2, 28)


def test_next_due_date_respects_start_and_end():
    monthly = RecurringFrequency.monthly
    assert next_due_date(
        date(2025, 6, 1), None, monthly, today=date(2025, 3, 1)
    ) == date(2025, 6, 1)
    assert (
        next_due_date(
            date(2025, 1, 15),
            15,
            monthly,
            end_date=date(2025, 3, 31),
            today=date(2025, 3, 20),
        )
        is None
    )


def test_next_due_date_weekly_and_yearly():
    assert next_due_date(
        date(2025, 1, 1), None, RecurringFrequency.weekly, today=date(2025, 1, 8)
    ) == date(2025, 1, 15)
    assert next_due_date(
        date(2024, 5, 10), None, RecurringFrequency.yearly, today=date(2025, 6, 1)
    ) == date(2026, 5, 10)


def test_create_with_account_records_initial_payment(session, checking, food):
    service = _service(session)
    expense = service.create(_internet(account_id=checking.id, category_id=food.id))

    assert expense.next_due_date == date(2025, 3, 10)
    session.refresh(checking)
    assert checking.current_balance_cents == 100_000 - 12_000

    january = service.bills("2025-01")
    assert len(january) == 1
    assert january[0].is_paid
    assert january[0].due_date == date(2025, 1, 10)

    with pytest.raises(ConflictError, match="already paid"):
        service.pay_bill(expense.id, BillPaymentIn(month="2025-01"))


def test_bills_per_frequency(session):
    service = _service(session)
    service.create(_internet())
    service.create(
        _internet(
            name="Insurance",
            frequency=RecurringFrequency.yearly,
            due_day=20,
            start_date=date(2025, 1, 20),
        )
    )
    service.create(
        _internet(
            name="Cleaning", frequency=RecurringFrequency.weekly, due_day=None
        )
    )

    march = service.bills("2025-03")
    assert [b.name for b in march] == ["Internet"]
    assert march[0].due_date == date(2025, 3, 10)
    assert march[0].id == f"{march[0].recurring_expense_id}-2025-03"
    assert not march[0].is_paid

    january = service.bills("2025-01")
    assert [b.name for b in january] == ["Internet", "Insurance"]

    assert service.bills("2024-12") == []


def test_paused_expenses_have_no_bills(session):
    service = _service(session)
    expense = service.create(_internet())
    service.update(expense.id, RecurringExpenseUpdate(status=RecurringStatus.paused))
    assert service.bills("2025-03") == []


def test_pay_twice_fails_and_undo_restores_balance(session, checking, food):
    service = _service(session)
    expense = service.create(_internet())

    txn = service.pay_bill(
        expense.id,
        BillPaymentIn(month="2025-03", account_id=checking.id, category_id=food.id),
    )
    assert txn.type == TransactionType.expense
    assert txn.occurrence_date == date(2025, 3, 10)
    assert txn.date == TODAY
    session.refresh(checking)
    assert checking.current_balance_cents == 100_000 - 12_000

    bill = service.bills("2025-03")[0]
    assert bill.is_paid
    assert bill.paid_transaction_id == txn.id

    with pytest.raises(ConflictError, match="already paid"):
        service.pay_bill(
            expense.id,
            BillPaymentIn(month="2025-03", account_id=checking.id, category_id=food.id),
        )

    service.undo_pay(expense.id, "2025-03")
    session.refresh(checking)
    assert checking.current_balance_cents == 100_000
    assert not service.bills("2025-03")[0].is_paid
    assert TransactionService(session).list_all() == []

    with pytest.raises(ValueError, match="not paid"):
        service.undo_pay(expense.id, "2025-03")


def test_pay_bill_requires_account_and_category(session, checking, food):
    service = _service(session)
    expense = service.create(_internet())

    with pytest.raises(ValueError, match="No account selected"):
        service.pay_bill(expense.id, BillPaymentIn(month="2025-03", category_id=food.id))
    with pytest.raises(ValueError, match="No category selected"):
        service.pay_bill(
            expense.id, BillPaymentIn(month="2025-03", account_id=checking.id)
        )


def test_pay_bill_outside_schedule_is_rejected(session, checking, food):
    service = _service(session)
    yearly = service.create(
        _internet(
            name="Insurance",
            frequency=RecurringFrequency.yearly,
            start_date=date(2025, 1, 20),
            account_id=checking.id,
            category_id=food.id,
        )
    )
    with pytest.raises(ValueError, match="not due"):
        service.pay_bill(yearly.id, BillPaymentIn(month="2025-03"))


def test_summary_groups_active_expenses(session):
    service = _service(session)
    service.create(_internet(amount_cents=1_000))
    service.create(_internet(name="Streaming", type=RecurringType.subscription, amount_cents=500))
    service.create(_internet(name="Phone", type=RecurringType.installment, amount_cents=2_000))
    service.create(_internet(name="Car", type=RecurringType.loan, amount_cents=3_000))
    paused = service.create(_internet(name="Gym", amount_cents=999))
    service.update(paused.id, RecurringExpenseUpdate(status=RecurringStatus.paused))

    summary = service.summary()
    assert summary.total_fixed_cents == 1_500
    assert summary.total_installments_cents == 2_000
    assert summary.total_loans_cents == 3_000
    assert summary.total_monthly_cents == 6_500
    assert (summary.fixed_count, summary.installments_count, summary.loans_count) == (2, 1, 1)
    assert summary.total_count == 4


def test_delete_keeps_paid_transactions(session, checking, food):
    service = _service(session)
    expense = service.create(_internet(account_id=checking.id, category_id=food.id))
    service.delete(expense.id)

    remaining = TransactionService(session).list_all()
    assert len(remaining) == 1
    assert remaining[0].recurring_expense_id is None
    session.refresh(checking)
    assert checking.current_balance_cents == 100_000 - 12_000


def test_income_category_is_rejected_for_bills(session, checking, food, salary):
    service = _service(session)
    with pytest.raises(ValueError, match="Category type mismatch"):
        service.create(_internet(account_id=checking.id, category_id=salary.id))
    assert service.list_all() == []

    expense = service.create(_internet())
    with pytest.raises(ValueError, match="Category type mismatch"):
        service.pay_bill(
            expense.id,
            BillPaymentIn(month="2025-03", account_id=checking.id, category_id=salary.id),
        )
    with pytest.raises(ValueError, match="Category type mismatch"):
        service.update(expense.id, RecurringExpenseUpdate(category_id=salary.id))

    session.refresh(checking)
    assert checking.current_balance_cents == 100_000
    assert TransactionService(session).list_all() == []


def test_bills_stay_inside_start_and_end_dates(session, checking, food):
    service = _service(session)
    expense = service.create(
        _internet(
            due_day=5,
            start_date=date(2025, 3, 20),
            end_date=date(2025, 5, 3),
        )
    )
    assert expense.next_due_date == date(2025, 4, 5)

    assert service.bills("2025-03") == []
    assert [b.due_date for b in service.bills("2025-04")] == [date(2025, 4, 5)]
    assert service.bills("2025-05") == []
    with pytest.raises(ValueError, match="not due"):
        service.pay_bill(
            expense.id,
            BillPaymentIn(month="2025-03", account_id=checking.id, category_id=food.id),
        )
