from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

import bcrypt
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from config import get_settings
from database import atomic
from ledger import (
    apply_transaction,
    ledger_total,
    revert_transaction,
    signed_amount,
    split_installments,
)
from models import (
    Account,
    AccountType,
    Attachment,
    Budget,
    Category,
    CategoryType,
    Notification,
    NotificationType,
    RecurringExpense,
    RecurringStatus,
    RecurringType,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from periods import Period, month_period, parse_month, shift_month, trailing_months
from recurrence import add_months, due_date_in_period, local_today, refresh_next_due_date
from schemas import (
    AccountIn,
    AccountUpdate,
    BillOut,
    BillPaymentIn,
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    CategoryIn,
    CategoryRef,
    CategoryUpdate,
    LoginIn,
    RecurringExpenseIn,
    RecurringExpenseUpdate,
    RecurringSummaryOut,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
    UserIn,
    UserUpdate,
)
from uploads import UploadService, ensure_image

logger = logging.getLogger(__name__)

BUDGET_ALERT_THRESHOLDS = (80, 100)
BCRYPT_ROUNDS = 10


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class AuthenticationError(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes
    secret = password.encode("utf-8")[:72]
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def check_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    parent_transaction_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


def _get_account(session: Session, user_id: int, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if not account or account.user_id != user_id:
        raise NotFoundError("Account not found")
    return account


def _get_category(session: Session, user_id: int, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if not category or category.user_id != user_id:
        raise NotFoundError("Category not found")
    return category


def _check_category_type(category: Category, txn_type: TransactionType) -> None:
    if txn_type == TransactionType.income and category.type != CategoryType.income:
        raise ValueError("Category type mismatch")
    if txn_type == TransactionType.expense and category.type != CategoryType.expense:
        raise ValueError("Category type mismatch")


def _expense_contribution(txn: Transaction) -> int:
    if txn.type != TransactionType.expense or txn.status != TransactionStatus.completed:
        return 0
    return txn.amount_cents


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, include_inactive: bool = True) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        return _get_account(self.session, self.user_id, account_id)

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            initial_balance_cents=data.initial_balance_cents,
            current_balance_cents=data.initial_balance_cents,
            credit_limit_cents=data.credit_limit_cents,
            due_day=data.due_day,
            color=data.color,
            icon=data.icon,
            is_active=data.is_active,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        values = data.model_dump(exclude_unset=True)
        new_initial = values.pop("initial_balance_cents", None)
        for field, value in values.items():
            if value is None and field in ("name", "type", "is_active"):
                continue
            if field == "name":
                value = value.strip()
            setattr(account, field, value)
        if new_initial is not None and new_initial != account.initial_balance_cents:
            # the running balance carries the same offset as the opening balance
            account.current_balance_cents += new_initial - account.initial_balance_cents
            account.initial_balance_cents = new_initial
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        txn_count = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.account_id == account.id
                )
            ).scalar_one()
            or 0
        )
        if txn_count:
            raise ValueError("Account has transactions; delete them first")
        with atomic(self.session):
            self.session.execute(
                update(RecurringExpense)
                .where(RecurringExpense.account_id == account.id)
                .values(account_id=None)
            )
            self.session.delete(account)

    def recalculate(self, account_id: int) -> Account:
        account = self.get(account_id)
        self.session.flush()
        expected = account.initial_balance_cents + ledger_total(self.session, account.id)
        if expected != account.current_balance_cents:
            logger.warning(
                f"balance_repaired: account={account.id} "
                f"stored={account.current_balance_cents} expected={expected}"
            )
            account.current_balance_cents = expected
        self.session.commit()
        self.session.refresh(account)
        return account


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, type: Optional[CategoryType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        return _get_category(self.session, self.user_id, category_id)

    def _ensure_unique(
        self, name: str, type: CategoryType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            Category.type == type,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ConflictError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        self._ensure_unique(name, data.type)
        category = Category(
            user_id=self.user_id,
            name=name,
            description=data.description,
            type=data.type,
            color=data.color,
            icon=data.icon,
            is_default=data.is_default,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        values = data.model_dump(exclude_unset=True)
        if values.get("name") is not None:
            values["name"] = values["name"].strip()
        name = values.get("name") or category.name
        type = values.get("type") or category.type
        if name != category.name or type != category.type:
            self._ensure_unique(name, type, exclude_id=category.id)
        for field, value in values.items():
            if value is None and field in ("name", "type", "is_default"):
                continue
            setattr(category, field, value)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category.id
            )
        ) or 0
        in_use += self.session.scalar(
            select(func.count(Budget.id)).where(Budget.category_id == category.id)
        ) or 0
        if in_use:
            raise ValueError("Category is in use by transactions or budgets")
        with atomic(self.session):
            self.session.execute(
                update(RecurringExpense)
                .where(RecurringExpense.category_id == category.id)
                .values(category_id=None)
            )
            self.session.delete(category)


class NotificationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, unread_only: bool = False) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        return self.session.scalars(stmt).all()

    def get(self, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise NotFoundError("Notification not found")
        return notification

    def add(
        self,
        title: str,
        message: str,
        type: NotificationType = NotificationType.system,
        data: Optional[dict] = None,
    ) -> Notification:
        """Stage a notification on the session; the caller commits."""
        notification = Notification(
            user_id=self.user_id,
            title=title,
            message=message,
            type=type,
            data_json=json.dumps(data) if data is not None else None,
        )
        self.session.add(notification)
        return notification

    def mark_read(self, notification_id: int) -> Notification:
        notification = self.get(notification_id)
        notification.is_read = True
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def mark_all_read(self) -> int:
        result = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == self.user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
        )
        self.session.commit()
        return result.rowcount or 0

    def delete(self, notification_id: int) -> None:
        notification = self.get(notification_id)
        self.session.delete(notification)
        self.session.commit()

    def check_budget_alerts(
        self,
        category_id: int,
        on_date: date,
        added_cents: int,
        *,
        previous: Optional[tuple[int, date, int]] = None,
    ) -> list[Notification]:
        """Raise an alert for every threshold the last ``added_cents`` crossed.

        Expects the spending change to be flushed already, so the computed
        total includes it. ``previous`` is the ``(category_id, date, cents)``
        an edited row counted before the edit; it only offsets budgets whose
        window held the old row.
        """
        if added_cents <= 0:
            return []
        budgets = self.session.scalars(
            select(Budget)
            .options(joinedload(Budget.category))
            .where(
                Budget.user_id == self.user_id,
                Budget.category_id == category_id,
                Budget.is_active.is_(True),
                Budget.start_date <= on_date,
                Budget.end_date >= on_date,
            )
        ).all()
        created = []
        budget_service = BudgetService(self.session, self.user_id)
        for budget in budgets:
            if budget.amount_cents <= 0:
                continue
            after = budget_service.spent_cents(budget)
            before = after - added_cents
            if previous is not None:
                old_category_id, old_date, old_cents = previous
                if (
                    old_category_id == budget.category_id
                    and budget.start_date <= old_date <= budget.end_date
                ):
                    before += old_cents
            if after <= before:
                continue
            for threshold in BUDGET_ALERT_THRESHOLDS:
                enabled = budget.alert_at_80 if threshold == 80 else budget.alert_at_100
                limit = budget.amount_cents * threshold
                if not enabled or not before * 100 < limit <= after * 100:
                    continue
                name = budget.category.name
                if threshold >= 100:
                    message = f"Spending in {name} reached the budget limit."
                else:
                    message = f"Spending in {name} reached {threshold}% of the budget."
                created.append(
                    self.add(
                        title=f"Budget alert: {name}",
                        message=message,
                        type=NotificationType.budget_alert,
                        data={
                            "budget_id": budget.id,
                            "category_id": category_id,
                            "threshold": threshold,
                            "spent_cents": after,
                            "amount_cents": budget.amount_cents,
                        },
                    )
                )
                logger.info(
                    f"budget_alert: budget={budget.id} threshold={threshold} "
                    f"spent={after} limit={budget.amount_cents}"
                )
        return created


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        uploads: Optional[UploadService] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.uploads = uploads

    def list_all(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.account),
                joinedload(Transaction.category),
                selectinload(Transaction.attachments),
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.status:
            stmt = stmt.where(Transaction.status == filters.status)
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.parent_transaction_id:
            stmt = stmt.where(
                Transaction.parent_transaction_id == filters.parent_transaction_id
            )
        if filters.date_from:
            stmt = stmt.where(Transaction.date >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(Transaction.date <= filters.date_to)
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.account),
                joinedload(Transaction.category),
                selectinload(Transaction.attachments),
            )
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        _get_account(self.session, self.user_id, data.account_id)
        category = _get_category(self.session, self.user_id, data.category_id)
        _check_category_type(category, data.type)

        total = data.total_installments or 1
        with atomic(self.session):
            if total > 1:
                txn = self._create_installments(data, total)
            else:
                txn = Transaction(
                    user_id=self.user_id,
                    amount_cents=data.amount_cents,
                    date=data.date,
                    description=data.description.strip(),
                    type=data.type,
                    status=data.status,
                    account_id=data.account_id,
                    category_id=data.category_id,
                    installment_number=data.installment_number,
                    total_installments=data.total_installments,
                    is_recurring=data.is_recurring,
                    recurring_frequency=data.recurring_frequency,
                )
                self.session.add(txn)
                self.session.flush()
                apply_transaction(self.session, txn)
            self._alert_budgets(txn, _expense_contribution(txn))
        return self.get(txn.id)

    def _create_installments(self, data: TransactionIn, total: int) -> Transaction:
        amounts = split_installments(data.amount_cents, total)
        description = data.description.strip()
        first: Optional[Transaction] = None
        for index, amount in enumerate(amounts):
            number = index + 1
            txn = Transaction(
                user_id=self.user_id,
                amount_cents=amount,
                date=add_months(data.date, index, desired_day=data.date.day),
                description=f"{description} ({number}/{total})",
                type=data.type,
                # the first installment is charged now, the rest are scheduled
                status=(
                    TransactionStatus.completed
                    if first is None
                    else TransactionStatus.scheduled
                ),
                account_id=data.account_id,
                category_id=data.category_id,
                installment_number=number,
                total_installments=total,
                parent_transaction_id=first.id if first else None,
                is_recurring=data.is_recurring,
                recurring_frequency=data.recurring_frequency,
            )
            self.session.add(txn)
            self.session.flush()
            if first is None:
                first = txn
                apply_transaction(self.session, txn)
        logger.info(
            f"installments_created: parent={first.id} count={total} "
            f"total={data.amount_cents}"
        )
        return first

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        values = data.model_dump(exclude_unset=True)
        values = {k: v for k, v in values.items() if v is not None}

        account_id = values.get("account_id", txn.account_id)
        category_id = values.get("category_id", txn.category_id)
        txn_type = values.get("type", txn.type)
        _get_account(self.session, self.user_id, account_id)
        category = _get_category(self.session, self.user_id, category_id)
        if "category_id" in values or "type" in values:
            _check_category_type(category, txn_type)

        previous = (txn.category_id, txn.date, _expense_contribution(txn))
        with atomic(self.session):
            revert_transaction(self.session, txn)
            if "description" in values:
                values["description"] = values["description"].strip()
            for field, value in values.items():
                setattr(txn, field, value)
            self.session.flush()
            apply_transaction(self.session, txn)
            self._alert_budgets(txn, _expense_contribution(txn), previous=previous)
        self.session.expire(txn)
        return self.get(txn.id)

    def pay(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id)
        if txn.status == TransactionStatus.completed:
            raise ValueError("Transaction is already completed")
        if txn.status == TransactionStatus.cancelled:
            raise ValueError("Cancelled transactions cannot be paid")
        with atomic(self.session):
            txn.status = TransactionStatus.completed
            self.session.flush()
            apply_transaction(self.session, txn)
            self._alert_budgets(txn, _expense_contribution(txn))
        logger.info(f"transaction_paid: id={txn.id} account={txn.account_id}")
        return self.get(txn.id)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        stored = [a.public_id for a in txn.attachments if a.public_id]
        with atomic(self.session):
            revert_transaction(self.session, txn)
            self.session.execute(
                update(Transaction)
                .where(Transaction.parent_transaction_id == txn.id)
                .values(parent_transaction_id=None)
            )
            self.session.delete(txn)
        if self.uploads:
            for public_id in stored:
                self.uploads.remove(public_id)

    def _alert_budgets(
        self,
        txn: Transaction,
        added_cents: int,
        previous: Optional[tuple[int, date, int]] = None,
    ) -> None:
        if added_cents > 0:
            self.session.flush()
            NotificationService(self.session, self.user_id).check_budget_alerts(
                txn.category_id, txn.date, added_cents, previous=previous
            )


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def spent_cents(self, budget: Budget) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                Transaction.user_id == self.user_id,
                Transaction.category_id == budget.category_id,
                Transaction.type == TransactionType.expense,
                Transaction.status == TransactionStatus.completed,
                Transaction.date.between(budget.start_date, budget.end_date),
            )
        ).scalar_one()
        return int(total or 0)

    def to_out(self, budget: Budget) -> BudgetOut:
        return BudgetOut.from_budget(budget, self.spent_cents(budget))

    def list_all(self, active_only: bool = False) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.start_date.desc(), Budget.id)
        )
        if active_only:
            stmt = stmt.where(Budget.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        _get_category(self.session, self.user_id, data.category_id)
        budget = Budget(user_id=self.user_id, **data.model_dump())
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        values = {
            k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None
        }
        if "category_id" in values:
            _get_category(self.session, self.user_id, values["category_id"])
        start = values.get("start_date", budget.start_date)
        end = values.get("end_date", budget.end_date)
        if end < start:
            raise ValueError("End date must not be before start date")
        for field, value in values.items():
            setattr(budget, field, value)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()


class RecurringExpenseService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today or local_today()

    def list_all(
        self,
        type: Optional[RecurringType] = None,
        status: Optional[RecurringStatus] = None,
    ) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .options(
                joinedload(RecurringExpense.category),
                joinedload(RecurringExpense.account),
            )
            .where(RecurringExpense.user_id == self.user_id)
            .order_by(
                RecurringExpense.next_due_date.is_(None),
                RecurringExpense.next_due_date,
                RecurringExpense.name,
            )
        )
        if type:
            stmt = stmt.where(RecurringExpense.type == type)
        if status:
            stmt = stmt.where(RecurringExpense.status == status)
        return self.session.scalars(stmt).all()

    def get(self, expense_id: int) -> RecurringExpense:
        expense = self.session.get(RecurringExpense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise NotFoundError("Recurring expense not found")
        return expense

    def _check_links(self, category_id: Optional[int], account_id: Optional[int]) -> None:
        if category_id is not None:
            category = _get_category(self.session, self.user_id, category_id)
            # bills are always booked as expenses
            _check_category_type(category, TransactionType.expense)
        if account_id is not None:
            _get_account(self.session, self.user_id, account_id)

    def create(self, data: RecurringExpenseIn) -> RecurringExpense:
        if data.end_date and data.end_date < data.start_date:
            raise ValueError("End date must not be before start date")
        self._check_links(data.category_id, data.account_id)
        expense = RecurringExpense(user_id=self.user_id, **data.model_dump())
        refresh_next_due_date(expense, self.today)
        with atomic(self.session):
            self.session.add(expense)
            self.session.flush()
            if expense.account_id and expense.category_id:
                start = month_period(expense.start_date.year, expense.start_date.month)
                occurrence = due_date_in_period(expense, start) or expense.start_date
                txn = Transaction(
                    user_id=self.user_id,
                    amount_cents=expense.amount_cents,
                    date=expense.start_date,
                    description=expense.name,
                    type=TransactionType.expense,
                    status=TransactionStatus.completed,
                    account_id=expense.account_id,
                    category_id=expense.category_id,
                    is_recurring=True,
                    recurring_frequency=expense.frequency.value,
                    recurring_expense_id=expense.id,
                    occurrence_date=occurrence,
                )
                self.session.add(txn)
                self.session.flush()
                apply_transaction(self.session, txn)
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: RecurringExpenseUpdate) -> RecurringExpense:
        expense = self.get(expense_id)
        values = data.model_dump(exclude_unset=True)
        self._check_links(values.get("category_id"), values.get("account_id"))
        required = (
            "name", "type", "status", "amount_cents", "frequency", "start_date", "color", "icon"
        )
        values = {
            k: v for k, v in values.items() if v is not None or k not in required
        }
        start = values.get("start_date", expense.start_date)
        end = values.get("end_date", expense.end_date)
        if end and end < start:
            raise ValueError("End date must not be before start date")
        for field, value in values.items():
            setattr(expense, field, value)
        refresh_next_due_date(expense, self.today)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        with atomic(self.session):
            self.session.execute(
                update(Transaction)
                .where(Transaction.recurring_expense_id == expense.id)
                .values(recurring_expense_id=None)
            )
            self.session.delete(expense)

    def summary(self) -> RecurringSummaryOut:
        rows = self.session.execute(
            select(
                RecurringExpense.type,
                func.count(RecurringExpense.id),
                func.coalesce(func.sum(RecurringExpense.amount_cents), 0),
            )
            .where(
                RecurringExpense.user_id == self.user_id,
                RecurringExpense.status == RecurringStatus.active,
            )
            .group_by(RecurringExpense.type)
        ).all()
        totals = {row[0]: (int(row[1]), int(row[2] or 0)) for row in rows}

        def bucket(*types: RecurringType) -> tuple[int, int]:
            count = sum(totals.get(t, (0, 0))[0] for t in types)
            amount = sum(totals.get(t, (0, 0))[1] for t in types)
            return count, amount

        fixed_count, fixed_total = bucket(RecurringType.fixed, RecurringType.subscription)
        inst_count, inst_total = bucket(RecurringType.installment, RecurringType.credit_card)
        loan_count, loan_total = bucket(RecurringType.loan)
        return RecurringSummaryOut(
            total_monthly_cents=fixed_total + inst_total + loan_total,
            total_fixed_cents=fixed_total,
            total_installments_cents=inst_total,
            total_loans_cents=loan_total,
            fixed_count=fixed_count,
            installments_count=inst_count,
            loans_count=loan_count,
            total_count=fixed_count + inst_count + loan_count,
        )

    def _payment_for(self, expense: RecurringExpense, period: Period) -> Optional[Transaction]:
        return self.session.scalar(
            select(Transaction)
            .where(
                Transaction.recurring_expense_id == expense.id,
                Transaction.occurrence_date.between(period.start, period.end),
            )
            .order_by(Transaction.id)
            .limit(1)
        )

    def bills(self, month: Optional[str] = None) -> list[BillOut]:
        period = parse_month(month, today=self.today)
        expenses = self.session.scalars(
            select(RecurringExpense)
            .options(joinedload(RecurringExpense.category))
            .where(
                RecurringExpense.user_id == self.user_id,
                RecurringExpense.status == RecurringStatus.active,
                RecurringExpense.start_date <= period.end,
            )
            .order_by(RecurringExpense.name)
        ).all()
        bills = []
        for expense in expenses:
            due = due_date_in_period(expense, period)
            if due is None:
                continue
            payment = self._payment_for(expense, period)
            bills.append(
                BillOut(
                    id=f"{expense.id}-{period.slug}",
                    recurring_expense_id=expense.id,
                    month=period.slug,
                    name=expense.name,
                    type=expense.type,
                    amount_cents=expense.amount_cents,
                    due_date=due,
                    is_paid=payment is not None,
                    paid_transaction_id=payment.id if payment else None,
                    color=expense.color,
                    icon=expense.icon,
                    account_id=expense.account_id,
                    category=(
                        CategoryRef.model_validate(expense.category)
                        if expense.category
                        else None
                    ),
                    current_installment=expense.current_installment,
                    total_installments=expense.total_installments,
                )
            )
        bills.sort(key=lambda bill: (bill.due_date, bill.name))
        return bills

    def pay_bill(self, expense_id: int, data: BillPaymentIn) -> Transaction:
        expense = self.get(expense_id)
        period = parse_month(data.month, today=self.today)
        if expense.status != RecurringStatus.active:
            raise ValueError("Recurring expense is not active")
        due = due_date_in_period(expense, period)
        if due is None:
            raise ValueError("Recurring expense is not due this month")
        if self._payment_for(expense, period) is not None:
            raise ConflictError("Bill already paid this month")

        account_id = data.account_id or expense.account_id
        if not account_id:
            raise ValueError("No account selected for payment")
        category_id = data.category_id or expense.category_id
        if not category_id:
            raise ValueError("No category selected for payment")
        _get_account(self.session, self.user_id, account_id)
        category = _get_category(self.session, self.user_id, category_id)
        _check_category_type(category, TransactionType.expense)

        try:
            with atomic(self.session):
                txn = Transaction(
                    user_id=self.user_id,
                    amount_cents=expense.amount_cents,
                    date=data.paid_on or self.today,
                    description=expense.name,
                    type=TransactionType.expense,
                    status=TransactionStatus.completed,
                    account_id=account_id,
                    category_id=category_id,
                    is_recurring=True,
                    recurring_frequency=expense.frequency.value,
                    recurring_expense_id=expense.id,
                    occurrence_date=due,
                )
                self.session.add(txn)
                self.session.flush()
                apply_transaction(self.session, txn)
                refresh_next_due_date(expense, self.today)
                NotificationService(self.session, self.user_id).check_budget_alerts(
                    category_id, txn.date, txn.amount_cents
                )
        except IntegrityError as exc:
            raise ConflictError("Bill already paid this month") from exc
        logger.info(
            f"bill_paid: recurring={expense.id} month={period.slug} "
            f"transaction={txn.id} account={account_id} amount={txn.amount_cents}"
        )
        self.session.refresh(txn)
        return txn

    def undo_pay(self, expense_id: int, month: str) -> RecurringExpense:
        expense = self.get(expense_id)
        period = parse_month(month, today=self.today)
        payment = self._payment_for(expense, period)
        if payment is None:
            raise ValueError("Bill is not paid for this month")
        payment_id = payment.id
        with atomic(self.session):
            revert_transaction(self.session, payment)
            self.session.delete(payment)
            refresh_next_due_date(expense, self.today)
        logger.info(
            f"bill_unpaid: recurring={expense.id} month={period.slug} "
            f"transaction={payment_id}"
        )
        self.session.refresh(expense)
        return expense


class AttachmentService:
    def __init__(
        self,
        session: Session,
        uploads: UploadService,
        user_id: Optional[int] = None,
    ) -> None:
        self.session = session
        self.uploads = uploads
        self.user_id = user_id or get_current_user_id()

    def list_for_transaction(self, transaction_id: int) -> list[Attachment]:
        TransactionService(self.session, self.user_id).get(transaction_id)
        return self.session.scalars(
            select(Attachment)
            .where(Attachment.transaction_id == transaction_id)
            .order_by(Attachment.created_at.desc(), Attachment.id.desc())
        ).all()

    def get(self, attachment_id: int) -> Attachment:
        attachment = self.session.get(Attachment, attachment_id)
        if not attachment or attachment.transaction.user_id != self.user_id:
            raise NotFoundError("Attachment not found")
        return attachment

    def create(
        self,
        transaction_id: int,
        content: bytes,
        file_name: str,
        file_type: Optional[str] = None,
    ) -> Attachment:
        TransactionService(self.session, self.user_id).get(transaction_id)
        stored = self.uploads.upload(content, file_name, "attachments")
        attachment = Attachment(
            transaction_id=transaction_id,
            url=stored.url,
            public_id=stored.public_id,
            file_name=file_name or "file",
            file_type=file_type,
            size=len(content),
        )
        self.session.add(attachment)
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            self.uploads.remove(stored.public_id)
            raise
        self.session.refresh(attachment)
        return attachment

    def delete(self, attachment_id: int) -> None:
        attachment = self.get(attachment_id)
        public_id = attachment.public_id
        self.session.delete(attachment)
        self.session.commit()
        self.uploads.remove(public_id)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[User]:
        return self.session.scalars(select(User).order_by(User.id)).all()

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == normalize_email(email))
        )

    def create(self, data: UserIn) -> User:
        email = normalize_email(data.email)
        if self.find_by_email(email):
            raise ConflictError("Email already registered")
        user = User(
            email=email,
            name=data.name,
            password_hash=hash_password(data.password) if data.password else None,
            avatar=data.avatar,
            role=data.role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user

    def update(self, user_id: int, data: UserUpdate) -> User:
        user = self.get(user_id)
        values = data.model_dump(exclude_unset=True)
        password = values.pop("password", None)
        email = values.pop("email", None)
        if email:
            email = normalize_email(email)
            existing = self.find_by_email(email)
            if existing and existing.id != user.id:
                raise ConflictError("Email already registered")
            user.email = email
        for field, value in values.items():
            if value is None and field == "role":
                continue
            setattr(user, field, value)
        if password:
            user.password_hash = hash_password(password)
        self.session.commit()
        self.session.refresh(user)
        return user

    def delete(self, user_id: int) -> None:
        user = self.get(user_id)
        self.session.delete(user)
        self.session.commit()

    def set_avatar(
        self, user_id: int, content: bytes, file_name: str, uploads: UploadService
    ) -> User:
        user = self.get(user_id)
        ensure_image(file_name)
        stored = uploads.upload(
            content, file_name, "avatars", name_prefix=str(user.id)
        )
        user.avatar = stored.url
        self.session.commit()
        self.session.refresh(user)
        return user


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.users = UserService(session)

    def register(self, data: RegisterIn) -> User:
        return self.users.create(
            UserIn(email=data.email, name=data.name or None, password=data.password)
        )

    def login(self, data: LoginIn) -> User:
        user = self.users.find_by_email(data.email)
        if not user or not check_password(data.password, user.password_hash):
            logger.info("login_failed")
            raise AuthenticationError("Invalid email or password")
        return user


class DashboardService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
        savings_goal_percent: Optional[int] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today or local_today()
        if savings_goal_percent is None:
            savings_goal_percent = get_settings().savings_goal_percent
        self.savings_goal_percent = savings_goal_percent

    def _month_totals(self, period: Period) -> tuple[int, int, int]:
        income = func.sum(
            case((Transaction.type == TransactionType.income, Transaction.amount_cents), else_=0)
        )
        expense = func.sum(
            case((Transaction.type == TransactionType.expense, Transaction.amount_cents), else_=0)
        )
        row = self.session.execute(
            select(
                func.coalesce(income, 0),
                func.coalesce(expense, 0),
                func.count(Transaction.id),
            ).where(
                Transaction.user_id == self.user_id,
                Transaction.status == TransactionStatus.completed,
                Transaction.date.between(period.start, period.end),
            )
        ).one()
        return int(row[0] or 0), int(row[1] or 0), int(row[2] or 0)

    def _recurring_expense_total(self, period: Period) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                Transaction.user_id == self.user_id,
                Transaction.status == TransactionStatus.completed,
                Transaction.type == TransactionType.expense,
                Transaction.recurring_expense_id.is_not(None),
                Transaction.date.between(period.start, period.end),
            )
        ).scalar_one()
        return int(total or 0)

    def _category_summary(self, period: Period) -> list[dict]:
        total = func.sum(Transaction.amount_cents).label("total")
        rows = self.session.execute(
            select(Category.id, Category.name, Category.color, total)
            .join(Transaction, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.status == TransactionStatus.completed,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Category.id, Category.name, Category.color)
            .order_by(total.desc())
        ).all()
        return [
            {
                "category_id": row.id,
                "name": row.name,
                "color": row.color,
                "total_cents": int(row.total or 0),
            }
            for row in rows
        ]

    def _recent_transactions(self, limit: int = 10) -> list[dict]:
        txns = self.session.scalars(
            select(Transaction)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        ).all()
        return [
            {
                "id": txn.id,
                "description": txn.description,
                "amount_cents": signed_amount(txn.amount_cents, txn.type),
                "date": txn.date.isoformat(),
                "type": txn.type.value,
                "status": txn.status.value,
                "account": txn.account.name,
                "category": txn.category.name,
                "category_color": txn.category.color,
            }
            for txn in txns
        ]

    def get_data(self) -> dict:
        current = month_period(self.today.year, self.today.month)
        prev_year, prev_month = shift_month(self.today.year, self.today.month, -1)
        previous = month_period(prev_year, prev_month)

        accounts = AccountService(self.session, self.user_id).list_all(
            include_inactive=False
        )
        accounts_by_type = {account_type.value: 0 for account_type in AccountType}
        for account in accounts:
            accounts_by_type[account.type.value] += 1

        income, expense, count = self._month_totals(current)
        _, _, previous_count = self._month_totals(previous)

        planned = income * self.savings_goal_percent // 100
        achieved = max(income - expense, 0)

        budget_limit = int(
            self.session.execute(
                select(func.coalesce(func.sum(Budget.amount_cents), 0)).where(
                    Budget.user_id == self.user_id,
                    Budget.is_active.is_(True),
                    Budget.start_date <= current.end,
                    Budget.end_date >= current.start,
                )
            ).scalar_one()
            or 0
        )

        monthly_summary = []
        fixed_series = []
        for period in trailing_months(self.today, 12):
            month_income, month_expense, _ = self._month_totals(period)
            monthly_summary.append(
                {
                    "month": period.slug,
                    "income_cents": month_income,
                    "expense_cents": month_expense,
                    "balance_cents": month_income - month_expense,
                }
            )
            fixed_series.append(
                {
                    "month": period.slug,
                    "total_cents": self._recurring_expense_total(period),
                }
            )

        return {
            "month": current.slug,
            "total_balance_cents": sum(a.current_balance_cents for a in accounts),
            "monthly_income_cents": income,
            "monthly_expense_cents": expense,
            "monthly_balance_cents": income - expense,
            "transactions_this_month": count,
            "transactions_last_month": previous_count,
            "active_accounts": len(accounts),
            "accounts_by_type": accounts_by_type,
            "savings_goal": {
                "percent": self.savings_goal_percent,
                "planned_cents": planned,
                "achieved_cents": achieved,
                "achieved_percent": round(achieved / income * 100, 2) if income else 0.0,
            },
            "budget_limit_cents": budget_limit,
            "budget_used_percent": (
                round(expense / budget_limit * 100, 2) if budget_limit else 0.0
            ),
            "monthly_summary": monthly_summary,
            "fixed_expenses_summary": fixed_series,
            "recent_transactions": self._recent_transactions(),
            "category_summary": self._category_summary(current),
            "recurring_summary": RecurringExpenseService(
                self.session, self.user_id, today=self.today
            )
            .summary()
            .model_dump(),
        }
