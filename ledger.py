import logging

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from models import Account, Transaction, TransactionStatus, TransactionType

logger = logging.getLogger(__name__)


def signed_amount(amount_cents: int, txn_type: TransactionType) -> int:
    if txn_type == TransactionType.income:
        return amount_cents
    return -amount_cents


def balance_effect(txn: Transaction) -> int:
    """Amount ``txn`` contributes to its account; only completed rows count."""
    if txn.status != TransactionStatus.completed:
        return 0
    return signed_amount(txn.amount_cents, txn.type)


def split_installments(total_cents: int, count: int) -> list[int]:
    """Split a total into ``count`` parts that add back up to it exactly.

    Each part is floored to the cent; the remainder lands on the first part.
    """
    if count < 1:
        raise ValueError("Installment count must be at least 1")
    if total_cents <= 0:
        raise ValueError("Amount must be greater than zero")
    base = total_cents // count
    if base == 0:
        raise ValueError("Amount is too small to split into that many installments")
    parts = [base] * count
    parts[0] += total_cents - base * count
    return parts


def apply_balance_delta(session: Session, account_id: int, delta_cents: int) -> Account:
    account = session.get(Account, account_id)
    if account is None:
        raise ValueError("Account not found")
    if delta_cents:
        account.current_balance_cents += delta_cents
        logger.debug(
            f"balance_write: account={account_id} delta={delta_cents} "
            f"balance={account.current_balance_cents}"
        )
    return account


def apply_transaction(session: Session, txn: Transaction) -> None:
    apply_balance_delta(session, txn.account_id, balance_effect(txn))


def revert_transaction(session: Session, txn: Transaction) -> None:
    apply_balance_delta(session, txn.account_id, -balance_effect(txn))


def ledger_total(session: Session, account_id: int) -> int:
    signed = case(
        (Transaction.type == TransactionType.income, Transaction.amount_cents),
        else_=-Transaction.amount_cents,
    )
    total = session.execute(
        select(func.coalesce(func.sum(signed), 0)).where(
            Transaction.account_id == account_id,
            Transaction.status == TransactionStatus.completed,
        )
    ).scalar_one()
    return int(total or 0)
