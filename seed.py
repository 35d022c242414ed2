import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import SessionLocal, init_db
from models import Account, AccountType, Category, CategoryType, User
from services import get_current_user_id

logger = logging.getLogger(__name__)

DEFAULT_USER_EMAIL = "user@fincontrol.app"
DEFAULT_ACCOUNT_NAME = "Conta Principal"
DEFAULT_CATEGORIES = [
    ("Salário", CategoryType.income, "#10b981", "Wallet"),
    ("Alimentação", CategoryType.expense, "#f43f5e", "Utensils"),
    ("Transporte", CategoryType.expense, "#f59e0b", "Car"),
    ("Lazer", CategoryType.expense, "#06b6d4", "Gamepad2"),
]


def seed_defaults(session: Session) -> bool:
    """Create the default user, account and categories on an empty database.

    Returns ``True`` when anything was written.
    """
    user_id = get_current_user_id()
    created = False

    if session.get(User, user_id) is None:
        session.add(User(id=user_id, email=DEFAULT_USER_EMAIL, name="FinControl"))
        created = True

    has_accounts = session.scalar(
        select(func.count(Account.id)).where(Account.user_id == user_id)
    )
    if not has_accounts:
        session.add(
            Account(
                user_id=user_id,
                name=DEFAULT_ACCOUNT_NAME,
                type=AccountType.checking,
                initial_balance_cents=0,
                current_balance_cents=0,
            )
        )
        created = True

    has_categories = session.scalar(
        select(func.count(Category.id)).where(Category.user_id == user_id)
    )
    if not has_categories:
        for name, type, color, icon in DEFAULT_CATEGORIES:
            session.add(
                Category(
                    user_id=user_id,
                    name=name,
                    type=type,
                    color=color,
                    icon=icon,
                    is_default=True,
                )
            )
        created = True

    if created:
        session.commit()
        logger.info(f"seed_applied: user={user_id}")
    return created


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    init_db()
    with SessionLocal() as session:
        seed_defaults(session)


if __name__ == "__main__":
    main()
