import os
import tempfile

# Keep the default data directory (SQLite file, uploads) out of the working tree.
os.environ.setdefault("FINCONTROL_DATA_DIR", tempfile.mkdtemp(prefix="fincontrol-test-"))

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from database import Base  # noqa: E402
from models import AccountType, CategoryType  # noqa: E402
from schemas import AccountIn, CategoryIn  # noqa: E402
from services import AccountService, CategoryService  # noqa: E402


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def checking(session):
    return AccountService(session).create(
        AccountIn(
            name="Checking", type=AccountType.checking, initial_balance_cents=100_000
        )
    )


@pytest.fixture
def savings(session):
    return AccountService(session).create(
        AccountIn(name="Savings", type=AccountType.savings, initial_balance_cents=50_000)
    )


@pytest.fixture
def food(session):
    return CategoryService(session).create(
        CategoryIn(name="Food", type=CategoryType.expense, color="#f43f5e")
    )


@pytest.fixture
def salary(session):
    return CategoryService(session).create(
        CategoryIn(name="Salary", type=CategoryType.income, color="#10b981")
    )
