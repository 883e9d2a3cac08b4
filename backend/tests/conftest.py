"""
Pytest fixtures for the ledger engine test suite.

Provides:
- an in-memory SQLite database built from the ORM metadata
- seeded branches, users, accounts and parties
- branch scopes and a fresh SchemaCapabilities per test
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.branch_scope import BranchScope
from app.core.database import Base
from app.core.schema import SchemaCapabilities
from app.models import (
    Branch, User, Account, Customer, Supplier, Employee, Expense
)
from app.services.balance_service import BalanceAdjuster


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def capabilities():
    return SchemaCapabilities(schema_version="test")


@pytest.fixture
def scope():
    """Regular user assigned to branch 1."""
    return BranchScope(is_admin=False, branch_ids=[1], primary_branch_id=1)


@pytest.fixture
def other_scope():
    """Regular user assigned to branch 2 only."""
    return BranchScope(is_admin=False, branch_ids=[2], primary_branch_id=2)


@pytest.fixture
def admin_scope():
    return BranchScope(is_admin=True, branch_ids=[], primary_branch_id=1)


@pytest.fixture
def seed(db):
    db.add_all([
        Branch(id=1, name="Main"),
        Branch(id=2, name="Harbour"),
        User(id=1, username="cashier", full_name="Front Desk"),
    ])
    db.flush()

    cash = Account(name="Cash", branch_id=1, balance=Decimal("1000.00"))
    bank = Account(name="Bank", institution="First Bank", branch_id=1, balance=Decimal("500.00"))
    remote = Account(name="Harbour Cash", branch_id=2, balance=Decimal("300.00"))
    customer = Customer(full_name="Acme Retail", branch_id=1, remaining_balance=Decimal("300.00"))
    supplier = Supplier(name="Paper Mill", branch_id=1, remaining_balance=Decimal("800.00"))
    db.add_all([cash, bank, remote, customer, supplier])
    db.commit()

    return SimpleNamespace(
        user_id=1,
        cash_id=cash.id,
        bank_id=bank.id,
        remote_id=remote.id,
        customer_id=customer.id,
        supplier_id=supplier.id,
    )


@pytest.fixture
def expense(db, seed):
    item = Expense(name="Rent", branch_id=1, user_id=seed.user_id)
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def employees(db, seed):
    staff = [
        Employee(full_name="Dana Ortiz", status="active", salary_amount=Decimal("1000.00"), branch_id=1),
        Employee(full_name="Sam Lee", status="active", salary_amount=Decimal("600.00"), branch_id=1),
        Employee(full_name="Former Hire", status="terminated", salary_amount=Decimal("900.00"), branch_id=1),
        Employee(full_name="Volunteer", status="active", salary_amount=Decimal("0.00"), branch_id=1),
        Employee(full_name="Harbour Clerk", status="active", salary_amount=Decimal("700.00"), branch_id=2),
    ]
    db.add_all(staff)
    db.commit()
    return staff


@pytest.fixture
def balance_of(db):
    """Committed balance of an account."""
    def _balance(account_id):
        return db.execute(select(Account.balance).where(Account.id == account_id)).scalar_one()
    return _balance


@pytest.fixture
def party_balance(db, capabilities):
    def _balance(table, party_id):
        return BalanceAdjuster(db, capabilities).party_balance(table, party_id)
    return _balance

