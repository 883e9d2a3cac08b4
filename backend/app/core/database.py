"""
Database Configuration
"""
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator, Iterator
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

# Get the properly formatted database URL
db_url = settings.database_url

# Create engine
engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
    echo=settings.DEBUG
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base model
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Ensures the session is closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a group of writes as one unit of work.

    Commits when the block exits normally. Any exception rolls back every
    write made on the session since the last commit and is re-raised as is.
    Helpers called inside the block must flush, never commit.
    """
    try:
        yield db
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("Rolled back unit of work: %s", exc)
        raise


def init_db():
    """Initialize database tables"""
    # Import all models to register them with Base
    from app.models import (  # noqa: F401
        Branch, User, Account, AccountTransfer, AccountTransaction,
        Customer, Supplier, Sale, Purchase, SupplierPayment,
        CustomerReceipt, SupplierReceipt, CustomerLedgerEntry, SupplierLedgerEntry,
        Expense, ExpenseBudget, ExpenseCharge, ExpensePayment,
        Employee, PayrollRun, PayrollLine, EmployeePayment,
    )
    Base.metadata.create_all(bind=engine)
