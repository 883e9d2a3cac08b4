"""
SQLAlchemy Models for the branch ledger
"""
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric,
    ForeignKey, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship, deferred
import enum

from app.core.database import Base


# ==================== ENUMS ====================

class TransferStatus(enum.Enum):
    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


class TransactionType(enum.Enum):
    IN = "in"
    OUT = "out"
    REVERSAL_IN = "reversal_in"
    REVERSAL_OUT = "reversal_out"
    OPENING_BALANCE = "opening_balance"


class LedgerEntryType(enum.Enum):
    OPENING = "opening"
    CHARGE = "charge"
    PAYMENT = "payment"
    REVERSAL = "reversal"


class PayrollStatus(enum.Enum):
    OPEN = "open"
    PARTIAL = "partial"
    PAID = "paid"


# ==================== CORE MODELS ====================

class Branch(Base):
    """Organisational branch; every money-bearing row belongs to one"""
    __tablename__ = 'branches'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    accounts = relationship("Account", back_populates="branch")


class User(Base):
    """Acting user referenced by audit columns"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ==================== ACCOUNTS ====================

class Account(Base):
    """Cash or bank account holding money of a branch"""
    __tablename__ = 'accounts'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    institution = Column(String(255), nullable=True)
    currency_code = Column(String(10), default="USD")
    # Mutable cache of SUM(account_transactions debit - credit)
    balance = Column(Numeric(15, 2), nullable=False, default=Decimal("0.00"))
    is_active = Column(Boolean, default=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    branch = relationship("Branch", back_populates="accounts")
    transactions = relationship("AccountTransaction", back_populates="account")

    __table_args__ = (
        Index('ix_accounts_branch_id', 'branch_id'),
    )


class AccountTransaction(Base):
    """Append-only movement on an account"""
    __tablename__ = 'account_transactions'

    id = Column(Integer, primary_key=True)
    txn_type = Column(String(20), nullable=False)
    ref_table = Column(String(50), nullable=True)
    ref_id = Column(Integer, nullable=True)
    debit = Column(Numeric(15, 2), default=Decimal("0.00"))
    credit = Column(Numeric(15, 2), default=Decimal("0.00"))
    txn_date = Column(Date, nullable=False, default=date.today)
    note = Column(Text, nullable=True)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    account = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index('ix_account_transactions_account_id', 'account_id'),
        Index('ix_account_transactions_ref', 'ref_table', 'ref_id'),
    )


class AccountTransfer(Base):
    """Movement of money between two accounts of the same branch"""
    __tablename__ = 'account_transfers'

    id = Column(Integer, primary_key=True)
    from_account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    to_account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    transfer_date = Column(Date, nullable=False, default=date.today)
    status = Column(String(20), nullable=False, default=TransferStatus.POSTED.value)
    reference_no = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    from_account = relationship("Account", foreign_keys=[from_account_id])
    to_account = relationship("Account", foreign_keys=[to_account_id])

    @property
    def is_posted(self):
        return self.status == TransferStatus.POSTED.value

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_account_transfers_amount_positive'),
        CheckConstraint('from_account_id <> to_account_id', name='ck_account_transfers_distinct'),
        Index('ix_account_transfers_branch_id', 'branch_id'),
    )


# ==================== PARTIES ====================
# The balance column name differs between schema releases (open_balance in
# older databases). It is deferred so ORM loads never select it; writes and
# reads go through the column resolved by SchemaCapabilities.

class Customer(Base):
    """Customer"""
    __tablename__ = 'customers'

    id = Column(Integer, primary_key=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)
    remaining_balance = deferred(Column(Numeric(15, 2), default=Decimal("0.00")))
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_customers_branch_id', 'branch_id'),
    )


class Supplier(Base):
    """Supplier"""
    __tablename__ = 'suppliers'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True)
    remaining_balance = deferred(Column(Numeric(15, 2), default=Decimal("0.00")))
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_suppliers_branch_id', 'branch_id'),
    )


class Sale(Base):
    """Sale header; only the money columns matter to the ledger"""
    __tablename__ = 'sales'

    id = Column(Integer, primary_key=True)
    sale_date = Column(Date, nullable=False, default=date.today)
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    paid_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    status = Column(String(20), default="posted")
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)


class Purchase(Base):
    """Purchase header"""
    __tablename__ = 'purchases'

    id = Column(Integer, primary_key=True)
    purchase_date = Column(Date, nullable=False, default=date.today)
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    status = Column(String(20), default="received")
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete='SET NULL'), nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)

    payments = relationship("SupplierPayment", back_populates="purchase", cascade="all, delete-orphan")


class SupplierPayment(Base):
    """Payment recorded against a specific purchase"""
    __tablename__ = 'supplier_payments'

    id = Column(Integer, primary_key=True)
    amount_paid = Column(Numeric(15, 2), nullable=False)
    pay_date = Column(Date, nullable=False, default=date.today)
    purchase_id = Column(Integer, ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False)
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete='SET NULL'), nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)

    purchase = relationship("Purchase", back_populates="payments")


# ==================== RECEIPTS ====================

class CustomerReceipt(Base):
    """Money received from a customer (or a walk-in) into an account"""
    __tablename__ = 'customer_receipts'

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)
    sale_id = Column(Integer, ForeignKey('sales.id', ondelete='SET NULL'), nullable=True)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    receipt_date = Column(Date, nullable=False, default=date.today)
    # Part of the amount that actually reduced the party balance column
    party_applied = Column(Numeric(15, 2), nullable=True)
    payment_method = Column(String(50), nullable=True)
    reference_no = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    customer = relationship("Customer")
    account = relationship("Account")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_customer_receipts_amount_positive'),
        Index('ix_customer_receipts_branch_id', 'branch_id'),
    )


class SupplierReceipt(Base):
    """Money paid out of an account to a supplier"""
    __tablename__ = 'supplier_receipts'

    id = Column(Integer, primary_key=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete='SET NULL'), nullable=True)
    purchase_id = Column(Integer, ForeignKey('purchases.id', ondelete='SET NULL'), nullable=True)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    receipt_date = Column(Date, nullable=False, default=date.today)
    # Part of the amount that actually reduced the party balance column
    party_applied = Column(Numeric(15, 2), nullable=True)
    payment_method = Column(String(50), nullable=True)
    reference_no = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    supplier = relationship("Supplier")
    account = relationship("Account")

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_supplier_receipts_amount_positive'),
        Index('ix_supplier_receipts_branch_id', 'branch_id'),
    )


class CustomerLedgerEntry(Base):
    """Append-only customer ledger: debit raises what is owed, credit settles it"""
    __tablename__ = 'customer_ledger'

    id = Column(Integer, primary_key=True)
    entry_type = Column(String(20), nullable=False)
    ref_table = Column(String(50), nullable=True)
    ref_id = Column(Integer, nullable=True)
    debit = Column(Numeric(15, 2), default=Decimal("0.00"))
    credit = Column(Numeric(15, 2), default=Decimal("0.00"))
    entry_date = Column(Date, nullable=False, default=date.today)
    note = Column(Text, nullable=True)
    customer_id = Column(Integer, ForeignKey('customers.id', ondelete='CASCADE'), nullable=False)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_customer_ledger_customer_date', 'customer_id', 'entry_date'),
    )


class SupplierLedgerEntry(Base):
    """Append-only supplier ledger: debit raises what is owed, credit settles it"""
    __tablename__ = 'supplier_ledger'

    id = Column(Integer, primary_key=True)
    entry_type = Column(String(20), nullable=False)
    ref_table = Column(String(50), nullable=True)
    ref_id = Column(Integer, nullable=True)
    debit = Column(Numeric(15, 2), default=Decimal("0.00"))
    credit = Column(Numeric(15, 2), default=Decimal("0.00"))
    entry_date = Column(Date, nullable=False, default=date.today)
    note = Column(Text, nullable=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete='CASCADE'), nullable=False)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_supplier_ledger_supplier_date', 'supplier_id', 'entry_date'),
    )


# ==================== EXPENSES ====================

class Expense(Base):
    """Expense category that charges point at"""
    __tablename__ = 'expenses'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    charges = relationship("ExpenseCharge", back_populates="expense")
    budgets = relationship("ExpenseBudget", back_populates="expense")


class ExpenseBudget(Base):
    """Recurring fixed-amount charge template"""
    __tablename__ = 'expense_budgets'

    id = Column(Integer, primary_key=True)
    expense_id = Column(Integer, ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False)
    fixed_amount = Column(Numeric(15, 2), nullable=False)
    note = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    expense = relationship("Expense", back_populates="budgets")

    __table_args__ = (
        CheckConstraint('fixed_amount > 0', name='ck_expense_budgets_amount_positive'),
    )


class ExpenseCharge(Base):
    """An amount owed against an expense, optionally materialised from a budget"""
    __tablename__ = 'expense_charges'

    id = Column(Integer, primary_key=True)
    expense_id = Column(Integer, ForeignKey('expenses.id', ondelete='RESTRICT'), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    charge_date = Column(Date, nullable=False, default=date.today)
    note = Column(Text, nullable=True)
    budget_id = Column(Integer, ForeignKey('expense_budgets.id', ondelete='SET NULL'), nullable=True)
    period_year = Column(Integer, nullable=True)
    period_month = Column(Integer, nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    expense = relationship("Expense", back_populates="charges")
    budget = relationship("ExpenseBudget")
    payments = relationship("ExpensePayment", back_populates="charge")

    @property
    def is_budget(self):
        return self.budget_id is not None

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_expense_charges_amount_positive'),
        # NULL budget_id rows (manual charges) never collide
        UniqueConstraint('budget_id', 'period_year', 'period_month', name='uq_expense_charge_budget_period'),
        Index('ix_expense_charges_branch_id', 'branch_id'),
    )


class ExpensePayment(Base):
    """Payment of an expense charge out of an account"""
    __tablename__ = 'expense_payments'

    id = Column(Integer, primary_key=True)
    charge_id = Column(Integer, ForeignKey('expense_charges.id', ondelete='RESTRICT'), nullable=False)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    amount_paid = Column(Numeric(15, 2), nullable=False)
    pay_date = Column(Date, nullable=False, default=date.today)
    reference_no = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    charge = relationship("ExpenseCharge", back_populates="payments")
    account = relationship("Account")

    __table_args__ = (
        CheckConstraint('amount_paid > 0', name='ck_expense_payments_amount_positive'),
    )


# ==================== PAYROLL ====================

class Employee(Base):
    """Employee; an active employee with a salary is a payroll template"""
    __tablename__ = 'employees'

    id = Column(Integer, primary_key=True)
    full_name = Column(String(255), nullable=False)
    status = Column(String(20), default="active")  # active, inactive, terminated
    salary_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    hire_date = Column(Date, nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class PayrollRun(Base):
    """Container for the salary lines of one branch and calendar month"""
    __tablename__ = 'payroll_runs'

    id = Column(Integer, primary_key=True)
    period_year = Column(Integer, nullable=False)
    period_month = Column(Integer, nullable=False)
    period_from = Column(Date, nullable=False)
    period_to = Column(Date, nullable=False)
    status = Column(String(20), default=PayrollStatus.OPEN.value)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    lines = relationship("PayrollLine", back_populates="run", cascade="all, delete-orphan")

    @property
    def period_label(self):
        return f"{self.period_year:04d}-{self.period_month:02d}"

    __table_args__ = (
        UniqueConstraint('branch_id', 'period_year', 'period_month', name='uq_payroll_run_period'),
    )


class PayrollLine(Base):
    """One employee's salary within a payroll run"""
    __tablename__ = 'payroll_lines'

    id = Column(Integer, primary_key=True)
    payroll_run_id = Column(Integer, ForeignKey('payroll_runs.id', ondelete='CASCADE'), nullable=False)
    employee_id = Column(Integer, ForeignKey('employees.id', ondelete='CASCADE'), nullable=False)
    basic_salary = Column(Numeric(15, 2), default=Decimal("0.00"))
    allowances = Column(Numeric(15, 2), default=Decimal("0.00"))
    deductions = Column(Numeric(15, 2), default=Decimal("0.00"))
    net_salary = Column(Numeric(15, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    run = relationship("PayrollRun", back_populates="lines")
    employee = relationship("Employee")
    payments = relationship("EmployeePayment", back_populates="line", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('payroll_run_id', 'employee_id', name='uq_payroll_line_employee'),
    )


class EmployeePayment(Base):
    """Salary paid against a payroll line out of an account"""
    __tablename__ = 'employee_payments'

    id = Column(Integer, primary_key=True)
    payroll_run_id = Column(Integer, ForeignKey('payroll_runs.id', ondelete='SET NULL'), nullable=True)
    payroll_line_id = Column(Integer, ForeignKey('payroll_lines.id', ondelete='RESTRICT'), nullable=False)
    employee_id = Column(Integer, ForeignKey('employees.id', ondelete='CASCADE'), nullable=False)
    account_id = Column(Integer, ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False)
    amount_paid = Column(Numeric(15, 2), nullable=False)
    pay_date = Column(Date, nullable=False, default=date.today)
    reference_no = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    branch_id = Column(Integer, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    line = relationship("PayrollLine", back_populates="payments")
    account = relationship("Account")

    __table_args__ = (
        CheckConstraint('amount_paid > 0', name='ck_employee_payments_amount_positive'),
    )
