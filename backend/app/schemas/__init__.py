"""
Pydantic Schemas for API Validation
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# ==================== ENUMS ====================

class TransferStatusEnum(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


class ChargeOperEnum(str, Enum):
    INSERT = "insert"
    AUTO = "auto"


class PayrollDeleteModeEnum(str, Enum):
    LINE = "line"
    PERIOD = "period"


# ==================== ACCOUNT SCHEMAS ====================

class AccountBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    institution: Optional[str] = Field(None, max_length=255)
    currency_code: str = Field(default="USD", max_length=10)


class AccountCreate(AccountBase):
    opening_balance: Decimal = Field(default=Decimal("0.00"), ge=0)
    branch_id: Optional[int] = None


class AccountResponse(AccountBase):
    id: int
    balance: Decimal
    is_active: bool
    branch_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountTransactionResponse(BaseModel):
    id: int
    account_id: int
    txn_type: str
    ref_table: Optional[str] = None
    ref_id: Optional[int] = None
    debit: Decimal
    credit: Decimal
    txn_date: date
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ==================== TRANSFER SCHEMAS ====================

class AccountTransferCreate(BaseModel):
    from_account_id: int = Field(..., gt=0)
    to_account_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)
    transfer_date: Optional[date] = None
    reference_no: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None
    post_now: bool = True
    branch_id: Optional[int] = None


class AccountTransferUpdate(BaseModel):
    from_account_id: Optional[int] = Field(None, gt=0)
    to_account_id: Optional[int] = Field(None, gt=0)
    amount: Optional[Decimal] = Field(None, gt=0)
    transfer_date: Optional[date] = None
    status: Optional[TransferStatusEnum] = None
    reference_no: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None


class AccountTransferResponse(BaseModel):
    id: int
    from_account_id: int
    to_account_id: int
    amount: Decimal
    transfer_date: date
    status: str
    reference_no: Optional[str] = None
    note: Optional[str] = None
    branch_id: int
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== RECEIPT SCHEMAS ====================

class ReceiptBase(BaseModel):
    account_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)
    receipt_date: Optional[date] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    reference_no: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None


class CustomerReceiptCreate(ReceiptBase):
    customer_id: Optional[int] = Field(None, gt=0)
    sale_id: Optional[int] = Field(None, gt=0)
    branch_id: Optional[int] = None


class SupplierReceiptCreate(ReceiptBase):
    supplier_id: Optional[int] = Field(None, gt=0)
    purchase_id: Optional[int] = Field(None, gt=0)
    branch_id: Optional[int] = None


class ReceiptUpdate(BaseModel):
    account_id: Optional[int] = Field(None, gt=0)
    amount: Optional[Decimal] = Field(None, gt=0)
    receipt_date: Optional[date] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    reference_no: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None


class CustomerReceiptUpdate(ReceiptUpdate):
    customer_id: Optional[int] = Field(None, gt=0)
    sale_id: Optional[int] = Field(None, gt=0)


class SupplierReceiptUpdate(ReceiptUpdate):
    supplier_id: Optional[int] = Field(None, gt=0)
    purchase_id: Optional[int] = Field(None, gt=0)


class CustomerReceiptResponse(ReceiptBase):
    id: int
    receipt_date: date
    party_applied: Optional[Decimal] = None
    customer_id: Optional[int] = None
    sale_id: Optional[int] = None
    branch_id: int
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SupplierReceiptResponse(ReceiptBase):
    id: int
    receipt_date: date
    party_applied: Optional[Decimal] = None
    supplier_id: Optional[int] = None
    purchase_id: Optional[int] = None
    branch_id: int
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== OUTSTANDING SCHEMAS ====================

class UnpaidRow(BaseModel):
    branch_id: int
    party_id: int
    name: str
    total: Decimal
    paid: Decimal
    balance: Decimal
    source: str


class PartyBalance(BaseModel):
    party_id: int
    branch_id: int
    column_balance: Decimal
    derived_balance: Decimal
    ledger_balance: Decimal
    balance: Decimal
    source: str


class OutstandingPurchase(BaseModel):
    purchase_id: int
    supplier_id: Optional[int] = None
    branch_id: int
    purchase_date: date
    total: Decimal
    paid: Decimal
    outstanding: Decimal


# ==================== EXPENSE SCHEMAS ====================

class ExpenseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    branch_id: Optional[int] = None


class ExpenseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class ExpenseResponse(BaseModel):
    id: int
    name: str
    branch_id: int
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExpenseChargeCreate(BaseModel):
    expense_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)
    charge_date: Optional[date] = None
    note: Optional[str] = None
    branch_id: Optional[int] = None


class ExpenseChargeUpdate(BaseModel):
    expense_id: Optional[int] = Field(None, gt=0)
    amount: Optional[Decimal] = Field(None, gt=0)
    charge_date: Optional[date] = None
    note: Optional[str] = None


class ExpenseChargeResponse(BaseModel):
    id: int
    expense_id: int
    amount: Decimal
    charge_date: date
    note: Optional[str] = None
    budget_id: Optional[int] = None
    period_year: Optional[int] = None
    period_month: Optional[int] = None
    branch_id: int
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExpenseBudgetCreate(BaseModel):
    expense_id: int = Field(..., gt=0)
    fixed_amount: Decimal = Field(..., gt=0)
    note: Optional[str] = None
    branch_id: Optional[int] = None


class ExpenseBudgetUpdate(BaseModel):
    expense_id: Optional[int] = Field(None, gt=0)
    fixed_amount: Optional[Decimal] = Field(None, gt=0)
    note: Optional[str] = None
    is_active: Optional[bool] = None


class ExpenseBudgetResponse(BaseModel):
    id: int
    expense_id: int
    fixed_amount: Decimal
    note: Optional[str] = None
    is_active: bool
    branch_id: int
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChargeBudgetRequest(BaseModel):
    pay_date: date
    account_id: Optional[int] = Field(None, gt=0)
    note: Optional[str] = None


class ChargeBudgetResult(BaseModel):
    charge_id: int
    payment_id: Optional[int] = None


class ManageBudgetChargesRequest(BaseModel):
    reg_date: date
    oper: ChargeOperEnum = ChargeOperEnum.AUTO
    branch_id: Optional[int] = None


class PeriodChargeResult(BaseModel):
    status: str
    oper: str
    created: int


class ExpensePaymentCreate(BaseModel):
    charge_id: int = Field(..., gt=0)
    account_id: int = Field(..., gt=0)
    amount: Optional[Decimal] = Field(None, gt=0)
    pay_date: Optional[date] = None
    reference_no: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None


class ExpensePaymentResponse(BaseModel):
    id: int
    charge_id: int
    account_id: int
    amount_paid: Decimal
    pay_date: date
    reference_no: Optional[str] = None
    note: Optional[str] = None
    branch_id: int
    user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== PAYROLL SCHEMAS ====================

class ChargeSalariesRequest(BaseModel):
    period_date: date
    oper: ChargeOperEnum = ChargeOperEnum.AUTO
    branch_id: Optional[int] = None


class ChargeSalariesResult(BaseModel):
    created: int


class PaySalaryRequest(BaseModel):
    payroll_line_id: int = Field(..., gt=0)
    account_id: int = Field(..., gt=0)
    amount: Optional[Decimal] = Field(None, gt=0)
    pay_date: Optional[date] = None
    reference_no: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None


class EmployeePaymentResponse(BaseModel):
    id: int
    payroll_run_id: Optional[int] = None
    payroll_line_id: int
    employee_id: int
    account_id: int
    amount_paid: Decimal
    pay_date: date
    reference_no: Optional[str] = None
    note: Optional[str] = None
    branch_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PayrollLineResponse(BaseModel):
    id: int
    payroll_run_id: int
    employee_id: int
    employee_name: Optional[str] = None
    basic_salary: Decimal
    allowances: Decimal
    deductions: Decimal
    net_salary: Decimal
    paid: Decimal = Decimal("0.00")
    remaining: Decimal = Decimal("0.00")


class PayrollRunResponse(BaseModel):
    id: int
    branch_id: int
    period_year: int
    period_month: int
    period_from: date
    period_to: date
    status: str
    lines: List[PayrollLineResponse] = []


class DeletePayrollRequest(BaseModel):
    mode: PayrollDeleteModeEnum
    payroll_line_id: Optional[int] = Field(None, gt=0)
    period: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")
    branch_id: Optional[int] = None


class DeletedResult(BaseModel):
    deleted: int
