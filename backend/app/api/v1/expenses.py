"""
Expenses API Routes - Expenses, Charges, Budgets and Payments
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.branch_scope import BranchScope
from app.core.database import get_db
from app.core.schema import SchemaCapabilities, get_schema_capabilities
from app.core.security import get_branch_scope, get_current_user_id
from app.schemas import (
    ExpenseCreate, ExpenseUpdate, ExpenseResponse,
    ExpenseChargeCreate, ExpenseChargeUpdate, ExpenseChargeResponse,
    ExpenseBudgetCreate, ExpenseBudgetUpdate, ExpenseBudgetResponse,
    ChargeBudgetRequest, ChargeBudgetResult, ManageBudgetChargesRequest, PeriodChargeResult,
    ExpensePaymentCreate, ExpensePaymentResponse
)
from app.schemas.updates import UpdateSet
from app.services.expense_service import (
    ExpenseService, ExpenseChargeService, ExpenseBudgetService, ExpensePaymentService
)

router = APIRouter(prefix="/finance", tags=["Expenses"])


# ==================== EXPENSES ====================

@router.get("/expenses", response_model=List[ExpenseResponse])
def list_expenses(
    branch_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope)
):
    return ExpenseService(db).list_expenses(scope, branch_id)


@router.post("/expenses", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
def create_expense(
    expense_data: ExpenseCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id)
):
    return ExpenseService(db).create(expense_data, scope, user_id)


@router.patch("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: int,
    expense_data: ExpenseUpdate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id)
):
    return ExpenseService(db).update(expense_id, UpdateSet.from_model(expense_data), scope, user_id)


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id)
):
    """Delete an expense; refused while it has charges"""
    ExpenseService(db).delete(expense_id, scope, user_id)
    return {"message": "Expense deleted"}


# ==================== CHARGES ====================

@router.get("/expense-charges", response_model=List[ExpenseChargeResponse])
def list_expense_charges(
    branch_id: Optional[int] = None,
    expense_id: Optional[int] = None,
    period: Optional[str] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope)
):
    return ExpenseChargeService(db).list_charges(scope, branch_id, expense_id, period)


@router.post("/expense-charges", response_model=ExpenseChargeResponse, status_code=status.HTTP_201_CREATED)
def create_expense_charge(
    charge_data: ExpenseChargeCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id)
):
    return ExpenseChargeService(db).create(charge_data, scope, user_id)


@router.patch("/expense-charges/{charge_id}", response_model=ExpenseChargeResponse)
def update_expense_charge(
    charge_id: int,
    charge_data: ExpenseChargeUpdate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id)
):
    return ExpenseChargeService(db).update(charge_id, UpdateSet.from_model(charge_data), scope, user_id)


@router.delete("/expense-charges/{charge_id}")
def delete_expense_charge(
    charge_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id)
):
    """Delete a charge; refused while it has payments"""
    ExpenseChargeService(db).delete(charge_id, scope, user_id)
    return {"message": "Expense charge deleted"}


# ==================== BUDGETS ====================

@router.get("/expense-budgets", response_model=List[ExpenseBudgetResponse])
def list_expense_budgets(
    branch_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return ExpenseBudgetService(db, capabilities).list_budgets(scope, branch_id)


@router.post("/expense-budgets", response_model=ExpenseBudgetResponse, status_code=status.HTTP_201_CREATED)
def create_expense_budget(
    budget_data: ExpenseBudgetCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return ExpenseBudgetService(db, capabilities).create(budget_data, scope, user_id)


@router.post("/expense-budgets/charges", response_model=PeriodChargeResult)
def manage_budget_charges(
    request: ManageBudgetChargesRequest,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Charge every active budget of the branch for the month of reg_date"""
    return ExpenseBudgetService(db, capabilities).manage_budget_charges(
        request.reg_date, request.oper, scope, user_id, request.branch_id
    )


@router.patch("/expense-budgets/{budget_id}", response_model=ExpenseBudgetResponse)
def update_expense_budget(
    budget_id: int,
    budget_data: ExpenseBudgetUpdate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return ExpenseBudgetService(db, capabilities).update(
        budget_id, UpdateSet.from_model(budget_data), scope, user_id
    )


@router.delete("/expense-budgets/{budget_id}")
def delete_expense_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    ExpenseBudgetService(db, capabilities).delete(budget_id, scope, user_id)
    return {"message": "Expense budget deleted"}


@router.post("/expense-budgets/{budget_id}/charge", response_model=ChargeBudgetResult,
             status_code=status.HTTP_201_CREATED)
def charge_expense_budget(
    budget_id: int,
    request: ChargeBudgetRequest,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Charge one budget for the month of pay_date; at most once per month"""
    return ExpenseBudgetService(db, capabilities).charge_budget(
        budget_id, request.pay_date, scope, user_id, request.account_id, request.note
    )


# ==================== PAYMENTS ====================

@router.get("/expense-payments", response_model=List[ExpensePaymentResponse])
def list_expense_payments(
    branch_id: Optional[int] = None,
    charge_id: Optional[int] = None,
    expense_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return ExpensePaymentService(db, capabilities).list_payments(scope, branch_id, charge_id, expense_id)


@router.post("/expense-payments", response_model=ExpensePaymentResponse, status_code=status.HTTP_201_CREATED)
def create_expense_payment(
    payment_data: ExpensePaymentCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return ExpensePaymentService(db, capabilities).create(payment_data, scope, user_id)


@router.delete("/expense-payments/{payment_id}")
def delete_expense_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Delete a payment and return its amount to the paying account"""
    ExpensePaymentService(db, capabilities).delete(payment_id, scope, user_id)
    return {"message": "Expense payment deleted"}
