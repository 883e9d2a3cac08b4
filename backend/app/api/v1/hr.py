"""
HR API Routes - Payroll
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.branch_scope import BranchScope
from app.core.database import get_db
from app.core.schema import SchemaCapabilities, get_schema_capabilities
from app.core.security import get_branch_scope, get_current_user_id
from app.schemas import (
    ChargeSalariesRequest, ChargeSalariesResult, PaySalaryRequest, EmployeePaymentResponse,
    PayrollRunResponse, DeletePayrollRequest, DeletedResult
)
from app.services.hr_service import PayrollService

router = APIRouter(prefix="/finance/payroll", tags=["Payroll"])


@router.get("", response_model=List[PayrollRunResponse])
def list_payroll(
    period: Optional[str] = None,
    branch_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Payroll runs with their lines, paid and remaining amounts"""
    return PayrollService(db, capabilities).list_payroll(scope, period, branch_id)


@router.post("/charge", response_model=ChargeSalariesResult, status_code=status.HTTP_201_CREATED)
def charge_salaries(
    request: ChargeSalariesRequest,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return PayrollService(db, capabilities).charge_salaries(
        request.period_date, request.oper, scope, user_id, request.branch_id
    )


@router.post("/pay", response_model=EmployeePaymentResponse, status_code=status.HTTP_201_CREATED)
def pay_salary(
    payment_data: PaySalaryRequest,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return PayrollService(db, capabilities).pay_salary(payment_data, scope, user_id)


@router.delete("/payments/{payment_id}")
def delete_salary_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    PayrollService(db, capabilities).delete_salary_payment(payment_id, scope, user_id)
    return {"message": "Salary payment deleted"}


@router.post("/delete", response_model=DeletedResult)
def delete_payroll(
    request: DeletePayrollRequest,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Delete one payroll line or every visible run of a period"""
    return PayrollService(db, capabilities).delete_payroll(
        request.mode, scope, user_id,
        payroll_line_id=request.payroll_line_id,
        period=request.period,
        branch_id=request.branch_id
    )
