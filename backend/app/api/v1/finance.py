"""
Finance API Routes - Accounts, Transfers, Receipts, Outstanding Balances
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.branch_scope import BranchScope
from app.core.database import get_db
from app.core.schema import SchemaCapabilities, get_schema_capabilities
from app.core.security import get_branch_scope, get_current_user_id
from app.schemas import (
    AccountCreate, AccountResponse, AccountTransactionResponse,
    AccountTransferCreate, AccountTransferUpdate, AccountTransferResponse,
    CustomerReceiptCreate, CustomerReceiptUpdate, CustomerReceiptResponse,
    SupplierReceiptCreate, SupplierReceiptUpdate, SupplierReceiptResponse,
    UnpaidRow, PartyBalance, OutstandingPurchase
)
from app.schemas.updates import UpdateSet
from app.services.banking_service import AccountService, AccountTransferService
from app.services.receipt_service import CustomerReceiptService, SupplierReceiptService
from app.services.reconciliation_service import OutstandingBalanceService

router = APIRouter(prefix="/finance", tags=["Finance"])


# ==================== ACCOUNTS ====================

@router.get("/accounts", response_model=List[AccountResponse])
def list_accounts(
    branch_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return AccountService(db, capabilities).list_accounts(scope, branch_id)


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    account_data: AccountCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Create an account; a positive opening balance is recorded as its first transaction"""
    return AccountService(db, capabilities).create(account_data, scope, user_id)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return AccountService(db, capabilities).get_by_id(account_id, scope)


@router.get("/accounts/{account_id}/transactions", response_model=List[AccountTransactionResponse])
def list_account_transactions(
    account_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return AccountService(db, capabilities).list_transactions(account_id, scope)


# ==================== TRANSFERS ====================

@router.get("/transfers", response_model=List[AccountTransferResponse])
def list_transfers(
    branch_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return AccountTransferService(db, capabilities).list_transfers(scope, branch_id, status_filter)


@router.post("/transfers", response_model=AccountTransferResponse, status_code=status.HTTP_201_CREATED)
def create_transfer(
    transfer_data: AccountTransferCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Create a transfer; posted immediately unless post_now is false"""
    return AccountTransferService(db, capabilities).create(transfer_data, scope, user_id)


@router.patch("/transfers/{transfer_id}", response_model=AccountTransferResponse)
def update_transfer(
    transfer_id: int,
    transfer_data: AccountTransferUpdate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return AccountTransferService(db, capabilities).update(
        transfer_id, UpdateSet.from_model(transfer_data), scope, user_id
    )


@router.delete("/transfers/{transfer_id}")
def delete_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    AccountTransferService(db, capabilities).delete(transfer_id, scope, user_id)
    return {"message": "Transfer deleted"}


# ==================== CUSTOMER RECEIPTS ====================

@router.get("/customer-receipts", response_model=List[CustomerReceiptResponse])
def list_customer_receipts(
    branch_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return CustomerReceiptService(db, capabilities).list_receipts(scope, branch_id, customer_id)


@router.post("/customer-receipts", response_model=CustomerReceiptResponse, status_code=status.HTTP_201_CREATED)
def create_customer_receipt(
    receipt_data: CustomerReceiptCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return CustomerReceiptService(db, capabilities).create(receipt_data, scope, user_id)


@router.patch("/customer-receipts/{receipt_id}", response_model=CustomerReceiptResponse)
def update_customer_receipt(
    receipt_id: int,
    receipt_data: CustomerReceiptUpdate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return CustomerReceiptService(db, capabilities).update(
        receipt_id, UpdateSet.from_model(receipt_data), scope, user_id
    )


@router.delete("/customer-receipts/{receipt_id}")
def delete_customer_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    CustomerReceiptService(db, capabilities).delete(receipt_id, scope, user_id)
    return {"message": "Customer receipt deleted"}


# ==================== SUPPLIER RECEIPTS ====================

@router.get("/supplier-receipts", response_model=List[SupplierReceiptResponse])
def list_supplier_receipts(
    branch_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return SupplierReceiptService(db, capabilities).list_receipts(scope, branch_id, supplier_id)


@router.post("/supplier-receipts", response_model=SupplierReceiptResponse, status_code=status.HTTP_201_CREATED)
def create_supplier_receipt(
    receipt_data: SupplierReceiptCreate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return SupplierReceiptService(db, capabilities).create(receipt_data, scope, user_id)


@router.patch("/supplier-receipts/{receipt_id}", response_model=SupplierReceiptResponse)
def update_supplier_receipt(
    receipt_id: int,
    receipt_data: SupplierReceiptUpdate,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return SupplierReceiptService(db, capabilities).update(
        receipt_id, UpdateSet.from_model(receipt_data), scope, user_id
    )


@router.delete("/supplier-receipts/{receipt_id}")
def delete_supplier_receipt(
    receipt_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    user_id: Optional[int] = Depends(get_current_user_id),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    SupplierReceiptService(db, capabilities).delete(receipt_id, scope, user_id)
    return {"message": "Supplier receipt deleted"}


# ==================== OUTSTANDING ====================

@router.get("/customers/unpaid", response_model=List[UnpaidRow])
def list_customer_unpaid(
    month: Optional[str] = None,
    branch_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    """Customers that still owe money; ``month`` (YYYY-MM) limits to that month's ledger"""
    return OutstandingBalanceService(db, capabilities).list_customer_unpaid(scope, month, branch_id)


@router.get("/customers/{customer_id}/balance", response_model=PartyBalance)
def get_customer_balance(
    customer_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return OutstandingBalanceService(db, capabilities).get_customer_balance(customer_id, scope)


@router.get("/suppliers/unpaid", response_model=List[UnpaidRow])
def list_supplier_unpaid(
    month: Optional[str] = None,
    branch_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return OutstandingBalanceService(db, capabilities).list_supplier_unpaid(scope, month, branch_id)


@router.get("/suppliers/outstanding-purchases", response_model=List[OutstandingPurchase])
def list_supplier_outstanding_purchases(
    supplier_id: Optional[int] = None,
    branch_id: Optional[int] = None,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return OutstandingBalanceService(db, capabilities).list_supplier_outstanding_purchases(
        scope, supplier_id, branch_id
    )


@router.get("/suppliers/{supplier_id}/balance", response_model=PartyBalance)
def get_supplier_balance(
    supplier_id: int,
    db: Session = Depends(get_db),
    scope: BranchScope = Depends(get_branch_scope),
    capabilities: SchemaCapabilities = Depends(get_schema_capabilities)
):
    return OutstandingBalanceService(db, capabilities).get_supplier_balance(supplier_id, scope)
