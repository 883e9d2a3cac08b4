# Services Package
from app.services.balance_service import BalanceAdjuster
from app.services.posting_service import PostingEngine
from app.services.period_charger import PeriodCharger, Period, ChargeOper
from app.services.banking_service import AccountService, AccountTransferService
from app.services.receipt_service import CustomerReceiptService, SupplierReceiptService
from app.services.expense_service import (
    ExpenseService, ExpenseChargeService, ExpenseBudgetService, ExpensePaymentService
)
from app.services.hr_service import PayrollService
from app.services.reconciliation_service import OutstandingBalanceService

__all__ = [
    'BalanceAdjuster',
    'PostingEngine',
    'PeriodCharger',
    'Period',
    'ChargeOper',
    'AccountService',
    'AccountTransferService',
    'CustomerReceiptService',
    'SupplierReceiptService',
    'ExpenseService',
    'ExpenseChargeService',
    'ExpenseBudgetService',
    'ExpensePaymentService',
    'PayrollService',
    'OutstandingBalanceService',
]
