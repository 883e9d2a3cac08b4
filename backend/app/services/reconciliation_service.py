"""
Reconciliation Service - what customers owe and what is owed to suppliers

Two balance sources exist for every party: the cached balance column and
figures derived from documents and ledgers. Reports prefer the cached column
when it is positive, fall back to the derived figure otherwise, and never
report a negative amount owed.
"""
from dataclasses import dataclass
from typing import Optional, List, Dict
from sqlalchemy.orm import Session
from sqlalchemy import func, select
from decimal import Decimal
import logging

from app.core.branch_scope import BranchScope, scope_filter
from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.schema import SchemaCapabilities
from app.models import (
    Customer, Supplier, Sale, Purchase, SupplierPayment,
    CustomerReceipt, SupplierReceipt, CustomerLedgerEntry, SupplierLedgerEntry
)
from app.services.balance_service import BalanceAdjuster, to_money, ZERO
from app.services.period_charger import Period

logger = logging.getLogger(__name__)

SOURCE_COLUMN = "balance_column"
SOURCE_DERIVED = "derived"
SOURCE_LEDGER = "ledger"


@dataclass(frozen=True)
class PartySource:
    model: type
    table: str
    name_attr: str
    party_attr: str
    receipt_model: type
    ledger_model: type


CUSTOMERS = PartySource(Customer, "customers", "full_name", "customer_id", CustomerReceipt, CustomerLedgerEntry)
SUPPLIERS = PartySource(Supplier, "suppliers", "name", "supplier_id", SupplierReceipt, SupplierLedgerEntry)


def reconcile(column_balance: Decimal, derived_balance: Decimal):
    """Pick the reported balance and where it came from; never below zero."""
    if column_balance > 0:
        return column_balance, SOURCE_COLUMN
    return max(derived_balance, ZERO), SOURCE_DERIVED


class OutstandingBalanceService:
    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.balances = BalanceAdjuster(db, capabilities)

    # ==================== UNPAID LISTS ====================

    def list_customer_unpaid(self, scope: BranchScope, month: Optional[str] = None,
                             branch_id: Optional[int] = None) -> List[Dict]:
        return self._list_unpaid(CUSTOMERS, scope, month, branch_id)

    def list_supplier_unpaid(self, scope: BranchScope, month: Optional[str] = None,
                             branch_id: Optional[int] = None) -> List[Dict]:
        return self._list_unpaid(SUPPLIERS, scope, month, branch_id)

    def _list_unpaid(self, source: PartySource, scope: BranchScope, month: Optional[str],
                     branch_id: Optional[int]) -> List[Dict]:
        branch_ids = scope.visible_branch_ids(branch_id)
        model = source.model
        parties = self.db.query(model.id, model.branch_id, getattr(model, source.name_attr)).filter(
            scope_filter(model.branch_id, branch_ids)
        ).order_by(getattr(model, source.name_attr), model.id).all()
        if not parties:
            return []

        if month:
            figures = self._ledger_figures(source, branch_ids, Period.parse(month))
        else:
            figures = self._derived_figures(source, branch_ids)
            columns = self._column_balances(source, branch_ids)

        rows = []
        for party_id, party_branch, name in parties:
            total, paid = figures.get(party_id, (ZERO, ZERO))
            if month:
                balance, origin = max(total - paid, ZERO), SOURCE_LEDGER
            else:
                balance, origin = reconcile(columns.get(party_id, ZERO), total - paid)
            if balance <= 0:
                continue
            rows.append({
                "branch_id": party_branch,
                "party_id": party_id,
                "name": name,
                "total": total,
                "paid": paid,
                "balance": balance,
                "source": origin,
            })
            if len(rows) >= settings.LIST_LIMIT:
                break
        return rows

    def _column_balances(self, source: PartySource, branch_ids) -> Dict[int, Decimal]:
        party, column_name = self.balances.party_table(source.table)
        result = self.db.execute(
            select(party.c.id, party.c[column_name]).where(scope_filter(party.c.branch_id, branch_ids))
        ).all()
        return {party_id: to_money(value) for party_id, value in result}

    def _derived_figures(self, source: PartySource, branch_ids, party_id: Optional[int] = None):
        """``{party_id: (total owed, total settled)}`` from documents and receipts."""
        if source is CUSTOMERS:
            owed = self.db.query(
                Sale.customer_id, func.sum(Sale.total), func.sum(Sale.paid_amount)
            ).filter(
                Sale.customer_id.isnot(None),
                Sale.status != "void",
                scope_filter(Sale.branch_id, branch_ids)
            )
            if party_id:
                owed = owed.filter(Sale.customer_id == party_id)
            owed = owed.group_by(Sale.customer_id).all()
        else:
            paid_per_purchase = self.db.query(
                SupplierPayment.purchase_id.label("purchase_id"),
                func.sum(SupplierPayment.amount_paid).label("paid")
            ).group_by(SupplierPayment.purchase_id).subquery()
            owed = self.db.query(
                Purchase.supplier_id, func.sum(Purchase.total),
                func.sum(func.coalesce(paid_per_purchase.c.paid, 0))
            ).outerjoin(
                paid_per_purchase, paid_per_purchase.c.purchase_id == Purchase.id
            ).filter(
                Purchase.supplier_id.isnot(None),
                Purchase.status != "void",
                scope_filter(Purchase.branch_id, branch_ids)
            )
            if party_id:
                owed = owed.filter(Purchase.supplier_id == party_id)
            owed = owed.group_by(Purchase.supplier_id).all()

        receipt = source.receipt_model
        party_column = getattr(receipt, source.party_attr)
        receipts = self.db.query(party_column, func.sum(receipt.amount)).filter(
            party_column.isnot(None),
            scope_filter(receipt.branch_id, branch_ids)
        )
        if party_id:
            receipts = receipts.filter(party_column == party_id)
        receipts = dict(receipts.group_by(party_column).all())

        figures = {}
        for owner, total, paid in owed:
            figures[owner] = (to_money(total), to_money(paid))
        for owner, amount in receipts.items():
            total, paid = figures.get(owner, (ZERO, ZERO))
            figures[owner] = (total, paid + to_money(amount))
        return figures

    def _ledger_figures(self, source: PartySource, branch_ids, window: Optional[Period] = None,
                        party_id: Optional[int] = None):
        """``{party_id: (Σdebit, Σcredit)}`` from the party ledger, optionally within a month."""
        ledger = source.ledger_model
        party_column = getattr(ledger, source.party_attr)
        query = self.db.query(
            party_column, func.sum(ledger.debit), func.sum(ledger.credit)
        ).filter(scope_filter(ledger.branch_id, branch_ids))
        if window is not None:
            query = query.filter(ledger.entry_date >= window.start, ledger.entry_date < window.end)
        if party_id:
            query = query.filter(party_column == party_id)
        return {
            owner: (to_money(debit), to_money(credit))
            for owner, debit, credit in query.group_by(party_column).all()
        }

    # ==================== SINGLE PARTY ====================

    def get_customer_balance(self, customer_id: int, scope: BranchScope) -> Dict:
        return self._party_balance(CUSTOMERS, customer_id, scope)

    def get_supplier_balance(self, supplier_id: int, scope: BranchScope) -> Dict:
        return self._party_balance(SUPPLIERS, supplier_id, scope)

    def _party_balance(self, source: PartySource, party_id: int, scope: BranchScope) -> Dict:
        party = self.db.query(source.model).filter(source.model.id == party_id).first()
        if not party:
            raise NotFoundError(f"{source.model.__name__} not found")
        scope.assert_access(party.branch_id)

        branch_ids = [party.branch_id]
        column_balance = self.balances.party_balance(source.table, party_id)
        total, paid = self._derived_figures(source, branch_ids, party_id).get(party_id, (ZERO, ZERO))
        debit, credit = self._ledger_figures(source, branch_ids, party_id=party_id).get(party_id, (ZERO, ZERO))
        balance, origin = reconcile(column_balance, total - paid)

        return {
            "party_id": party_id,
            "branch_id": party.branch_id,
            "column_balance": column_balance,
            "derived_balance": total - paid,
            "ledger_balance": debit - credit,
            "balance": balance,
            "source": origin,
        }

    # ==================== PURCHASES ====================

    def list_supplier_outstanding_purchases(self, scope: BranchScope, supplier_id: Optional[int] = None,
                                            branch_id: Optional[int] = None) -> List[Dict]:
        """Purchases whose total is not covered by their supplier payments."""
        branch_ids = scope.visible_branch_ids(branch_id)
        paid = func.coalesce(func.sum(SupplierPayment.amount_paid), 0)
        query = self.db.query(Purchase, paid).outerjoin(
            SupplierPayment, SupplierPayment.purchase_id == Purchase.id
        ).filter(
            scope_filter(Purchase.branch_id, branch_ids),
            Purchase.status != "void"
        )
        if supplier_id:
            query = query.filter(Purchase.supplier_id == supplier_id)

        rows = []
        for purchase, paid_amount in query.group_by(Purchase.id).order_by(
            Purchase.purchase_date, Purchase.id
        ).all():
            total = to_money(purchase.total)
            paid_amount = to_money(paid_amount)
            outstanding = max(total - paid_amount, ZERO)
            if outstanding <= 0:
                continue
            rows.append({
                "purchase_id": purchase.id,
                "supplier_id": purchase.supplier_id,
                "branch_id": purchase.branch_id,
                "purchase_date": purchase.purchase_date,
                "total": total,
                "paid": paid_amount,
                "outstanding": outstanding,
            })
            if len(rows) >= settings.LIST_LIMIT:
                break
        return rows
