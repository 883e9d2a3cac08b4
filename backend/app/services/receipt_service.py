"""
Receipt Service - Customer and Supplier Receipts

A customer receipt brings money into an account and settles what the
customer owes. A supplier receipt pays money out of an account and settles
what is owed to the supplier.
"""
from typing import Optional
from sqlalchemy.orm import Session
from datetime import date
import logging

from app.core.branch_scope import BranchScope, require_actor, scope_filter
from app.core.config import settings
from app.core.database import atomic
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.schema import SchemaCapabilities
from app.models import Customer, Supplier, Sale, Purchase, CustomerReceipt, SupplierReceipt
from app.schemas.updates import UpdateSet
from app.services.balance_service import to_money
from app.services.posting_service import PostingEngine, PartyKind, CUSTOMER, SUPPLIER

logger = logging.getLogger(__name__)

POSTED_FIELDS = ("account_id", "amount", "receipt_date")
PLAIN_FIELDS = ("payment_method", "reference_no", "note")


class ReceiptService:
    kind: PartyKind
    model = None
    party_model = None
    document_model = None
    document_attr = None

    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.posting = PostingEngine(db, capabilities)

    @property
    def label(self) -> str:
        return self.kind.name.capitalize()

    def get_by_id(self, receipt_id: int, scope: BranchScope):
        receipt = self.db.query(self.model).filter(self.model.id == receipt_id).first()
        if not receipt:
            raise NotFoundError(f"{self.label} receipt not found")
        scope.assert_access(receipt.branch_id)
        return receipt

    def list_receipts(self, scope: BranchScope, branch_id: Optional[int] = None,
                      party_id: Optional[int] = None):
        branch_ids = scope.visible_branch_ids(branch_id)
        query = self.db.query(self.model).filter(scope_filter(self.model.branch_id, branch_ids))
        if party_id:
            query = query.filter(getattr(self.model, self.kind.party_attr) == party_id)
        return query.order_by(
            self.model.receipt_date.desc(), self.model.id.desc()
        ).limit(settings.LIST_LIMIT).all()

    def _check_party(self, party_id: Optional[int], branch_id: int) -> None:
        if not party_id:
            return
        party = self.db.query(self.party_model).filter(
            self.party_model.id == party_id,
            self.party_model.branch_id == branch_id
        ).first()
        if not party:
            raise NotFoundError(f"{self.label} not found")

    def _check_document(self, document_id: Optional[int], party_id: Optional[int], branch_id: int) -> None:
        if not document_id:
            return
        document = self.db.query(self.document_model).filter(
            self.document_model.id == document_id,
            self.document_model.branch_id == branch_id
        ).first()
        if not document:
            raise NotFoundError(f"{self.document_model.__name__} not found")
        owner = getattr(document, self.kind.party_attr)
        if party_id and owner and owner != party_id:
            raise BadRequestError(f"{self.document_model.__name__} belongs to another {self.kind.name}")

    def create(self, data, scope: BranchScope, user_id: Optional[int]):
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(data.branch_id)
        party_id = getattr(data, self.kind.party_attr)
        document_id = getattr(data, self.document_attr)
        amount = to_money(data.amount)
        if amount <= 0:
            raise BadRequestError("Amount must be greater than zero")

        self._check_party(party_id, branch_id)
        self._check_document(document_id, party_id, branch_id)

        with atomic(self.db):
            self.posting.balances.lock_accounts([data.account_id], branch_id)
            receipt = self.model(
                account_id=data.account_id,
                amount=amount,
                receipt_date=data.receipt_date or date.today(),
                payment_method=data.payment_method,
                reference_no=data.reference_no,
                note=data.note,
                branch_id=branch_id,
                user_id=user_id
            )
            setattr(receipt, self.kind.party_attr, party_id)
            setattr(receipt, self.document_attr, document_id)
            self.db.add(receipt)
            self.db.flush()

            self.posting.post_receipt(self.kind, receipt)

        self.db.refresh(receipt)
        logger.info("Created %s receipt %s: account %s amount %s party %s",
                    self.kind.name, receipt.id, receipt.account_id, receipt.amount, party_id)
        return receipt

    def update(self, receipt_id: int, updates: UpdateSet, scope: BranchScope, user_id: Optional[int]):
        """
        Edit a receipt. When the account, amount, party or date changes the
        old posting is reversed and the new one applied in one transaction;
        other edits leave balances and ledgers alone.
        """
        require_actor(user_id)
        receipt = self.get_by_id(receipt_id, scope)

        for name in POSTED_FIELDS:
            if updates.is_set(name) and updates.get(name).value is None:
                raise BadRequestError(f"{name} cannot be cleared")

        old_account = receipt.account_id
        old_party = getattr(receipt, self.kind.party_attr)
        old_amount = to_money(receipt.amount)
        old_date = receipt.receipt_date
        new_account = updates.value_or("account_id", old_account)
        new_party = updates.value_or(self.kind.party_attr, old_party)
        new_document = updates.value_or(self.document_attr, getattr(receipt, self.document_attr))
        new_amount = to_money(updates.value_or("amount", old_amount))
        new_date = updates.value_or("receipt_date", old_date)
        if new_amount <= 0:
            raise BadRequestError("Amount must be greater than zero")

        self._check_party(new_party, receipt.branch_id)
        self._check_document(new_document, new_party, receipt.branch_id)

        money_changed = (
            (new_account, new_party or None, new_amount, new_date)
            != (old_account, old_party or None, old_amount, old_date)
        )

        with atomic(self.db):
            if money_changed:
                self.posting.balances.lock_accounts([old_account, new_account], receipt.branch_id)
                self.posting.reverse_receipt(self.kind, receipt)

            receipt.account_id = new_account
            receipt.amount = new_amount
            receipt.receipt_date = new_date
            setattr(receipt, self.kind.party_attr, new_party)
            setattr(receipt, self.document_attr, new_document)
            updates.apply_to(receipt, PLAIN_FIELDS)
            self.db.flush()

            if money_changed:
                self.posting.post_receipt(self.kind, receipt)

        self.db.refresh(receipt)
        logger.info("Updated %s receipt %s: amount %s -> %s%s", self.kind.name, receipt.id,
                    old_amount, new_amount, "" if money_changed else " (not reposted)")
        return receipt

    def delete(self, receipt_id: int, scope: BranchScope, user_id: Optional[int]) -> bool:
        require_actor(user_id)
        receipt = self.get_by_id(receipt_id, scope)

        with atomic(self.db):
            self.posting.reverse_receipt(self.kind, receipt)
            self.db.delete(receipt)

        logger.info("Deleted %s receipt %s", self.kind.name, receipt_id)
        return True


class CustomerReceiptService(ReceiptService):
    kind = CUSTOMER
    model = CustomerReceipt
    party_model = Customer
    document_model = Sale
    document_attr = "sale_id"


class SupplierReceiptService(ReceiptService):
    kind = SUPPLIER
    model = SupplierReceipt
    party_model = Supplier
    document_model = Purchase
    document_attr = "purchase_id"
