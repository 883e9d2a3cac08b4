"""
Banking Service - Accounts and Account Transfers
"""
from typing import Optional, List
from sqlalchemy.orm import Session
from decimal import Decimal
from datetime import date
import logging

from app.core.branch_scope import BranchScope, require_actor, scope_filter
from app.core.config import settings
from app.core.database import atomic
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.schema import SchemaCapabilities
from app.models import Account, AccountTransaction, AccountTransfer, TransferStatus, TransactionType
from app.schemas import AccountCreate, AccountTransferCreate
from app.schemas.updates import UpdateSet
from app.services.balance_service import to_money
from app.services.posting_service import PostingEngine

logger = logging.getLogger(__name__)

MONEY_FIELDS = ("from_account_id", "to_account_id", "amount")


class AccountService:
    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.posting = PostingEngine(db, capabilities)

    def get_by_id(self, account_id: int, scope: BranchScope) -> Account:
        account = self.db.query(Account).filter(Account.id == account_id).first()
        if not account:
            raise NotFoundError("Account not found")
        scope.assert_access(account.branch_id)
        return account

    def list_accounts(self, scope: BranchScope, branch_id: Optional[int] = None) -> List[Account]:
        branch_ids = scope.visible_branch_ids(branch_id)
        return self.db.query(Account).filter(
            scope_filter(Account.branch_id, branch_ids)
        ).order_by(Account.branch_id, Account.name).limit(settings.LIST_LIMIT).all()

    def list_transactions(self, account_id: int, scope: BranchScope) -> List[AccountTransaction]:
        account = self.get_by_id(account_id, scope)
        return self.db.query(AccountTransaction).filter(
            AccountTransaction.account_id == account.id
        ).order_by(AccountTransaction.id.desc()).limit(settings.LIST_LIMIT).all()

    def create(self, account_data: AccountCreate, scope: BranchScope, user_id: Optional[int]) -> Account:
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(account_data.branch_id)
        opening_balance = to_money(account_data.opening_balance)

        with atomic(self.db):
            account = Account(
                name=account_data.name,
                institution=account_data.institution,
                currency_code=account_data.currency_code,
                balance=Decimal("0.00"),
                branch_id=branch_id,
                created_by=user_id
            )
            self.db.add(account)
            self.db.flush()

            if opening_balance > 0:
                self.posting.move_account(
                    account.id, branch_id, opening_balance, "accounts", account.id,
                    note="Opening balance", txn_type=TransactionType.OPENING_BALANCE
                )

        self.db.refresh(account)
        logger.info("Created account %s in branch %s with opening balance %s",
                    account.id, branch_id, opening_balance)
        return account


class AccountTransferService:
    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.posting = PostingEngine(db, capabilities)

    def get_by_id(self, transfer_id: int, scope: BranchScope) -> AccountTransfer:
        transfer = self.db.query(AccountTransfer).filter(AccountTransfer.id == transfer_id).first()
        if not transfer:
            raise NotFoundError("Transfer not found")
        scope.assert_access(transfer.branch_id)
        return transfer

    def list_transfers(self, scope: BranchScope, branch_id: Optional[int] = None,
                       status: Optional[str] = None) -> List[AccountTransfer]:
        branch_ids = scope.visible_branch_ids(branch_id)
        query = self.db.query(AccountTransfer).filter(scope_filter(AccountTransfer.branch_id, branch_ids))
        if status:
            query = query.filter(AccountTransfer.status == status)
        return query.order_by(
            AccountTransfer.transfer_date.desc(), AccountTransfer.id.desc()
        ).limit(settings.LIST_LIMIT).all()

    def create(self, transfer_data: AccountTransferCreate, scope: BranchScope,
               user_id: Optional[int]) -> AccountTransfer:
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(transfer_data.branch_id)
        if transfer_data.from_account_id == transfer_data.to_account_id:
            raise BadRequestError("Source and destination accounts must differ")
        amount = to_money(transfer_data.amount)
        if amount <= 0:
            raise BadRequestError("Amount must be greater than zero")

        status = TransferStatus.POSTED if transfer_data.post_now else TransferStatus.DRAFT

        with atomic(self.db):
            self.posting.balances.lock_accounts(
                [transfer_data.from_account_id, transfer_data.to_account_id], branch_id
            )
            transfer = AccountTransfer(
                from_account_id=transfer_data.from_account_id,
                to_account_id=transfer_data.to_account_id,
                amount=amount,
                transfer_date=transfer_data.transfer_date or date.today(),
                status=status.value,
                reference_no=transfer_data.reference_no,
                note=transfer_data.note,
                branch_id=branch_id,
                user_id=user_id
            )
            self.db.add(transfer)
            self.db.flush()

            if transfer.is_posted:
                self.posting.post_transfer(transfer)

        self.db.refresh(transfer)
        logger.info("Created %s transfer %s: %s -> %s amount %s", transfer.status, transfer.id,
                    transfer.from_account_id, transfer.to_account_id, transfer.amount)
        return transfer

    def update(self, transfer_id: int, updates: UpdateSet, scope: BranchScope,
               user_id: Optional[int]) -> AccountTransfer:
        """
        Partial update of a transfer.

        A posted pair is reversed with its old values and reapplied with the
        new ones whenever the accounts or the amount change. Moving to ``void``
        or ``draft`` only reverses; moving to ``posted`` only applies.
        """
        require_actor(user_id)
        transfer = self.get_by_id(transfer_id, scope)
        if transfer.status == TransferStatus.VOID.value:
            raise BadRequestError("A void transfer cannot be changed")

        for name in MONEY_FIELDS + ("transfer_date", "status"):
            if updates.is_set(name) and updates.get(name).value is None:
                raise BadRequestError(f"{name} cannot be cleared")

        old_from = transfer.from_account_id
        old_to = transfer.to_account_id
        old_amount = to_money(transfer.amount)
        new_from = updates.value_or("from_account_id", old_from)
        new_to = updates.value_or("to_account_id", old_to)
        new_amount = to_money(updates.value_or("amount", old_amount))
        status_value = updates.value_or("status", transfer.status)
        new_status = TransferStatus(getattr(status_value, "value", status_value))

        if new_from == new_to:
            raise BadRequestError("Source and destination accounts must differ")
        if new_amount <= 0:
            raise BadRequestError("Amount must be greater than zero")

        was_posted = transfer.is_posted
        will_post = new_status == TransferStatus.POSTED
        money_changed = (new_from, new_to, new_amount) != (old_from, old_to, old_amount)

        with atomic(self.db):
            self.posting.balances.lock_accounts([old_from, old_to, new_from, new_to], transfer.branch_id)

            if was_posted and (not will_post or money_changed):
                self.posting.reverse_transfer(transfer, old_from, old_to, old_amount)

            transfer.from_account_id = new_from
            transfer.to_account_id = new_to
            transfer.amount = new_amount
            transfer.status = new_status.value
            updates.apply_to(transfer, ("transfer_date", "reference_no", "note"))
            self.db.flush()

            if will_post and (not was_posted or money_changed):
                self.posting.post_transfer(transfer)

        self.db.refresh(transfer)
        logger.info("Updated transfer %s (status %s, amount %s -> %s)",
                    transfer.id, transfer.status, old_amount, new_amount)
        return transfer

    def delete(self, transfer_id: int, scope: BranchScope, user_id: Optional[int]) -> bool:
        require_actor(user_id)
        transfer = self.get_by_id(transfer_id, scope)

        with atomic(self.db):
            if transfer.is_posted:
                self.posting.reverse_transfer(transfer)
            self.db.delete(transfer)

        logger.info("Deleted transfer %s", transfer_id)
        return True
