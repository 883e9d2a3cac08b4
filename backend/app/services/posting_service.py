"""
Posting Service - paired account and ledger effects of business events

Every helper here only flushes. Callers wrap them in ``atomic()`` so a posting
and its ledger rows commit or roll back together.
"""
from dataclasses import dataclass
from typing import Optional
from decimal import Decimal
from datetime import date
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import BadRequestError, InternalError
from app.core.schema import SchemaCapabilities
from app.models import (
    AccountTransaction, AccountTransfer, CustomerLedgerEntry, SupplierLedgerEntry,
    TransactionType, LedgerEntryType
)
from app.services.balance_service import BalanceAdjuster, to_money, ZERO

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartyKind:
    name: str
    table: str
    party_attr: str
    receipt_table: str
    ledger_model: type
    # +1: receipt brings cash into the account, -1: receipt pays cash out
    cash_direction: int


CUSTOMER = PartyKind(
    name="customer",
    table="customers",
    party_attr="customer_id",
    receipt_table="customer_receipts",
    ledger_model=CustomerLedgerEntry,
    cash_direction=1,
)

SUPPLIER = PartyKind(
    name="supplier",
    table="suppliers",
    party_attr="supplier_id",
    receipt_table="supplier_receipts",
    ledger_model=SupplierLedgerEntry,
    cash_direction=-1,
)


class PostingEngine:
    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.balances = BalanceAdjuster(db, capabilities)

    # ==================== ACCOUNT MOVEMENTS ====================

    def move_account(self, account_id: int, branch_id: int, amount, ref_table: str,
                     ref_id: Optional[int], txn_date: Optional[date] = None,
                     note: Optional[str] = None, reversal: bool = False,
                     txn_type: Optional[TransactionType] = None) -> AccountTransaction:
        """
        Apply a signed amount to an account and append its transaction row.

        Positive amounts are money in (debit column), negative amounts money out.
        """
        amount = to_money(amount)
        if amount == 0:
            raise BadRequestError("Amount must be non-zero")

        self.balances.adjust_account(account_id, branch_id, amount)

        if txn_type is None:
            if amount > 0:
                txn_type = TransactionType.REVERSAL_IN if reversal else TransactionType.IN
            else:
                txn_type = TransactionType.REVERSAL_OUT if reversal else TransactionType.OUT

        txn = AccountTransaction(
            txn_type=txn_type.value,
            ref_table=ref_table,
            ref_id=ref_id,
            debit=amount if amount > 0 else ZERO,
            credit=-amount if amount < 0 else ZERO,
            txn_date=txn_date or date.today(),
            note=note,
            account_id=account_id,
            branch_id=branch_id,
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    def post_outflow(self, ref_table: str, ref_id: int, account_id: int, branch_id: int,
                     amount, pay_date: Optional[date] = None, note: Optional[str] = None) -> AccountTransaction:
        """Money paid out of an account (expense and salary payments)."""
        self.balances.lock_accounts([account_id], branch_id)
        return self.move_account(account_id, branch_id, -to_money(amount), ref_table, ref_id, pay_date, note)

    def reverse_outflow(self, ref_table: str, ref_id: int, account_id: int, branch_id: int,
                        amount, note: Optional[str] = None) -> AccountTransaction:
        self.balances.lock_accounts([account_id], branch_id)
        return self.move_account(
            account_id, branch_id, to_money(amount), ref_table, ref_id,
            note=note or f"Reversal of {ref_table} #{ref_id}", reversal=True
        )

    # ==================== TRANSFERS ====================

    def post_transfer(self, transfer: AccountTransfer) -> None:
        if transfer.from_account_id == transfer.to_account_id:
            raise BadRequestError("Source and destination accounts must differ")

        amount = to_money(transfer.amount)
        self.balances.lock_accounts([transfer.from_account_id, transfer.to_account_id], transfer.branch_id)
        self.move_account(
            transfer.from_account_id, transfer.branch_id, -amount,
            "account_transfers", transfer.id, transfer.transfer_date, transfer.note
        )
        self.move_account(
            transfer.to_account_id, transfer.branch_id, amount,
            "account_transfers", transfer.id, transfer.transfer_date, transfer.note
        )

    def reverse_transfer(self, transfer: AccountTransfer, from_account_id: Optional[int] = None,
                         to_account_id: Optional[int] = None, amount=None) -> None:
        """
        Undo a posted pair. The explicit arguments carry the values the pair
        was posted with when the transfer row has already been edited.
        """
        from_account_id = from_account_id or transfer.from_account_id
        to_account_id = to_account_id or transfer.to_account_id
        amount = to_money(transfer.amount if amount is None else amount)
        note = f"Reversal of transfer #{transfer.id}"

        self.balances.lock_accounts([from_account_id, to_account_id], transfer.branch_id)
        self.move_account(
            from_account_id, transfer.branch_id, amount,
            "account_transfers", transfer.id, note=note, reversal=True
        )
        self.move_account(
            to_account_id, transfer.branch_id, -amount,
            "account_transfers", transfer.id, note=note, reversal=True
        )

    # ==================== RECEIPTS ====================

    def post_receipt(self, kind: PartyKind, receipt) -> None:
        amount = to_money(receipt.amount)
        if amount <= 0:
            raise BadRequestError("Amount must be greater than zero")

        self.balances.lock_accounts([receipt.account_id], receipt.branch_id)
        self.move_account(
            receipt.account_id, receipt.branch_id, amount * kind.cash_direction,
            kind.receipt_table, receipt.id, receipt.receipt_date, receipt.note
        )

        receipt.party_applied = None
        party_id = getattr(receipt, kind.party_attr)
        if party_id:
            applied = self.balances.adjust_party_balance(kind.table, party_id, receipt.branch_id, -amount)
            receipt.party_applied = -applied
            self._append_ledger(
                kind, party_id, receipt, LedgerEntryType.PAYMENT,
                debit=ZERO, credit=amount, entry_date=receipt.receipt_date, note=receipt.note
            )

        self._check_balanced(kind, receipt, posted=True)

    def reverse_receipt(self, kind: PartyKind, receipt) -> None:
        """
        Undo a posted receipt. Call it before the receipt row is edited: the
        account, party, amount and date it reads are the ones that were posted.

        The party balance gets back only what the posting took off it, while
        the ledger reversal mirrors the full payment row and carries its date.
        """
        amount = to_money(receipt.amount)
        party_id = getattr(receipt, kind.party_attr)
        note = f"Reversal of {kind.name} receipt #{receipt.id}"

        self.balances.lock_accounts([receipt.account_id], receipt.branch_id)
        self.move_account(
            receipt.account_id, receipt.branch_id, -amount * kind.cash_direction,
            kind.receipt_table, receipt.id, receipt.receipt_date, note, reversal=True
        )

        if party_id:
            restored = amount if receipt.party_applied is None else to_money(receipt.party_applied)
            self.balances.adjust_party_balance(kind.table, party_id, receipt.branch_id, restored)
            self._append_ledger(
                kind, party_id, receipt, LedgerEntryType.REVERSAL,
                debit=amount, credit=ZERO, entry_date=receipt.receipt_date, note=note
            )
        receipt.party_applied = None

        self._check_balanced(kind, receipt, posted=False)

    def _append_ledger(self, kind: PartyKind, party_id: int, receipt, entry_type: LedgerEntryType,
                       debit: Decimal, credit: Decimal, entry_date: Optional[date],
                       note: Optional[str]):
        entry = kind.ledger_model(
            entry_type=entry_type.value,
            ref_table=kind.receipt_table,
            ref_id=receipt.id,
            debit=debit,
            credit=credit,
            entry_date=entry_date or date.today(),
            note=note,
            account_id=receipt.account_id,
            branch_id=receipt.branch_id,
        )
        setattr(entry, kind.party_attr, party_id)
        self.db.add(entry)
        self.db.flush()
        return entry

    def _check_balanced(self, kind: PartyKind, receipt, posted: bool) -> None:
        """
        Re-read every row stored for one receipt. While it is posted the
        account rows net to its signed amount and the ledger rows to its
        amount (nothing for walk-ins); once reversed both net to zero.
        """
        ledger = kind.ledger_model
        account_net = to_money(self.db.query(
            func.coalesce(func.sum(AccountTransaction.debit - AccountTransaction.credit), 0)
        ).filter(
            AccountTransaction.ref_table == kind.receipt_table,
            AccountTransaction.ref_id == receipt.id
        ).scalar())
        ledger_net = to_money(self.db.query(
            func.coalesce(func.sum(ledger.credit - ledger.debit), 0)
        ).filter(
            ledger.ref_table == kind.receipt_table,
            ledger.ref_id == receipt.id
        ).scalar())

        amount = to_money(receipt.amount) if posted else ZERO
        expected_ledger = amount if getattr(receipt, kind.party_attr) else ZERO
        label = f"{kind.name.capitalize()} receipt #{receipt.id}"
        if account_net != amount * kind.cash_direction:
            raise InternalError(f"{label} nets {account_net} on accounts, expected {amount * kind.cash_direction}")
        if ledger_net != expected_ledger:
            raise InternalError(f"{label} nets {ledger_net} on the party ledger, expected {expected_ledger}")
