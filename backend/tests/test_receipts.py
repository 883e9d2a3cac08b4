from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import BadRequestError, ForbiddenError, InternalError, NotFoundError
from app.models import (
    AccountTransaction, Customer, CustomerLedgerEntry, CustomerReceipt, SupplierLedgerEntry, Sale
)
from app.schemas import CustomerReceiptCreate, SupplierReceiptCreate
from app.schemas.updates import UpdateSet
from app.services.balance_service import BalanceAdjuster
from app.services.receipt_service import CustomerReceiptService, SupplierReceiptService
from app.services.reconciliation_service import OutstandingBalanceService


def customer_receipt(seed, amount="100.00", **overrides):
    data = dict(
        customer_id=seed.customer_id,
        account_id=seed.cash_id,
        amount=Decimal(amount),
        receipt_date=date(2026, 3, 10),
        payment_method="cash",
    )
    data.update(overrides)
    return CustomerReceiptCreate(**data)


def test_customer_receipt_posts_account_party_and_ledger(db, seed, scope, capabilities,
                                                         balance_of, party_balance):
    receipt = CustomerReceiptService(db, capabilities).create(customer_receipt(seed), scope, seed.user_id)

    assert balance_of(seed.cash_id) == Decimal("1100.00")
    assert party_balance("customers", seed.customer_id) == Decimal("200.00")

    entries = db.query(CustomerLedgerEntry).filter(CustomerLedgerEntry.ref_id == receipt.id).all()
    assert len(entries) == 1
    assert entries[0].entry_type == "payment"
    assert entries[0].credit == Decimal("100.00")
    assert entries[0].debit == Decimal("0.00")

    txns = db.query(AccountTransaction).filter(AccountTransaction.ref_table == "customer_receipts").all()
    assert [(t.txn_type, t.debit) for t in txns] == [("in", Decimal("100.00"))]


def test_overpayment_clamps_customer_balance(db, seed, scope, capabilities, party_balance):
    CustomerReceiptService(db, capabilities).create(customer_receipt(seed, "450.00"), scope, seed.user_id)
    assert party_balance("customers", seed.customer_id) == Decimal("0.00")


def test_walk_in_receipt_only_moves_the_account(db, seed, scope, capabilities, balance_of, party_balance):
    CustomerReceiptService(db, capabilities).create(
        customer_receipt(seed, customer_id=None), scope, seed.user_id
    )

    assert balance_of(seed.cash_id) == Decimal("1100.00")
    assert party_balance("customers", seed.customer_id) == Decimal("300.00")
    assert db.query(CustomerLedgerEntry).count() == 0


def test_supplier_receipt_pays_out(db, seed, scope, capabilities, balance_of, party_balance):
    SupplierReceiptService(db, capabilities).create(
        SupplierReceiptCreate(
            supplier_id=seed.supplier_id,
            account_id=seed.bank_id,
            amount=Decimal("250.00"),
            receipt_date=date(2026, 3, 11),
        ),
        scope, seed.user_id
    )

    assert balance_of(seed.bank_id) == Decimal("250.00")
    assert party_balance("suppliers", seed.supplier_id) == Decimal("550.00")
    entry = db.query(SupplierLedgerEntry).one()
    assert entry.credit == Decimal("250.00")


def test_update_reverses_old_posting_and_applies_new(db, seed, scope, capabilities,
                                                    balance_of, party_balance):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed, "100.00"), scope, seed.user_id)

    service.update(receipt.id, UpdateSet.of(amount=Decimal("40.00"), account_id=seed.bank_id),
                   scope, seed.user_id)

    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert balance_of(seed.bank_id) == Decimal("540.00")
    assert party_balance("customers", seed.customer_id) == Decimal("260.00")

    entry_types = [e.entry_type for e in db.query(CustomerLedgerEntry).order_by(CustomerLedgerEntry.id)]
    assert entry_types == ["payment", "reversal", "payment"]


def test_delete_reverses_and_removes(db, seed, scope, capabilities, balance_of, party_balance):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed), scope, seed.user_id)

    service.delete(receipt.id, scope, seed.user_id)

    assert db.query(CustomerReceipt).count() == 0
    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert party_balance("customers", seed.customer_id) == Decimal("300.00")
    ledger = db.query(CustomerLedgerEntry).order_by(CustomerLedgerEntry.id).all()
    assert [(e.debit, e.credit) for e in ledger] == [
        (Decimal("0.00"), Decimal("100.00")),
        (Decimal("100.00"), Decimal("0.00")),
    ]


def test_party_failure_rolls_back_account_posting(db, seed, scope, capabilities, balance_of, monkeypatch):
    def broken(self, *args, **kwargs):
        raise RuntimeError("lock timeout")

    monkeypatch.setattr(BalanceAdjuster, "adjust_party_balance", broken)

    with pytest.raises(RuntimeError):
        CustomerReceiptService(db, capabilities).create(customer_receipt(seed), scope, seed.user_id)

    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert db.query(CustomerReceipt).count() == 0
    assert db.query(AccountTransaction).count() == 0


def test_unknown_customer_rejected(db, seed, scope, capabilities):
    with pytest.raises(NotFoundError):
        CustomerReceiptService(db, capabilities).create(
            customer_receipt(seed, customer_id=999), scope, seed.user_id
        )


def test_sale_of_another_customer_rejected(db, seed, scope, capabilities):
    other = Customer(full_name="Other Shop", branch_id=1, remaining_balance=Decimal("0"))
    db.add(other)
    db.flush()
    sale = Sale(customer_id=other.id, total=Decimal("90.00"), paid_amount=Decimal("0"), branch_id=1)
    db.add(sale)
    db.commit()

    with pytest.raises(BadRequestError):
        CustomerReceiptService(db, capabilities).create(
            customer_receipt(seed, sale_id=sale.id), scope, seed.user_id
        )


def test_receipts_of_other_branch_are_forbidden(db, seed, scope, other_scope, capabilities):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed), scope, seed.user_id)

    with pytest.raises(ForbiddenError):
        service.get_by_id(receipt.id, other_scope)
    assert service.list_receipts(other_scope) == []
    assert len(service.list_receipts(scope, party_id=seed.customer_id)) == 1


def test_overpayment_records_what_it_settled(db, seed, scope, capabilities):
    receipt = CustomerReceiptService(db, capabilities).create(
        customer_receipt(seed, "500.00"), scope, seed.user_id
    )
    assert receipt.party_applied == Decimal("300.00")

    walk_in = CustomerReceiptService(db, capabilities).create(
        customer_receipt(seed, customer_id=None), scope, seed.user_id
    )
    assert walk_in.party_applied is None


def test_deleting_an_overpayment_restores_the_old_balance(db, seed, scope, capabilities,
                                                          balance_of, party_balance):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed, "500.00"), scope, seed.user_id)
    assert party_balance("customers", seed.customer_id) == Decimal("0.00")

    service.delete(receipt.id, scope, seed.user_id)

    assert party_balance("customers", seed.customer_id) == Decimal("300.00")
    assert balance_of(seed.cash_id) == Decimal("1000.00")
    ledger = db.query(CustomerLedgerEntry).order_by(CustomerLedgerEntry.id).all()
    assert [(e.debit, e.credit) for e in ledger] == [
        (Decimal("0.00"), Decimal("500.00")),
        (Decimal("500.00"), Decimal("0.00")),
    ]


def test_shrinking_an_overpayment_leaves_the_rest_owed(db, seed, scope, capabilities, party_balance):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed, "500.00"), scope, seed.user_id)

    updated = service.update(receipt.id, UpdateSet.of(amount=Decimal("100.00")), scope, seed.user_id)

    assert party_balance("customers", seed.customer_id) == Decimal("200.00")
    assert updated.party_applied == Decimal("100.00")


def test_supplier_overpayment_delete_restores_what_was_owed(db, seed, scope, capabilities,
                                                            balance_of, party_balance):
    service = SupplierReceiptService(db, capabilities)
    receipt = service.create(
        SupplierReceiptCreate(supplier_id=seed.supplier_id, account_id=seed.bank_id,
                              amount=Decimal("900.00"), receipt_date=date(2026, 3, 11)),
        scope, seed.user_id
    )
    assert party_balance("suppliers", seed.supplier_id) == Decimal("0.00")

    service.delete(receipt.id, scope, seed.user_id)

    assert party_balance("suppliers", seed.supplier_id) == Decimal("800.00")
    assert balance_of(seed.bank_id) == Decimal("500.00")


def test_note_only_update_does_not_repost(db, seed, scope, capabilities, balance_of, party_balance):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed, "100.00"), scope, seed.user_id)

    updated = service.update(
        receipt.id, UpdateSet.of(note="typo fix", reference_no="R-17", payment_method="card"),
        scope, seed.user_id
    )

    assert (updated.note, updated.reference_no, updated.payment_method) == ("typo fix", "R-17", "card")
    assert db.query(AccountTransaction).count() == 1
    assert db.query(CustomerLedgerEntry).count() == 1
    assert balance_of(seed.cash_id) == Decimal("1100.00")
    assert party_balance("customers", seed.customer_id) == Decimal("200.00")

    unpaid = OutstandingBalanceService(db, capabilities)
    assert unpaid.list_customer_unpaid(scope, month=date.today().strftime("%Y-%m")) == []
    assert unpaid.list_customer_unpaid(scope, month="2026-10") == []


def test_date_change_moves_the_payment_between_months(db, seed, scope, capabilities, party_balance):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed, "100.00"), scope, seed.user_id)

    service.update(receipt.id, UpdateSet.of(receipt_date=date(2026, 4, 2)), scope, seed.user_id)

    ledger = db.query(CustomerLedgerEntry).order_by(CustomerLedgerEntry.id).all()
    assert [(e.entry_type, e.entry_date) for e in ledger] == [
        ("payment", date(2026, 3, 10)),
        ("reversal", date(2026, 3, 10)),
        ("payment", date(2026, 4, 2)),
    ]
    txns = db.query(AccountTransaction).order_by(AccountTransaction.id).all()
    assert [(t.txn_type, t.txn_date) for t in txns] == [
        ("in", date(2026, 3, 10)),
        ("reversal_out", date(2026, 3, 10)),
        ("in", date(2026, 4, 2)),
    ]
    assert party_balance("customers", seed.customer_id) == Decimal("200.00")

    unpaid = OutstandingBalanceService(db, capabilities)
    assert unpaid.list_customer_unpaid(scope, month="2026-03") == []
    assert unpaid.list_customer_unpaid(scope, month=date.today().strftime("%Y-%m")) == []


def test_stray_rows_for_a_receipt_abort_the_reversal(db, seed, scope, capabilities, balance_of):
    service = CustomerReceiptService(db, capabilities)
    receipt = service.create(customer_receipt(seed), scope, seed.user_id)
    db.add(AccountTransaction(txn_type="in", ref_table="customer_receipts", ref_id=receipt.id,
                              debit=Decimal("10.00"), credit=Decimal("0.00"), txn_date=date(2026, 3, 10),
                              account_id=seed.cash_id, branch_id=1))
    db.commit()

    with pytest.raises(InternalError):
        service.delete(receipt.id, scope, seed.user_id)

    assert db.query(CustomerReceipt).count() == 1
    assert balance_of(seed.cash_id) == Decimal("1100.00")
    assert db.query(CustomerLedgerEntry).count() == 1
