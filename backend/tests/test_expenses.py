from datetime import date
from decimal import Decimal

import pytest

from app.core.config import settings
from app.core.exceptions import BadRequestError, NotFoundError
from app.models import AccountTransaction, Expense, ExpenseCharge, ExpensePayment
from app.schemas import ExpenseChargeCreate, ExpenseCreate, ExpensePaymentCreate
from app.schemas.updates import UpdateSet
from app.services.expense_service import ExpenseChargeService, ExpensePaymentService, ExpenseService


@pytest.fixture
def charge(db, seed, scope, expense):
    return ExpenseChargeService(db).create(
        ExpenseChargeCreate(expense_id=expense.id, amount=Decimal("300.00"), charge_date=date(2026, 3, 1)),
        scope, seed.user_id
    )


def test_charge_deletion_guard(db, seed, scope, capabilities, charge):
    charges = ExpenseChargeService(db)
    payments = ExpensePaymentService(db, capabilities)
    payment = payments.create(
        ExpensePaymentCreate(charge_id=charge.id, account_id=seed.cash_id, amount=Decimal("100.00")),
        scope, seed.user_id
    )

    with pytest.raises(BadRequestError):
        charges.delete(charge.id, scope, seed.user_id)
    assert db.query(ExpenseCharge).count() == 1

    payments.delete(payment.id, scope, seed.user_id)
    charges.delete(charge.id, scope, seed.user_id)
    assert db.query(ExpenseCharge).count() == 0


def test_payment_defaults_to_remaining_amount(db, seed, scope, capabilities, charge, balance_of):
    payments = ExpensePaymentService(db, capabilities)
    payments.create(
        ExpensePaymentCreate(charge_id=charge.id, account_id=seed.cash_id, amount=Decimal("120.00")),
        scope, seed.user_id
    )

    rest = payments.create(
        ExpensePaymentCreate(charge_id=charge.id, account_id=seed.bank_id), scope, seed.user_id
    )

    assert rest.amount_paid == Decimal("180.00")
    assert balance_of(seed.cash_id) == Decimal("880.00")
    assert balance_of(seed.bank_id) == Decimal("320.00")
    assert ExpenseChargeService(db).remaining_amount(charge) == Decimal("0.00")

    with pytest.raises(BadRequestError):
        payments.create(ExpensePaymentCreate(charge_id=charge.id, account_id=seed.cash_id), scope, seed.user_id)


def test_payment_delete_reverses_account_debit(db, seed, scope, capabilities, charge, balance_of):
    payments = ExpensePaymentService(db, capabilities)
    payment = payments.create(
        ExpensePaymentCreate(charge_id=charge.id, account_id=seed.cash_id), scope, seed.user_id
    )
    assert balance_of(seed.cash_id) == Decimal("700.00")

    payments.delete(payment.id, scope, seed.user_id)

    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert db.query(ExpensePayment).count() == 0
    txn_types = [t.txn_type for t in db.query(AccountTransaction).order_by(AccountTransaction.id)]
    assert txn_types == ["out", "reversal_in"]


def test_overpayment_allowed_unless_cap_enforced(db, seed, scope, capabilities, charge, monkeypatch):
    payments = ExpensePaymentService(db, capabilities)
    over = ExpensePaymentCreate(charge_id=charge.id, account_id=seed.cash_id, amount=Decimal("350.00"))

    monkeypatch.setattr(settings, "EXPENSE_PAYMENT_ENFORCE_CAP", True)
    with pytest.raises(BadRequestError):
        payments.create(over, scope, seed.user_id)

    monkeypatch.setattr(settings, "EXPENSE_PAYMENT_ENFORCE_CAP", False)
    payment = payments.create(over, scope, seed.user_id)
    assert payment.amount_paid == Decimal("350.00")


def test_charge_amount_cannot_drop_below_paid(db, seed, scope, capabilities, charge):
    ExpensePaymentService(db, capabilities).create(
        ExpensePaymentCreate(charge_id=charge.id, account_id=seed.cash_id, amount=Decimal("200.00")),
        scope, seed.user_id
    )
    charges = ExpenseChargeService(db)

    with pytest.raises(BadRequestError):
        charges.update(charge.id, UpdateSet.of(amount=Decimal("150.00")), scope, seed.user_id)

    updated = charges.update(charge.id, UpdateSet.of(amount=Decimal("250.00"), note=None), scope, seed.user_id)
    assert updated.amount == Decimal("250.00")
    assert updated.note is None


def test_charge_needs_an_expense_in_the_branch(db, seed, scope):
    with pytest.raises(NotFoundError):
        ExpenseChargeService(db).create(
            ExpenseChargeCreate(expense_id=404, amount=Decimal("10.00")), scope, seed.user_id
        )


def test_expense_delete_refused_while_charged(db, seed, scope, expense, charge):
    service = ExpenseService(db)
    with pytest.raises(BadRequestError):
        service.delete(expense.id, scope, seed.user_id)

    ExpenseChargeService(db).delete(charge.id, scope, seed.user_id)
    service.delete(expense.id, scope, seed.user_id)
    assert db.query(Expense).count() == 0


def test_expense_crud(db, seed, scope):
    service = ExpenseService(db)
    created = service.create(ExpenseCreate(name="  Utilities "), scope, seed.user_id)
    assert created.name == "Utilities"
    assert created.branch_id == 1

    renamed = service.update(created.id, UpdateSet.of(name="Power"), scope, seed.user_id)
    assert renamed.name == "Power"
    with pytest.raises(BadRequestError):
        service.update(created.id, UpdateSet.of(name="  "), scope, seed.user_id)

    assert [e.name for e in service.list_expenses(scope)] == ["Power"]


def test_list_payments_by_expense(db, seed, scope, capabilities, charge, expense):
    payments = ExpensePaymentService(db, capabilities)
    payments.create(ExpensePaymentCreate(charge_id=charge.id, account_id=seed.cash_id), scope, seed.user_id)

    assert len(payments.list_payments(scope, expense_id=expense.id)) == 1
    assert len(payments.list_payments(scope, charge_id=charge.id)) == 1
    assert payments.list_payments(scope, expense_id=expense.id + 1) == []
