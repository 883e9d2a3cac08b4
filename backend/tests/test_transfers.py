from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import BadRequestError, ForbiddenError, NotFoundError, UnauthorizedError
from app.models import AccountTransaction, AccountTransfer
from app.schemas import AccountTransferCreate
from app.schemas.updates import UpdateSet
from app.services.banking_service import AccountTransferService
from app.services.posting_service import PostingEngine


def make_transfer(seed, amount="100.00", post_now=True, **overrides):
    data = dict(
        from_account_id=seed.cash_id,
        to_account_id=seed.bank_id,
        amount=Decimal(amount),
        transfer_date=date(2026, 3, 2),
        post_now=post_now,
    )
    data.update(overrides)
    return AccountTransferCreate(**data)


def transactions_for(db, transfer_id):
    return db.query(AccountTransaction).filter(
        AccountTransaction.ref_table == "account_transfers",
        AccountTransaction.ref_id == transfer_id
    ).order_by(AccountTransaction.id).all()


def test_posted_transfer_moves_both_balances(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)

    transfer = service.create(make_transfer(seed), scope, seed.user_id)

    assert transfer.status == "posted"
    assert balance_of(seed.cash_id) == Decimal("900.00")
    assert balance_of(seed.bank_id) == Decimal("600.00")
    txns = transactions_for(db, transfer.id)
    assert [(t.account_id, t.txn_type) for t in txns] == [(seed.cash_id, "out"), (seed.bank_id, "in")]


def test_update_amount_reverses_then_reapplies(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed, "100.00"), scope, seed.user_id)

    service.update(transfer.id, UpdateSet.of(amount=Decimal("150.00")), scope, seed.user_id)

    assert balance_of(seed.cash_id) == Decimal("850.00")
    assert balance_of(seed.bank_id) == Decimal("650.00")
    txn_types = [t.txn_type for t in transactions_for(db, transfer.id)]
    assert txn_types == ["out", "in", "reversal_in", "reversal_out", "out", "in"]


def test_update_swapping_accounts(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed, "100.00"), scope, seed.user_id)

    service.update(
        transfer.id,
        UpdateSet.of(from_account_id=seed.bank_id, to_account_id=seed.cash_id),
        scope, seed.user_id
    )

    assert balance_of(seed.cash_id) == Decimal("1100.00")
    assert balance_of(seed.bank_id) == Decimal("400.00")


def test_note_only_update_does_not_repost(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed), scope, seed.user_id)

    updated = service.update(transfer.id, UpdateSet.of(note="moved float"), scope, seed.user_id)

    assert updated.note == "moved float"
    assert len(transactions_for(db, transfer.id)) == 2
    assert balance_of(seed.cash_id) == Decimal("900.00")


def test_same_account_rejected_before_any_write(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)

    with pytest.raises(BadRequestError):
        service.create(make_transfer(seed, to_account_id=seed.cash_id), scope, seed.user_id)

    assert db.query(AccountTransfer).count() == 0
    assert db.query(AccountTransaction).count() == 0
    assert balance_of(seed.cash_id) == Decimal("1000.00")


def test_update_to_same_account_rejected(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed), scope, seed.user_id)

    with pytest.raises(BadRequestError):
        service.update(transfer.id, UpdateSet.of(to_account_id=seed.cash_id), scope, seed.user_id)

    assert balance_of(seed.cash_id) == Decimal("900.00")
    assert balance_of(seed.bank_id) == Decimal("600.00")


def test_draft_never_touches_balances_until_posted(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed, post_now=False), scope, seed.user_id)

    assert transfer.status == "draft"
    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert transactions_for(db, transfer.id) == []

    service.update(transfer.id, UpdateSet.of(amount=Decimal("40.00")), scope, seed.user_id)
    assert balance_of(seed.cash_id) == Decimal("1000.00")

    service.update(transfer.id, UpdateSet.of(status="posted"), scope, seed.user_id)
    assert balance_of(seed.cash_id) == Decimal("960.00")
    assert balance_of(seed.bank_id) == Decimal("540.00")


def test_void_reverses_and_freezes(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed), scope, seed.user_id)

    service.update(transfer.id, UpdateSet.of(status="void"), scope, seed.user_id)
    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert balance_of(seed.bank_id) == Decimal("500.00")

    with pytest.raises(BadRequestError):
        service.update(transfer.id, UpdateSet.of(status="posted"), scope, seed.user_id)


def test_delete_posted_transfer_reverses(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed), scope, seed.user_id)

    service.delete(transfer.id, scope, seed.user_id)

    assert db.query(AccountTransfer).count() == 0
    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert balance_of(seed.bank_id) == Decimal("500.00")
    # The audit trail keeps both the posting and its reversal
    assert len(transactions_for(db, transfer.id)) == 4
    with pytest.raises(NotFoundError):
        service.get_by_id(transfer.id, scope)


def test_failure_on_last_step_leaves_nothing_behind(db, seed, scope, capabilities, balance_of, monkeypatch):
    original = PostingEngine.move_account
    calls = {"count": 0}

    def fail_on_second_leg(self, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("connection lost")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(PostingEngine, "move_account", fail_on_second_leg)
    service = AccountTransferService(db, capabilities)

    with pytest.raises(RuntimeError):
        service.create(make_transfer(seed), scope, seed.user_id)

    assert balance_of(seed.cash_id) == Decimal("1000.00")
    assert balance_of(seed.bank_id) == Decimal("500.00")
    assert db.query(AccountTransfer).count() == 0
    assert db.query(AccountTransaction).count() == 0


def test_failed_update_keeps_original_posting(db, seed, scope, capabilities, balance_of, monkeypatch):
    service = AccountTransferService(db, capabilities)
    transfer = service.create(make_transfer(seed), scope, seed.user_id)

    def broken_post(self, transfer):
        raise RuntimeError("deadlock detected")

    monkeypatch.setattr(PostingEngine, "post_transfer", broken_post)
    with pytest.raises(RuntimeError):
        service.update(transfer.id, UpdateSet.of(amount=Decimal("150.00")), scope, seed.user_id)

    db.expire_all()
    assert balance_of(seed.cash_id) == Decimal("900.00")
    assert balance_of(seed.bank_id) == Decimal("600.00")
    assert service.get_by_id(transfer.id, scope).amount == Decimal("100.00")


def test_write_requires_an_actor(db, seed, scope, capabilities):
    service = AccountTransferService(db, capabilities)
    with pytest.raises(UnauthorizedError):
        service.create(make_transfer(seed), scope, None)
    assert db.query(AccountTransfer).count() == 0


def test_branch_scope_is_enforced(db, seed, scope, other_scope, capabilities):
    service = AccountTransferService(db, capabilities)

    with pytest.raises(ForbiddenError):
        service.create(make_transfer(seed, branch_id=1), other_scope, seed.user_id)

    transfer = service.create(make_transfer(seed), scope, seed.user_id)
    with pytest.raises(ForbiddenError):
        service.delete(transfer.id, other_scope, seed.user_id)


def test_accounts_must_belong_to_the_write_branch(db, seed, scope, capabilities, balance_of):
    service = AccountTransferService(db, capabilities)
    with pytest.raises(BadRequestError):
        service.create(make_transfer(seed, to_account_id=seed.remote_id), scope, seed.user_id)
    assert balance_of(seed.remote_id) == Decimal("300.00")


def test_list_is_branch_scoped(db, seed, scope, other_scope, admin_scope, capabilities):
    service = AccountTransferService(db, capabilities)
    service.create(make_transfer(seed), scope, seed.user_id)
    service.create(make_transfer(seed, post_now=False), scope, seed.user_id)

    assert len(service.list_transfers(scope)) == 2
    assert len(service.list_transfers(scope, status="draft")) == 1
    assert service.list_transfers(other_scope) == []
    assert len(service.list_transfers(admin_scope)) == 2
