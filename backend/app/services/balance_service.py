"""
Balance Service - signed balance adjustments on accounts and parties
"""
from typing import Dict, Iterable, Optional
from decimal import Decimal
import logging

from sqlalchemy import Numeric, Integer, case, func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key
from sqlalchemy.sql import table as sql_table, column as sql_column

from app.core.exceptions import BadRequestError, NotFoundError
from app.core.schema import SchemaCapabilities
from app.models import Account

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal("0.01"))


class BalanceAdjuster:
    """
    Applies signed deltas to balance columns.

    Account balances are moved with a single ``balance = balance + delta``
    statement and may go negative. Party balances (customers, suppliers) are
    clamped at zero; the party ledgers keep the unclamped history.
    """

    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.capabilities = capabilities

    def lock_accounts(self, account_ids: Iterable[int], branch_id: Optional[int] = None) -> Dict[int, Account]:
        """
        Lock account rows for the rest of the transaction.

        Rows are locked in ascending id order so two postings touching the
        same pair of accounts cannot deadlock.
        """
        ids = sorted({account_id for account_id in account_ids if account_id})
        if not ids:
            return {}

        accounts = self.db.query(Account).filter(
            Account.id.in_(ids)
        ).order_by(Account.id).with_for_update().all()

        found = {account.id: account for account in accounts}
        for account_id in ids:
            account = found.get(account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            if branch_id is not None and account.branch_id != branch_id:
                raise BadRequestError(f"Account {account_id} does not belong to branch {branch_id}")
        return found

    def adjust_account(self, account_id: int, branch_id: int, delta) -> Decimal:
        delta = to_money(delta)
        result = self.db.execute(
            update(Account)
            .where(Account.id == account_id, Account.branch_id == branch_id)
            .values(balance=Account.balance + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"Account {account_id} not found")

        loaded = self.db.identity_map.get(identity_key(Account, account_id))
        if loaded is not None:
            self.db.expire(loaded, ["balance"])

        return self.db.execute(
            select(Account.balance).where(Account.id == account_id)
        ).scalar_one()

    def party_table(self, table: str):
        """Lightweight table bound to the balance column this database actually has."""
        column_name = self.capabilities.balance_column(self.db.connection(), table)
        return sql_table(
            table,
            sql_column("id", Integer),
            sql_column("branch_id", Integer),
            sql_column(column_name, Numeric(15, 2)),
        ), column_name

    def adjust_party_balance(self, table: str, party_id: Optional[int], branch_id: int, delta) -> Decimal:
        """
        ``balance = max(balance + delta, 0)``; walk-in parties (no id) carry no balance.

        Returns the change actually applied, which is smaller than ``delta``
        whenever the clamp kicks in.
        """
        if not party_id:
            return ZERO

        delta = to_money(delta)
        party, column_name = self.party_table(table)
        row_filter = (party.c.id == party_id, party.c.branch_id == branch_id)

        before = self.db.execute(
            select(party.c[column_name]).where(*row_filter).with_for_update()
        ).first()
        if before is None:
            raise NotFoundError(f"No row {party_id} in {table} for branch {branch_id}")

        current = func.coalesce(party.c[column_name], 0)
        result = self.db.execute(
            party.update()
            .where(*row_filter)
            .values({column_name: case((current + delta < 0, 0), else_=current + delta)})
        )
        if result.rowcount != 1:
            raise NotFoundError(f"No row {party_id} in {table} for branch {branch_id}")

        after = self.db.execute(select(party.c[column_name]).where(*row_filter)).scalar()
        applied = to_money(after) - to_money(before[0])
        logger.debug("Adjusted %s.%s for id %s by %s (asked %s)", table, column_name, party_id, applied, delta)
        return applied

    def party_balance(self, table: str, party_id: int) -> Decimal:
        party, column_name = self.party_table(table)
        value = self.db.execute(
            select(party.c[column_name]).where(party.c.id == party_id)
        ).scalar()
        return to_money(value)
