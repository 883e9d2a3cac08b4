"""
Expense Service - expenses, charges, budgets and payments
"""
from typing import Optional, List, Dict
from sqlalchemy.orm import Session
from sqlalchemy import func
from decimal import Decimal
from datetime import date
import logging

from app.core.branch_scope import BranchScope, require_actor, scope_filter
from app.core.config import settings
from app.core.database import atomic
from app.core.exceptions import BadRequestError, NotFoundError, DuplicatePeriodChargeError
from app.core.schema import SchemaCapabilities
from app.models import Expense, ExpenseBudget, ExpenseCharge, ExpensePayment
from app.schemas import (
    ExpenseCreate, ExpenseChargeCreate, ExpenseBudgetCreate, ExpensePaymentCreate
)
from app.schemas.updates import UpdateSet
from app.services.balance_service import to_money
from app.services.period_charger import PeriodCharger, ChargeOper, Period
from app.services.posting_service import PostingEngine

logger = logging.getLogger(__name__)


class ExpenseService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, expense_id: int, scope: BranchScope) -> Expense:
        expense = self.db.query(Expense).filter(Expense.id == expense_id).first()
        if not expense:
            raise NotFoundError("Expense not found")
        scope.assert_access(expense.branch_id)
        return expense

    def get_in_branch(self, expense_id: Optional[int], branch_id: int) -> Expense:
        if not expense_id:
            raise BadRequestError("Expense is required")
        expense = self.db.query(Expense).filter(
            Expense.id == expense_id,
            Expense.branch_id == branch_id
        ).first()
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list_expenses(self, scope: BranchScope, branch_id: Optional[int] = None) -> List[Expense]:
        branch_ids = scope.visible_branch_ids(branch_id)
        return self.db.query(Expense).filter(
            scope_filter(Expense.branch_id, branch_ids)
        ).order_by(Expense.name).limit(settings.LIST_LIMIT).all()

    def create(self, expense_data: ExpenseCreate, scope: BranchScope, user_id: Optional[int]) -> Expense:
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(expense_data.branch_id)
        name = (expense_data.name or "").strip()
        if not name:
            raise BadRequestError("Expense name is required")

        with atomic(self.db):
            expense = Expense(name=name, branch_id=branch_id, user_id=user_id)
            self.db.add(expense)
            self.db.flush()

        self.db.refresh(expense)
        logger.info("Created expense %s '%s' in branch %s", expense.id, expense.name, branch_id)
        return expense

    def update(self, expense_id: int, updates: UpdateSet, scope: BranchScope, user_id: Optional[int]) -> Expense:
        require_actor(user_id)
        expense = self.get_by_id(expense_id, scope)
        if updates.is_set("name") and not (updates.get("name").value or "").strip():
            raise BadRequestError("Expense name is required")

        with atomic(self.db):
            updates.apply_to(expense, ("name",))
            self.db.flush()

        self.db.refresh(expense)
        return expense

    def delete(self, expense_id: int, scope: BranchScope, user_id: Optional[int]) -> bool:
        """Delete an expense and its budgets; refused while any charge points at it."""
        require_actor(user_id)
        expense = self.get_by_id(expense_id, scope)

        charges = self.db.query(func.count(ExpenseCharge.id)).filter(
            ExpenseCharge.expense_id == expense.id
        ).scalar()
        if charges:
            raise BadRequestError("Cannot delete an expense that has charges")

        with atomic(self.db):
            for budget in expense.budgets:
                self.db.delete(budget)
            self.db.delete(expense)

        logger.info("Deleted expense %s", expense_id)
        return True


class ExpenseChargeService:
    def __init__(self, db: Session):
        self.db = db
        self.expenses = ExpenseService(db)

    def get_by_id(self, charge_id: int, scope: BranchScope) -> ExpenseCharge:
        charge = self.db.query(ExpenseCharge).filter(ExpenseCharge.id == charge_id).first()
        if not charge:
            raise NotFoundError("Expense charge not found")
        scope.assert_access(charge.branch_id)
        return charge

    def paid_amount(self, charge_id: int) -> Decimal:
        paid = self.db.query(func.sum(ExpensePayment.amount_paid)).filter(
            ExpensePayment.charge_id == charge_id
        ).scalar()
        return to_money(paid)

    def remaining_amount(self, charge: ExpenseCharge) -> Decimal:
        return to_money(charge.amount) - self.paid_amount(charge.id)

    def list_charges(self, scope: BranchScope, branch_id: Optional[int] = None,
                     expense_id: Optional[int] = None, period: Optional[str] = None) -> List[ExpenseCharge]:
        branch_ids = scope.visible_branch_ids(branch_id)
        query = self.db.query(ExpenseCharge).filter(scope_filter(ExpenseCharge.branch_id, branch_ids))
        if expense_id:
            query = query.filter(ExpenseCharge.expense_id == expense_id)
        if period:
            window = Period.parse(period)
            query = query.filter(
                ExpenseCharge.charge_date >= window.start,
                ExpenseCharge.charge_date < window.end
            )
        return query.order_by(
            ExpenseCharge.charge_date.desc(), ExpenseCharge.id.desc()
        ).limit(settings.LIST_LIMIT).all()

    def create(self, charge_data: ExpenseChargeCreate, scope: BranchScope, user_id: Optional[int]) -> ExpenseCharge:
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(charge_data.branch_id)
        amount = to_money(charge_data.amount)
        if amount <= 0:
            raise BadRequestError("Amount must be greater than zero")
        expense = self.expenses.get_in_branch(charge_data.expense_id, branch_id)

        with atomic(self.db):
            charge = ExpenseCharge(
                expense_id=expense.id,
                amount=amount,
                charge_date=charge_data.charge_date or date.today(),
                note=charge_data.note,
                branch_id=branch_id,
                user_id=user_id
            )
            self.db.add(charge)
            self.db.flush()

        self.db.refresh(charge)
        logger.info("Created expense charge %s for expense %s amount %s", charge.id, expense.id, amount)
        return charge

    def update(self, charge_id: int, updates: UpdateSet, scope: BranchScope, user_id: Optional[int]) -> ExpenseCharge:
        require_actor(user_id)
        charge = self.get_by_id(charge_id, scope)

        for name in ("expense_id", "amount", "charge_date"):
            if updates.is_set(name) and updates.get(name).value is None:
                raise BadRequestError(f"{name} cannot be cleared")

        if updates.is_set("expense_id"):
            self.expenses.get_in_branch(updates.get("expense_id").value, charge.branch_id)

        new_amount = to_money(updates.value_or("amount", charge.amount))
        if new_amount <= 0:
            raise BadRequestError("Amount must be greater than zero")
        paid = self.paid_amount(charge.id)
        if new_amount < paid:
            raise BadRequestError(f"Amount cannot be less than the {paid} already paid")

        new_period = None
        if charge.is_budget and updates.is_set("charge_date"):
            new_period = Period.of(updates.get("charge_date").value)
            current = Period(charge.period_year, charge.period_month) if charge.period_year else None
            if new_period != current:
                existing = PeriodCharger(self.db).find_budget_charge(charge.budget_id, new_period)
                if existing is not None and existing.id != charge.id:
                    raise DuplicatePeriodChargeError(f"Budget already charged for period {new_period}")

        with atomic(self.db):
            charge.amount = new_amount
            updates.apply_to(charge, ("expense_id", "charge_date", "note"))
            if new_period is not None:
                charge.period_year = new_period.year
                charge.period_month = new_period.month
            self.db.flush()

        self.db.refresh(charge)
        return charge

    def delete(self, charge_id: int, scope: BranchScope, user_id: Optional[int]) -> bool:
        require_actor(user_id)
        charge = self.get_by_id(charge_id, scope)

        payments = self.db.query(func.count(ExpensePayment.id)).filter(
            ExpensePayment.charge_id == charge.id
        ).scalar()
        if payments:
            raise BadRequestError("Cannot delete a charge that has payments")

        with atomic(self.db):
            self.db.delete(charge)

        logger.info("Deleted expense charge %s", charge_id)
        return True


class ExpensePaymentService:
    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.charges = ExpenseChargeService(db)
        self.posting = PostingEngine(db, capabilities)

    def get_by_id(self, payment_id: int, scope: BranchScope) -> ExpensePayment:
        payment = self.db.query(ExpensePayment).filter(ExpensePayment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Expense payment not found")
        scope.assert_access(payment.branch_id)
        return payment

    def list_payments(self, scope: BranchScope, branch_id: Optional[int] = None,
                      charge_id: Optional[int] = None, expense_id: Optional[int] = None) -> List[ExpensePayment]:
        branch_ids = scope.visible_branch_ids(branch_id)
        query = self.db.query(ExpensePayment).filter(scope_filter(ExpensePayment.branch_id, branch_ids))
        if charge_id:
            query = query.filter(ExpensePayment.charge_id == charge_id)
        if expense_id:
            query = query.join(ExpenseCharge, ExpenseCharge.id == ExpensePayment.charge_id).filter(
                ExpenseCharge.expense_id == expense_id
            )
        return query.order_by(
            ExpensePayment.pay_date.desc(), ExpensePayment.id.desc()
        ).limit(settings.LIST_LIMIT).all()

    def create(self, payment_data: ExpensePaymentCreate, scope: BranchScope,
               user_id: Optional[int]) -> ExpensePayment:
        user_id = require_actor(user_id)
        charge = self.charges.get_by_id(payment_data.charge_id, scope)
        return self.pay_charge(
            charge, payment_data.account_id, user_id,
            amount=payment_data.amount,
            pay_date=payment_data.pay_date,
            reference_no=payment_data.reference_no,
            note=payment_data.note
        )

    def pay_charge(self, charge: ExpenseCharge, account_id: int, user_id: int, amount=None,
                   pay_date: Optional[date] = None, reference_no: Optional[str] = None,
                   note: Optional[str] = None) -> ExpensePayment:
        """
        Record a payment against a charge.

        ``amount`` defaults to what is left on the charge. Paying more than that
        is only refused when EXPENSE_PAYMENT_ENFORCE_CAP is enabled.
        """
        remaining = self.charges.remaining_amount(charge)
        amount = remaining if amount is None else to_money(amount)
        if amount <= 0:
            raise BadRequestError("Nothing left to pay on this charge" if remaining <= 0
                                  else "Amount must be greater than zero")
        if settings.EXPENSE_PAYMENT_ENFORCE_CAP and amount > remaining:
            raise BadRequestError(f"Amount exceeds the remaining {remaining} on this charge")

        with atomic(self.db):
            payment = self.record_payment(charge, account_id, user_id, amount, pay_date, reference_no, note)

        self.db.refresh(payment)
        logger.info("Paid expense charge %s from account %s amount %s", charge.id, account_id, amount)
        return payment

    def record_payment(self, charge: ExpenseCharge, account_id: int, user_id: int, amount: Decimal,
                pay_date: Optional[date], reference_no: Optional[str], note: Optional[str]) -> ExpensePayment:
        self.posting.balances.lock_accounts([account_id], charge.branch_id)
        payment = ExpensePayment(
            charge_id=charge.id,
            account_id=account_id,
            amount_paid=amount,
            pay_date=pay_date or date.today(),
            reference_no=reference_no,
            note=note,
            branch_id=charge.branch_id,
            user_id=user_id
        )
        self.db.add(payment)
        self.db.flush()
        self.posting.post_outflow(
            "expense_payments", payment.id, account_id, charge.branch_id,
            amount, payment.pay_date, note
        )
        return payment

    def delete(self, payment_id: int, scope: BranchScope, user_id: Optional[int]) -> bool:
        """Remove a payment and give its amount back to the account."""
        require_actor(user_id)
        payment = self.get_by_id(payment_id, scope)

        with atomic(self.db):
            self.posting.reverse_outflow(
                "expense_payments", payment.id, payment.account_id, payment.branch_id, payment.amount_paid
            )
            self.db.delete(payment)

        logger.info("Deleted expense payment %s", payment_id)
        return True


class ExpenseBudgetService:
    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.expenses = ExpenseService(db)
        self.payments = ExpensePaymentService(db, capabilities)
        self.charger = PeriodCharger(db)

    def get_by_id(self, budget_id: int, scope: BranchScope) -> ExpenseBudget:
        budget = self.db.query(ExpenseBudget).filter(ExpenseBudget.id == budget_id).first()
        if not budget:
            raise NotFoundError("Expense budget not found")
        scope.assert_access(budget.branch_id)
        return budget

    def list_budgets(self, scope: BranchScope, branch_id: Optional[int] = None) -> List[ExpenseBudget]:
        branch_ids = scope.visible_branch_ids(branch_id)
        return self.db.query(ExpenseBudget).filter(
            scope_filter(ExpenseBudget.branch_id, branch_ids)
        ).order_by(ExpenseBudget.id).limit(settings.LIST_LIMIT).all()

    def create(self, budget_data: ExpenseBudgetCreate, scope: BranchScope, user_id: Optional[int]) -> ExpenseBudget:
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(budget_data.branch_id)
        fixed_amount = to_money(budget_data.fixed_amount)
        if fixed_amount <= 0:
            raise BadRequestError("Budget amount must be greater than zero")
        expense = self.expenses.get_in_branch(budget_data.expense_id, branch_id)

        with atomic(self.db):
            budget = ExpenseBudget(
                expense_id=expense.id,
                fixed_amount=fixed_amount,
                note=budget_data.note,
                is_active=True,
                branch_id=branch_id,
                user_id=user_id
            )
            self.db.add(budget)
            self.db.flush()

        self.db.refresh(budget)
        logger.info("Created expense budget %s for expense %s amount %s", budget.id, expense.id, fixed_amount)
        return budget

    def update(self, budget_id: int, updates: UpdateSet, scope: BranchScope, user_id: Optional[int]) -> ExpenseBudget:
        require_actor(user_id)
        budget = self.get_by_id(budget_id, scope)

        for name in ("expense_id", "fixed_amount", "is_active"):
            if updates.is_set(name) and updates.get(name).value is None:
                raise BadRequestError(f"{name} cannot be cleared")
        if updates.is_set("expense_id"):
            self.expenses.get_in_branch(updates.get("expense_id").value, budget.branch_id)
        if updates.is_set("fixed_amount") and to_money(updates.get("fixed_amount").value) <= 0:
            raise BadRequestError("Budget amount must be greater than zero")

        with atomic(self.db):
            updates.apply_to(budget, ("expense_id", "fixed_amount", "note", "is_active"))
            self.db.flush()

        self.db.refresh(budget)
        return budget

    def delete(self, budget_id: int, scope: BranchScope, user_id: Optional[int]) -> bool:
        """Delete a budget; charges it produced stay as plain charges."""
        require_actor(user_id)
        budget = self.get_by_id(budget_id, scope)

        with atomic(self.db):
            self.db.query(ExpenseCharge).filter(
                ExpenseCharge.budget_id == budget.id
            ).update({ExpenseCharge.budget_id: None}, synchronize_session="evaluate")
            self.db.delete(budget)

        logger.info("Deleted expense budget %s", budget_id)
        return True

    def charge_budget(self, budget_id: int, pay_date: date, scope: BranchScope, user_id: Optional[int],
                      account_id: Optional[int] = None, note: Optional[str] = None) -> Dict:
        """
        Charge a budget for the month of ``pay_date``.

        With ``account_id`` the new charge is paid in full in the same
        transaction.
        """
        user_id = require_actor(user_id)
        budget = self.get_by_id(budget_id, scope)
        if not budget.is_active:
            raise BadRequestError("Expense budget is inactive")

        with atomic(self.db):
            charge = self.charger.charge_budget(budget, pay_date, user_id, note)
            payment = None
            if account_id:
                payment = self.payments.record_payment(
                    charge, account_id, user_id, to_money(charge.amount), pay_date, None, note
                )

        logger.info("Charged budget %s for %s: charge %s%s", budget.id, Period.of(pay_date), charge.id,
                    f", payment {payment.id}" if payment else "")
        return {"charge_id": charge.id, "payment_id": payment.id if payment else None}

    def manage_budget_charges(self, reg_date: date, oper, scope: BranchScope, user_id: Optional[int],
                              branch_id: Optional[int] = None) -> Dict:
        """Charge every active budget of the write branch for the month of ``reg_date``."""
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(branch_id)
        oper = ChargeOper.parse(oper)

        with atomic(self.db):
            created = self.charger.charge_budgets(branch_id, reg_date, oper, user_id)

        logger.info("Registered %d budget charges for %s in branch %s (%s)",
                    len(created), Period.of(reg_date), branch_id, oper.value)
        return {"status": "ok", "oper": oper.value, "created": len(created)}
