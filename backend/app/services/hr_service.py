"""
HR Service - Payroll runs, lines and salary payments

Lifecycle: a period charge creates the run and its lines, payments settle
lines, and deleting the last line of a run deletes the run. Every deletion
path gives each payment's amount back to its account before the payment row
goes away.
"""
from typing import Optional, List, Dict
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from decimal import Decimal
from datetime import date
import logging

from app.core.branch_scope import BranchScope, require_actor, scope_filter
from app.core.config import settings
from app.core.database import atomic
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.schema import SchemaCapabilities
from app.models import PayrollRun, PayrollLine, EmployeePayment, PayrollStatus
from app.schemas import PaySalaryRequest
from app.services.balance_service import to_money, ZERO
from app.services.period_charger import PeriodCharger, ChargeOper, Period
from app.services.posting_service import PostingEngine

logger = logging.getLogger(__name__)


class PayrollService:
    def __init__(self, db: Session, capabilities: SchemaCapabilities):
        self.db = db
        self.posting = PostingEngine(db, capabilities)
        self.charger = PeriodCharger(db)

    # ==================== READS ====================

    def get_line(self, line_id: int, scope: BranchScope) -> PayrollLine:
        line = self.db.query(PayrollLine).options(
            joinedload(PayrollLine.run)
        ).filter(PayrollLine.id == line_id).first()
        if not line:
            raise NotFoundError("Payroll line not found")
        scope.assert_access(line.run.branch_id)
        return line

    def get_payment(self, payment_id: int, scope: BranchScope) -> EmployeePayment:
        payment = self.db.query(EmployeePayment).filter(EmployeePayment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Salary payment not found")
        scope.assert_access(payment.branch_id)
        return payment

    def paid_amount(self, line_id: int) -> Decimal:
        paid = self.db.query(func.sum(EmployeePayment.amount_paid)).filter(
            EmployeePayment.payroll_line_id == line_id
        ).scalar()
        return to_money(paid)

    def list_payroll(self, scope: BranchScope, period: Optional[str] = None,
                     branch_id: Optional[int] = None) -> List[Dict]:
        branch_ids = scope.visible_branch_ids(branch_id)
        query = self.db.query(PayrollRun).options(
            joinedload(PayrollRun.lines).joinedload(PayrollLine.employee)
        ).filter(scope_filter(PayrollRun.branch_id, branch_ids))
        if period:
            window = Period.parse(period)
            query = query.filter(
                PayrollRun.period_year == window.year,
                PayrollRun.period_month == window.month
            )
        runs = query.order_by(
            PayrollRun.period_year.desc(), PayrollRun.period_month.desc(), PayrollRun.branch_id
        ).limit(settings.LIST_LIMIT).all()

        paid_by_line = dict(
            self.db.query(EmployeePayment.payroll_line_id, func.sum(EmployeePayment.amount_paid)).filter(
                EmployeePayment.payroll_run_id.in_([run.id for run in runs])
            ).group_by(EmployeePayment.payroll_line_id).all()
        ) if runs else {}

        result = []
        for run in runs:
            lines = []
            for line in sorted(run.lines, key=lambda l: l.id):
                paid = to_money(paid_by_line.get(line.id))
                lines.append({
                    "id": line.id,
                    "payroll_run_id": run.id,
                    "employee_id": line.employee_id,
                    "employee_name": line.employee.full_name if line.employee else None,
                    "basic_salary": line.basic_salary,
                    "allowances": line.allowances,
                    "deductions": line.deductions,
                    "net_salary": line.net_salary,
                    "paid": paid,
                    "remaining": to_money(line.net_salary) - paid,
                })
            result.append({
                "id": run.id,
                "branch_id": run.branch_id,
                "period_year": run.period_year,
                "period_month": run.period_month,
                "period_from": run.period_from,
                "period_to": run.period_to,
                "status": run.status,
                "lines": lines,
            })
        return result

    # ==================== CHARGE & PAY ====================

    def charge_salaries(self, period_date: date, oper, scope: BranchScope, user_id: Optional[int],
                        branch_id: Optional[int] = None) -> Dict:
        user_id = require_actor(user_id)
        branch_id = scope.pick_for_write(branch_id)
        oper = ChargeOper.parse(oper)

        with atomic(self.db):
            lines = self.charger.charge_payroll(branch_id, period_date, oper, user_id)

        logger.info("Charged %d salaries for %s in branch %s (%s)",
                    len(lines), Period.of(period_date), branch_id, oper.value)
        return {"created": len(lines)}

    def pay_salary(self, payment_data: PaySalaryRequest, scope: BranchScope,
                   user_id: Optional[int]) -> EmployeePayment:
        """Pay ``0 < amount <= net salary - prior payments``; amount defaults to what remains."""
        user_id = require_actor(user_id)
        line = self.get_line(payment_data.payroll_line_id, scope)
        run = line.run

        with atomic(self.db):
            # Serialise payments against the same line before reading what is left
            self.db.query(PayrollLine).filter(PayrollLine.id == line.id).with_for_update().one()
            remaining = to_money(line.net_salary) - self.paid_amount(line.id)
            amount = remaining if payment_data.amount is None else to_money(payment_data.amount)

            if amount <= 0:
                raise BadRequestError("Salary is already fully paid" if remaining <= 0
                                      else "Amount must be greater than zero")
            if amount > remaining:
                raise BadRequestError(f"Amount exceeds the remaining salary of {remaining}")

            self.posting.balances.lock_accounts([payment_data.account_id], run.branch_id)
            payment = EmployeePayment(
                payroll_run_id=run.id,
                payroll_line_id=line.id,
                employee_id=line.employee_id,
                account_id=payment_data.account_id,
                amount_paid=amount,
                pay_date=payment_data.pay_date or date.today(),
                reference_no=payment_data.reference_no,
                note=payment_data.note,
                branch_id=run.branch_id,
                user_id=user_id
            )
            self.db.add(payment)
            self.db.flush()
            self.posting.post_outflow(
                "employee_payments", payment.id, payment.account_id, run.branch_id,
                amount, payment.pay_date, payment.note
            )
            self._refresh_status(run)

        self.db.refresh(payment)
        logger.info("Paid salary line %s from account %s amount %s", line.id, payment.account_id, amount)
        return payment

    # ==================== DELETION ====================

    def delete_salary_payment(self, payment_id: int, scope: BranchScope, user_id: Optional[int]) -> bool:
        require_actor(user_id)
        payment = self.get_payment(payment_id, scope)
        line = payment.line

        with atomic(self.db):
            self._reverse_payment(payment)
            self.db.delete(payment)
            self.db.flush()
            self.db.expire(line, ["payments"])
            self._refresh_status(line.run)

        logger.info("Deleted salary payment %s", payment_id)
        return True

    def delete_payroll(self, mode: str, scope: BranchScope, user_id: Optional[int],
                       payroll_line_id: Optional[int] = None, period: Optional[str] = None,
                       branch_id: Optional[int] = None) -> Dict:
        """
        ``line`` deletes one line (and its run once empty); ``period`` deletes
        every visible run of a month. Both return the number of lines deleted.
        """
        require_actor(user_id)
        mode = getattr(mode, "value", mode)
        if mode == "line":
            return self._delete_line(payroll_line_id, scope)
        if mode == "period":
            return self._delete_period(period, scope, branch_id)
        raise BadRequestError("mode must be 'line' or 'period'")

    def _delete_line(self, line_id: Optional[int], scope: BranchScope) -> Dict:
        if not line_id:
            raise BadRequestError("payroll_line_id is required")
        line = self.get_line(line_id, scope)
        run = line.run

        with atomic(self.db):
            payments = self._reverse_line_payments(line)
            self.db.delete(line)
            self.db.flush()

            self.db.expire(run, ["lines"])
            run_deleted = not run.lines
            if run_deleted:
                self.db.delete(run)
            else:
                self._refresh_status(run)

        logger.info("Deleted payroll line %s with %d payments%s", line_id, payments,
                    f", run {run.id} removed" if run_deleted else "")
        return {"deleted": 1}

    def _delete_period(self, period: Optional[str], scope: BranchScope, branch_id: Optional[int]) -> Dict:
        if not period:
            raise BadRequestError("period is required")
        window = Period.parse(period)
        branch_ids = scope.visible_branch_ids(branch_id)

        # only runs of branches the caller may see are loaded, so each is writable
        runs = self.db.query(PayrollRun).filter(
            scope_filter(PayrollRun.branch_id, branch_ids),
            PayrollRun.period_year == window.year,
            PayrollRun.period_month == window.month
        ).order_by(PayrollRun.id).all()
        if not runs:
            raise NotFoundError(f"No payroll found for period {window}")

        deleted = 0
        with atomic(self.db):
            for run in runs:
                for line in run.lines:
                    self._reverse_line_payments(line)
                    deleted += 1
                self.db.delete(run)

        logger.info("Deleted payroll for %s: %d runs, %d lines", window, len(runs), deleted)
        return {"deleted": deleted}

    # ==================== HELPERS ====================

    def _reverse_payment(self, payment: EmployeePayment) -> None:
        self.posting.reverse_outflow(
            "employee_payments", payment.id, payment.account_id, payment.branch_id, payment.amount_paid
        )

    def _reverse_line_payments(self, line: PayrollLine) -> int:
        """Give every payment of a line back to its account; the rows go with the line."""
        for payment in line.payments:
            self._reverse_payment(payment)
        return len(line.payments)

    def _refresh_status(self, run: PayrollRun) -> None:
        net = self.db.query(func.sum(PayrollLine.net_salary)).filter(
            PayrollLine.payroll_run_id == run.id
        ).scalar()
        paid = self.db.query(func.sum(EmployeePayment.amount_paid)).join(
            PayrollLine, PayrollLine.id == EmployeePayment.payroll_line_id
        ).filter(PayrollLine.payroll_run_id == run.id).scalar()

        net, paid = to_money(net), to_money(paid)
        if paid <= ZERO:
            run.status = PayrollStatus.OPEN.value
        elif paid >= net:
            run.status = PayrollStatus.PAID.value
        else:
            run.status = PayrollStatus.PARTIAL.value
        self.db.flush()
