"""
Period Charger - recurring obligations materialised once per calendar month

Expense budgets become one ExpenseCharge per (budget, year, month); employees
with a salary become one PayrollLine per (branch, year, month) run. A retried
scheduler call must never create a second charge for the same period, so every
path checks the period key before inserting, and the store's unique
constraints back that check up.
"""
from dataclasses import dataclass
from typing import List, Optional
from datetime import date
import calendar
import enum
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import BadRequestError, DuplicatePeriodChargeError
from app.models import (
    ExpenseBudget, ExpenseCharge, Employee, PayrollRun, PayrollLine, PayrollStatus
)
from app.services.balance_service import to_money, ZERO

logger = logging.getLogger(__name__)


class ChargeOper(enum.Enum):
    INSERT = "insert"
    AUTO = "auto"

    @classmethod
    def parse(cls, value) -> "ChargeOper":
        if isinstance(value, cls):
            return value
        value = getattr(value, "value", value)
        try:
            return cls((value or cls.AUTO.value).lower())
        except ValueError:
            raise BadRequestError(f"Unsupported charge operation '{value}'")


@dataclass(frozen=True)
class Period:
    year: int
    month: int

    @classmethod
    def of(cls, day: date) -> "Period":
        return cls(day.year, day.month)

    @classmethod
    def parse(cls, value: str) -> "Period":
        """Parse ``YYYY-MM``."""
        try:
            year, month = (int(part) for part in value.split("-"))
        except (AttributeError, ValueError):
            raise BadRequestError(f"Invalid period '{value}', expected YYYY-MM")
        if not 1 <= month <= 12:
            raise BadRequestError(f"Invalid period '{value}', expected YYYY-MM")
        return cls(year, month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def end(self) -> date:
        """First day of the next month (exclusive bound)."""
        if self.month == 12:
            return date(self.year + 1, 1, 1)
        return date(self.year, self.month + 1, 1)

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def __str__(self):
        return self.label


class PeriodCharger:
    def __init__(self, db: Session):
        self.db = db

    # ==================== EXPENSE BUDGETS ====================

    def find_budget_charge(self, budget_id: int, period: Period) -> Optional[ExpenseCharge]:
        return self.db.query(ExpenseCharge).filter(
            ExpenseCharge.budget_id == budget_id,
            ExpenseCharge.period_year == period.year,
            ExpenseCharge.period_month == period.month
        ).first()

    def charge_budget(self, budget: ExpenseBudget, charge_date: date, user_id: int,
                      note: Optional[str] = None) -> ExpenseCharge:
        """Insert the budget's charge for the month of ``charge_date``."""
        if not budget.expense_id:
            raise BadRequestError("Expense is required for a budget")
        amount = to_money(budget.fixed_amount)
        if amount <= 0:
            raise BadRequestError("Budget amount must be greater than zero")

        period = Period.of(charge_date)
        if self.find_budget_charge(budget.id, period) is not None:
            logger.warning("Budget %s already charged for %s", budget.id, period)
            raise DuplicatePeriodChargeError(f"Budget already charged for period {period}")

        charge = ExpenseCharge(
            expense_id=budget.expense_id,
            amount=amount,
            charge_date=charge_date,
            note=note or budget.note,
            budget_id=budget.id,
            period_year=period.year,
            period_month=period.month,
            branch_id=budget.branch_id,
            user_id=user_id,
        )
        self.db.add(charge)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # A concurrent caller inserted the same period first
            logger.warning("Budget %s already charged for %s (constraint)", budget.id, period)
            raise DuplicatePeriodChargeError(f"Budget already charged for period {period}") from exc
        return charge

    def charge_budgets(self, branch_id: int, reg_date: date, oper: ChargeOper, user_id: int) -> List[ExpenseCharge]:
        """
        Charge every active budget of a branch for the month of ``reg_date``.

        ``insert`` refuses a date that already carries budget charges and treats
        any budget already charged for the month as an error. ``auto`` skips
        budgets already charged for the month.
        """
        budgets = self.db.query(ExpenseBudget).filter(
            ExpenseBudget.branch_id == branch_id,
            ExpenseBudget.is_active == True
        ).order_by(ExpenseBudget.id).all()
        if not budgets:
            raise BadRequestError("No expense budgets to charge")

        if oper == ChargeOper.INSERT:
            existing = self.db.query(ExpenseCharge.id).filter(
                ExpenseCharge.branch_id == branch_id,
                ExpenseCharge.budget_id.isnot(None),
                ExpenseCharge.charge_date == reg_date
            ).first()
            if existing is not None:
                logger.warning("Budget charges already registered on %s for branch %s", reg_date, branch_id)
                raise DuplicatePeriodChargeError(f"Budget charges already registered on {reg_date.isoformat()}")

        period = Period.of(reg_date)
        created = []
        for budget in budgets:
            if oper == ChargeOper.AUTO and self.find_budget_charge(budget.id, period) is not None:
                continue
            created.append(self.charge_budget(budget, reg_date, user_id))
        return created

    # ==================== PAYROLL ====================

    def find_run(self, branch_id: int, period: Period) -> Optional[PayrollRun]:
        return self.db.query(PayrollRun).filter(
            PayrollRun.branch_id == branch_id,
            PayrollRun.period_year == period.year,
            PayrollRun.period_month == period.month
        ).first()

    def charge_payroll(self, branch_id: int, period_date: date, oper: ChargeOper,
                       user_id: int) -> List[PayrollLine]:
        """
        Stage one payroll line per active salaried employee for the month.

        With ``insert`` an existing run for the period is a duplicate charge;
        with ``auto`` the run is reused and only employees without a line get
        one.
        """
        employees = self.db.query(Employee).filter(
            Employee.branch_id == branch_id,
            Employee.status == "active",
            Employee.salary_amount > 0
        ).order_by(Employee.id).all()
        if not employees:
            raise BadRequestError("No active employees with a salary to charge")

        period = Period.of(period_date)
        run = self.find_run(branch_id, period)
        if run is not None and oper == ChargeOper.INSERT:
            logger.warning("Payroll for %s already charged in branch %s", period, branch_id)
            raise DuplicatePeriodChargeError(f"Payroll already charged for period {period}")

        if run is None:
            run = PayrollRun(
                period_year=period.year,
                period_month=period.month,
                period_from=period.start,
                period_to=period.last_day,
                status=PayrollStatus.OPEN.value,
                branch_id=branch_id,
                user_id=user_id,
            )
            self.db.add(run)
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise DuplicatePeriodChargeError(f"Payroll already charged for period {period}") from exc

        charged = {
            employee_id for (employee_id,) in self.db.query(PayrollLine.employee_id).filter(
                PayrollLine.payroll_run_id == run.id
            )
        }

        lines = []
        for employee in employees:
            if employee.id in charged:
                continue
            salary = to_money(employee.salary_amount)
            line = PayrollLine(
                payroll_run_id=run.id,
                employee_id=employee.id,
                basic_salary=salary,
                allowances=ZERO,
                deductions=ZERO,
                net_salary=salary,
            )
            self.db.add(line)
            lines.append(line)

        self.db.flush()
        if lines and run.status == PayrollStatus.PAID.value:
            run.status = PayrollStatus.PARTIAL.value
        return lines
