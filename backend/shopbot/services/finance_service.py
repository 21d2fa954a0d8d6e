# Overview: Service-layer operations for expenses and incomes; encapsulates business logic and database work.

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from ..extensions import db
from ..models import Expense, Income, Order
from ..time_utils import parse_iso_date, utcnow
from . import realtime_service


class FinanceError(Exception):
    """Raised for expense/income operations that cannot proceed."""
    pass


EXPENSE_MUTABLE_FIELDS = {"incurred_on", "category", "amount_tzs", "description"}
INCOME_MUTABLE_FIELDS = {"order_id", "amount_tzs", "source", "description", "recorded_at"}


def _date_bounds(start: str | None, end: str | None) -> tuple[date | None, date | None]:
    try:
        return parse_iso_date(start), parse_iso_date(end)
    except ValueError:
        raise FinanceError("from/to must be dates (YYYY-MM-DD)")


# =============================================================================
# EXPENSES
# =============================================================================

def list_expenses(*, start: str | None = None, end: str | None = None, category: str | None = None) -> dict:
    start_d, end_d = _date_bounds(start, end)
    query = db.session.query(Expense)
    if start_d:
        query = query.filter(Expense.incurred_on >= start_d)
    if end_d:
        query = query.filter(Expense.incurred_on <= end_d)
    if category:
        query = query.filter(Expense.category == category)
    rows = query.order_by(Expense.incurred_on.desc(), Expense.id.desc()).all()
    return {
        "items": [e.to_dict() for e in rows],
        "count": len(rows),
        "total_tzs": sum(e.amount_tzs for e in rows),
    }


def create_expense(*, patch: dict) -> dict:
    expense = Expense()
    for k, v in patch.items():
        if k in EXPENSE_MUTABLE_FIELDS:
            setattr(expense, k, v)
    expense.created_at = utcnow()
    db.session.add(expense)
    db.session.commit()
    return expense.to_dict()


def update_expense(*, expense_id: int, patch: dict) -> dict | None:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        return None
    for k, v in patch.items():
        if k in EXPENSE_MUTABLE_FIELDS:
            setattr(expense, k, v)
    expense.updated_at = utcnow()
    db.session.commit()
    return expense.to_dict()


def delete_expense(*, expense_id: int) -> bool:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        return False
    db.session.delete(expense)
    db.session.commit()
    return True


# =============================================================================
# INCOMES
# =============================================================================

def list_incomes(*, status: str | None = None, source: str | None = None,
                 start: str | None = None, end: str | None = None) -> dict:
    start_d, end_d = _date_bounds(start, end)
    query = db.session.query(Income)
    if status:
        query = query.filter(Income.status == status)
    if source:
        query = query.filter(Income.source == source)
    if start_d:
        query = query.filter(Income.recorded_at >= datetime.combine(start_d, time.min))
    if end_d:
        query = query.filter(Income.recorded_at < datetime.combine(end_d + timedelta(days=1), time.min))
    rows = query.order_by(Income.recorded_at.desc(), Income.id.desc()).all()
    return {
        "items": [i.to_dict() for i in rows],
        "count": len(rows),
        "approved_total_tzs": sum(i.amount_tzs for i in rows if i.status == "approved"),
    }


def create_income(*, patch: dict) -> dict:
    if patch.get("order_id") is not None and db.session.get(Order, patch["order_id"]) is None:
        raise FinanceError("Order not found")
    now = utcnow()
    income = Income(status="pending", source="manual", created_at=now, recorded_at=now)
    for k, v in patch.items():
        if k in INCOME_MUTABLE_FIELDS and v is not None:
            setattr(income, k, v)
    db.session.add(income)
    db.session.commit()
    return income.to_dict()


def update_income(*, income_id: int, patch: dict) -> dict | None:
    income = db.session.get(Income, income_id)
    if income is None:
        return None
    if income.status != "pending":
        raise FinanceError(f"Cannot edit an {income.status} income")
    for k, v in patch.items():
        if k in INCOME_MUTABLE_FIELDS:
            setattr(income, k, v)
    income.updated_at = utcnow()
    db.session.commit()
    return income.to_dict()


def delete_income(*, income_id: int) -> bool:
    income = db.session.get(Income, income_id)
    if income is None:
        return False
    db.session.delete(income)
    db.session.commit()
    return True


def set_income_status(*, income_id: int, status: str) -> dict | None:
    """pending -> approved | rejected; decided incomes are final."""
    if status not in ("approved", "rejected"):
        raise FinanceError("status must be approved or rejected")
    income = db.session.get(Income, income_id)
    if income is None:
        return None
    if income.status != "pending":
        raise FinanceError(f"Income is already {income.status}")
    now = utcnow()
    income.status = status
    if status == "approved":
        income.approved_at = now
    else:
        income.rejected_at = now
    income.updated_at = now
    db.session.commit()
    if income.order_id:
        realtime_service.emit(realtime_service.ORDERS_UPDATED, {"order_id": income.order_id})
    return income.to_dict()
