# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Expense, Order, Payment
from ..time_utils import parse_iso_date, utcnow

COMPLETED_STATUS = "delivered"


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _parse_range(start: str | None, end: str | None) -> tuple[date | None, date | None]:
    try:
        start_d = parse_iso_date(start) if start else None
        end_d = parse_iso_date(end) if end else None
    except ValueError:
        raise ReportError("from/to must be dates (YYYY-MM-DD)")
    if start_d and end_d and end_d < start_d:
        raise ReportError("'to' must not be before 'from'")
    return start_d, end_d


def _order_range(query, start_d: date | None, end_d: date | None):
    if start_d:
        query = query.filter(Order.created_at >= datetime.combine(start_d, time.min))
    if end_d:
        query = query.filter(Order.created_at < datetime.combine(end_d + timedelta(days=1), time.min))
    return query


def overview(*, start: str | None = None, end: str | None = None) -> dict:
    """
    Business overview for the stats page.

    - order_count / total_revenue / total_delivery_fees: delivered orders
    - total_expenses: expenses incurred in the range
    - approximate_profit = revenue - delivery fees - expenses
    - orders_by_status: live orders per status
    - total_paid / total_outstanding: confirmed payments vs balance on
      non-cancelled orders
    """
    start_d, end_d = _parse_range(start, end)

    live = db.session.query(Order).filter(Order.deleted_at.is_(None))

    completed = _order_range(
        db.session.query(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_tzs), 0),
            func.coalesce(func.sum(Order.fee_tzs), 0),
        ).filter(Order.deleted_at.is_(None), Order.status == COMPLETED_STATUS),
        start_d, end_d,
    ).one()
    order_count, revenue, fees = int(completed[0]), int(completed[1]), int(completed[2])

    expense_q = db.session.query(func.coalesce(func.sum(Expense.amount_tzs), 0))
    if start_d:
        expense_q = expense_q.filter(Expense.incurred_on >= start_d)
    if end_d:
        expense_q = expense_q.filter(Expense.incurred_on <= end_d)
    expenses = int(expense_q.scalar() or 0)

    by_status_rows = _order_range(
        db.session.query(Order.status, func.count(Order.id)).filter(Order.deleted_at.is_(None)),
        start_d, end_d,
    ).group_by(Order.status).all()

    money = _order_range(
        db.session.query(
            func.coalesce(func.sum(Order.total_tzs), 0),
            func.coalesce(func.sum(Payment.amount_tzs), 0),
        )
        .outerjoin(Payment, Payment.order_id == Order.id)
        .filter(Order.deleted_at.is_(None), Order.status != "cancelled"),
        start_d, end_d,
    ).one()
    billed, paid = int(money[0]), int(money[1])

    return {
        "order_count": order_count,
        "total_revenue": revenue,
        "total_delivery_fees": fees,
        "total_expenses": expenses,
        "approximate_profit": revenue - fees - expenses,
        "orders_by_status": {status: int(count) for status, count in by_status_rows},
        "total_paid": paid,
        "total_outstanding": max(0, billed - paid),
        "open_orders": live.filter(Order.status.in_(("pending", "preparing", "out_for_delivery"))).count(),
    }


def profit_trend(*, days: int = 7, today: date | None = None) -> list[dict]:
    """Daily revenue, fees, expenses and profit for the last `days` days (oldest first)."""
    if days < 1 or days > 366:
        raise ReportError("days must be between 1 and 366")
    today = today or utcnow().date()
    first = today - timedelta(days=days - 1)

    order_rows = (
        db.session.query(
            func.date(Order.created_at),
            func.coalesce(func.sum(Order.total_tzs), 0),
            func.coalesce(func.sum(Order.fee_tzs), 0),
        )
        .filter(
            Order.deleted_at.is_(None),
            Order.status == COMPLETED_STATUS,
            Order.created_at >= datetime.combine(first, time.min),
        )
        .group_by(func.date(Order.created_at))
        .all()
    )
    expense_rows = (
        db.session.query(Expense.incurred_on, func.coalesce(func.sum(Expense.amount_tzs), 0))
        .filter(Expense.incurred_on >= first, Expense.incurred_on <= today)
        .group_by(Expense.incurred_on)
        .all()
    )

    revenue_by_day = {str(d): (int(r), int(f)) for d, r, f in order_rows}
    expense_by_day = {str(d): int(a) for d, a in expense_rows}

    series = []
    for offset in range(days):
        day = (first + timedelta(days=offset)).isoformat()
        revenue, fees = revenue_by_day.get(day, (0, 0))
        spent = expense_by_day.get(day, 0)
        series.append({
            "date": day,
            "revenue": revenue,
            "delivery_fees": fees,
            "expenses": spent,
            "profit": revenue - fees - spent,
        })
    return series
