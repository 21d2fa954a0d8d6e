from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Expense(db.Model):
    """Operating expense entered by staff."""
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    incurred_on = db.Column(db.Date, nullable=False, index=True)
    category = db.Column(db.String(64), nullable=False)
    amount_tzs = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "incurred_on": self.incurred_on.isoformat() if self.incurred_on else None,
            "category": self.category,
            "amount_tzs": self.amount_tzs,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Income(db.Model):
    """
    Income entry. Confirmed order payments create approved 'order' incomes;
    staff can record 'manual' incomes that go through approval.
    """
    __tablename__ = "incomes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    amount_tzs = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    source = db.Column(db.String(16), nullable=False, default="manual")
    description = db.Column(db.Text, nullable=True)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_tzs": self.amount_tzs,
            "status": self.status,
            "source": self.source,
            "description": self.description,
            "recorded_at": to_utc_z(self.recorded_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
