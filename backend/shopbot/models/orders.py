from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order created by the chatbot checkout or manually by an admin.

    LIFECYCLE: pending -> preparing -> out_for_delivery -> delivered, or cancelled.
    stock_deducted records whether product stock was taken for this order so
    a cancel can restore it exactly once.

    SOFT DELETE: deleted_at set; rows are hidden from listings, never removed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    order_code = db.Column(db.String(32), nullable=True, unique=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    delivery_mode = db.Column(db.String(16), nullable=False, default="delivery")
    payment_mode = db.Column(db.String(16), nullable=True)  # prepay, cod

    # Amounts in whole TZS
    km = db.Column(db.Float, nullable=True)
    fee_tzs = db.Column(db.Integer, nullable=False, default=0)
    total_tzs = db.Column(db.Integer, nullable=False, default=0)

    phone = db.Column(db.String(32), nullable=True)
    region = db.Column(db.String(128), nullable=True)
    lat = db.Column(db.Float, nullable=True)
    lon = db.Column(db.Float, nullable=True)
    delivery_agent_phone = db.Column(db.String(32), nullable=True)

    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def subtotal_tzs(self) -> int:
        return sum(i.qty * i.unit_price_tzs for i in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "order_code": self.order_code,
            "status": self.status,
            "delivery_mode": self.delivery_mode,
            "payment_mode": self.payment_mode,
            "km": self.km,
            "fee_tzs": self.fee_tzs,
            "total_tzs": self.total_tzs,
            "phone": self.phone,
            "region": self.region,
            "lat": self.lat,
            "lon": self.lon,
            "delivery_agent_phone": self.delivery_agent_phone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Line item; name and unit price are snapshots taken at order time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    qty = db.Column(db.Integer, nullable=False)
    unit_price_tzs = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "qty": self.qty,
            "unit_price_tzs": self.unit_price_tzs,
            "line_total_tzs": self.qty * self.unit_price_tzs,
        }


class Payment(db.Model):
    """
    Aggregated payment record for an order (one row per order).

    amount_tzs is the running total of confirmed installments.

    STATUS: awaiting -> verifying -> paid | failed
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    method = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(255), nullable=True)
    proof_url = db.Column(db.String(512), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="awaiting", index=True)
    amount_tzs = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payment", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "reference": self.reference,
            "proof_url": self.proof_url,
            "status": self.status,
            "amount_tzs": self.amount_tzs,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentInstallment(db.Model):
    """Immutable record of one confirmed installment against a payment."""
    __tablename__ = "payment_installments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    amount_tzs = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship("Payment", backref=db.backref("installments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "amount_tzs": self.amount_tzs,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
