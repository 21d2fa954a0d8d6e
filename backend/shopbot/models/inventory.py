from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog product sold through the chatbot.

    stock_qty is the on-hand quantity; the bot refuses products at 0.
    An optional single discount (percentage or fixed TZS) applies while
    the current time is inside [discount_starts_at, discount_ends_at].
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    price_tzs = db.Column(db.Integer, nullable=False, default=0)
    stock_qty = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    short_description = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    usage_instructions = db.Column(db.Text, nullable=True)
    warnings = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    discount_type = db.Column(db.String(16), nullable=True)  # percentage, fixed
    discount_amount = db.Column(db.Integer, nullable=True)
    discount_starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    discount_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def discount_active(self, now=None) -> bool:
        if not self.discount_type or not self.discount_amount:
            return False
        now = now or utcnow()
        if self.discount_starts_at and now < self.discount_starts_at.replace(tzinfo=None):
            return False
        if self.discount_ends_at and now > self.discount_ends_at.replace(tzinfo=None):
            return False
        return True

    def effective_price_tzs(self, now=None) -> int:
        price = self.price_tzs or 0
        if not self.discount_active(now):
            return price
        if self.discount_type == "percentage":
            return max(0, round(price * (100 - self.discount_amount) / 100))
        return max(0, price - self.discount_amount)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_tzs": self.price_tzs,
            "effective_price_tzs": self.effective_price_tzs(),
            "stock_qty": self.stock_qty,
            "is_active": bool(self.is_active),
            "short_description": self.short_description,
            "description": self.description,
            "usage_instructions": self.usage_instructions,
            "warnings": self.warnings,
            "image_url": self.image_url,
            "discount_type": self.discount_type,
            "discount_amount": self.discount_amount,
            "discount_starts_at": to_utc_z(self.discount_starts_at),
            "discount_ends_at": to_utc_z(self.discount_ends_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RestockSubscription(db.Model):
    """Customer asked to be told when an out-of-stock product returns."""
    __tablename__ = "restock_subscriptions"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "product_id", name="uq_restock_customer_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="subscribed")  # subscribed, notified, unsubscribed
    lang = db.Column(db.String(8), nullable=False, default="sw")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    notified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer")
    product = db.relationship("Product")
