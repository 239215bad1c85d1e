"""Catalog cache models.

- Product: local mirror of a Stripe product, keyed by stripe_product_id.
- Price: local mirror of a Stripe price. Amount and currency never change
  after creation (Stripe prices are immutable); only metadata is patched.

Stripe is the system of record. Rows here are written only after the
matching Stripe call succeeded.
"""

import uuid

from shop2give.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_product_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "prod_Nf..."
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    campaign_id = db.Column(db.String(255), nullable=True, index=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid SQLAlchemy's reserved attribute
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    prices = db.relationship(
        "Price",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="Price.unit_amount",
    )

    def to_dict(self, include_prices=True):
        data = {
            "id": self.id,
            "stripe_product_id": self.stripe_product_id,
            "name": self.name,
            "description": self.description,
            "campaign_id": self.campaign_id,
            "active": self.active,
            "metadata": self.metadata_ or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_prices:
            data["prices"] = [price.to_dict() for price in self.prices]
        return data

    def __repr__(self):
        return f"<Product {self.stripe_product_id} ({self.name})>"


class Price(db.Model):
    __tablename__ = "prices"

    INTERVALS = ["day", "week", "month", "year"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_price_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "price_1N..."
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id"), nullable=False, index=True
    )
    unit_amount = db.Column(db.Integer, nullable=False)  # minor units (cents)
    currency = db.Column(db.String(3), nullable=False)  # ISO 4217, lowercase
    recurring_interval = db.Column(db.String(10), nullable=True)  # day | week | month | year
    recurring_interval_count = db.Column(db.Integer, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    product = db.relationship("Product", back_populates="prices")

    def to_dict(self):
        return {
            "id": self.id,
            "stripe_price_id": self.stripe_price_id,
            "product_id": self.product_id,
            "unit_amount": self.unit_amount,
            "currency": self.currency,
            "recurring_interval": self.recurring_interval,
            "recurring_interval_count": self.recurring_interval_count,
            "active": self.active,
            "metadata": self.metadata_ or {},
        }

    def __repr__(self):
        return f"<Price {self.stripe_price_id} {self.unit_amount} {self.currency}>"
