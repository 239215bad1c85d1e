"""Checkout audit log.

Append-only: one row per checkout attempt by an authenticated user,
successful or not. Unauthenticated requests are never logged (there is
no user to attribute them to).
"""

import uuid
from datetime import datetime, timezone

from shop2give.extensions import db


class CheckoutLog(db.Model):
    __tablename__ = "checkout_logs"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), nullable=False, index=True)
    success = db.Column(db.Boolean, nullable=False)
    error_message = db.Column(db.Text, nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<CheckoutLog {self.user_id} success={self.success}>"
