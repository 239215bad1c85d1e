"""Rate limit storage.

Two layouts, one per limiter strategy:
- RateLimitEvent: one row per request (sliding window, counted over the
  trailing window).
- RateLimitCounter: one row per "name:identifier" key holding a count and
  the moment the fixed window resets.
"""

import uuid

from shop2give.extensions import db


class RateLimitEvent(db.Model):
    __tablename__ = "api_rate_limits"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)  # endpoint name
    identifier = db.Column(db.String(255), nullable=False)  # user id or IP
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        db.Index("ix_api_rate_limits_lookup", "name", "identifier", "timestamp"),
    )

    def __repr__(self):
        return f"<RateLimitEvent {self.name}:{self.identifier}>"


class RateLimitCounter(db.Model):
    __tablename__ = "rate_limits"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    key = db.Column(db.String(512), unique=True, nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0)
    reset_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<RateLimitCounter {self.key}={self.count}>"
