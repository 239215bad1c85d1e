"""Campaign model.

Campaign content is owned by the front end; this service only needs to
know which campaigns exist and which are active so the seeder can give
each one a donation product.
"""

import uuid

from shop2give.extensions import db


class Campaign(db.Model):
    __tablename__ = "campaigns"

    STATUSES = ["draft", "active", "paused", "completed", "cancelled", "deleted", "example"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    title = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft")
    owner_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {"id": self.id, "title": self.title, "status": self.status}

    def __repr__(self):
        return f"<Campaign {self.title} ({self.status})>"
