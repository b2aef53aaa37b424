from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Transaction(db.Model):
    """
    Completed checkout record.

    The stock ledger consumes these and never edits them: line items are a
    JSON list of {product_id, quantity, price} and only status='completed'
    rows drive sale movements.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_shop_status_created", "shop_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    user_id = db.Column(db.Integer, nullable=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    items = db.Column(db.JSON, nullable=False, default=list)

    # All amounts in cents
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    shop = db.relationship("Shop", backref=db.backref("transactions", lazy=True))

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} shop_id={self.shop_id} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "items": list(self.items or []),
            "total_amount": self.total_amount,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
