from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Product master data with the derived on-hand quantity.

    MULTI-TENANT: Products are scoped to shops via shop_id.

    STOCK INVARIANT:
    stock_qty equals the fold of this product's stock_movements (oldest to
    newest). Direct writes may break it temporarily; the reconciliation
    passes restore it.

    CONCURRENCY:
    version_id is an optimistic-lock column. A stale read-modify-write of
    stock_qty raises StaleDataError on flush instead of losing an update.
    """
    __tablename__ = "products"
    __table_args__ = (
        # SKU is optional, but unique within a shop when present
        db.UniqueConstraint("shop_id", "sku", name="uq_products_shop_sku"),
        db.Index("ix_products_shop_name", "shop_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_qty = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    # Python-side default keeps sub-second precision; initial movements reuse it
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    shop = db.relationship("Shop", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} shop_id={self.shop_id} stock_qty={self.stock_qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "name": self.name,
            "sku": self.sku,
            "price_cents": self.price_cents,
            "stock_qty": self.stock_qty,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    quantity is signed (positive = stock in). stock_before/stock_after are
    running-total snapshots; only the reconciliation passes rewrite them.

    IDEMPOTENCE:
    (product_id, reference_type, reference_id, reference_line) is unique, so a
    transaction line can be applied to a product at most once even when two
    writers race past the application-level check. NULL reference columns
    (initial stock, manual adjustments) never collide.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_product_created", "product_id", "created_at"),
        db.Index("ix_movements_reference", "reference_type", "reference_id"),
        db.UniqueConstraint(
            "product_id", "reference_type", "reference_id", "reference_line",
            name="uq_movements_product_reference_line",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    # initial, sale, purchase, restock, opname, cancel_return, adjustment
    type = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    stock_before = db.Column(db.Integer, nullable=False, default=0)
    stock_after = db.Column(db.Integer, nullable=False, default=0)

    reference_type = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    reference_line = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} type={self.type!r} "
            f"quantity={self.quantity} {self.stock_before}->{self.stock_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "shop_id": self.shop_id,
            "type": self.type,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_line": self.reference_line,
            "user_id": self.user_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
