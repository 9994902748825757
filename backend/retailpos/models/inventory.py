from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockIn(db.Model):
    """
    Restock ("purchase") from a supplier.

    Credits Product.stock_quantity and carries one expense PaymentRecord
    (reference_type="purchase"). stock_in_code is STK-YYYY-NNNNNN, assigned
    from the id after insert.
    """
    __tablename__ = "stock_ins"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    stock_in_code = db.Column(db.String(64), nullable=False, unique=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    received_date = db.Column(db.Date, nullable=False)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    remarks = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_in_code": self.stock_in_code,
            "supplier_id": self.supplier_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "received_date": self.received_date.isoformat() if self.received_date else None,
            "received_by": self.received_by,
            "remarks": self.remarks,
            "created_at": to_utc_z(self.created_at),
        }


class StockOut(db.Model):
    """Manual stock deduction (damage, loss, internal use)."""
    __tablename__ = "stock_outs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    recorded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "recorded_by": self.recorded_by,
            "created_at": to_utc_z(self.created_at),
        }
