from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    One checkout: header plus ordered SaleItem lines.

    LIFECYCLE:
    - Cash checkout creates the sale directly as status=paid/payment_status=paid.
    - QR checkout creates status=pending/payment_status=unpaid with a
      pending_payment_reference; reconciliation moves it to paid exactly once.
    - A sale never moves back from paid to pending.

    invoice_number is assigned after insert from the sale's own id
    (INV-YYYY-NNNNNN); a unique placeholder is stored until then.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_payment_status", "status", "payment_status"),
        db.Index("ix_sales_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sold_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    invoice_number = db.Column(db.String(64), nullable=False, unique=True)

    # Amounts in cents; total is the exact sum of line totals
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False)  # Cash, QR
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")  # unpaid, partial, paid
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, paid

    # QR path only: gateway confirmation key (lookup handle) and payload
    pending_payment_reference = db.Column(db.String(64), nullable=True, unique=True)
    qr_payload = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    seller = db.relationship("User", foreign_keys=[sold_by])
    items = db.relationship("SaleItem", back_populates="sale", lazy=True, order_by="SaleItem.id")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "sold_by": self.sold_by,
            "invoice_number": self.invoice_number,
            "total_amount_cents": self.total_amount_cents,
            "discount_cents": self.discount_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "pending_payment_reference": self.pending_payment_reference,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale.

    unit_price_cents is a snapshot taken at checkout; later catalog price
    changes never touch it. line_total_cents = quantity * unit_price_cents
    - discount_amount_cents.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_percent": str(self.discount_percent),
            "discount_amount_cents": self.discount_amount_cents,
            "line_total_cents": self.line_total_cents,
        }


class PaymentRecord(db.Model):
    """
    Append-only ledger of money movements.

    REFERENCE: (reference_type, reference_id) points at a Sale ("sale") or a
    StockIn ("purchase"). Build references with payment_service.sale_reference /
    purchase_reference rather than raw strings.

    At most one record exists per sale; reconciliation checks before inserting.
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        db.Index("ix_payment_records_reference", "reference_type", "reference_id"),
        db.Index("ix_payment_records_payment_date", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference_type = db.Column(db.String(16), nullable=False)  # sale, purchase
    reference_id = db.Column(db.Integer, nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_type = db.Column(db.String(16), nullable=False)  # income, expense
    payment_method = db.Column(db.String(32), nullable=False)
    paid_to_from = db.Column(db.String(255), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    bill_number = db.Column(db.String(64), nullable=True)
    recorded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="completed")

    # External transaction reference reported by the gateway (QR path)
    confirmation_reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "amount_cents": self.amount_cents,
            "payment_type": self.payment_type,
            "payment_method": self.payment_method,
            "paid_to_from": self.paid_to_from,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "bill_number": self.bill_number,
            "recorded_by": self.recorded_by,
            "status": self.status,
            "confirmation_reference": self.confirmation_reference,
            "created_at": to_utc_z(self.created_at),
        }
