from datetime import datetime
from decimal import Decimal

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from stockbook.extensions import db


def _money(value) -> float:
    if value is None:
        return 0.0
    return float(Decimal(value))


def _iso(value) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def stock_status(quantity, threshold: int = 1) -> str:
    return "In Stock" if int(quantity or 0) >= threshold else "Out of Stock"


class InvoiceStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    RETURNED = "RETURNED"
    UPDATED = "UPDATED"

    # statuses a client may request when creating an invoice
    CREATABLE = (PENDING, PAID)
    ALL_STATUSES = [PENDING, PAID, RETURNED, UPDATED]


class Currency:
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    PKR = "PKR"
    INR = "INR"
    CAD = "CAD"

    ALL_CURRENCIES = (USD, EUR, GBP, PKR, INR, CAD)


class MovementType:
    SALE = "SALE"
    RETURN = "RETURN"
    EDIT = "EDIT"
    ADJUST = "ADJUST"


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    business = db.relationship(
        "Business",
        back_populates="owner",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.username}>"


class Business(db.Model):
    __tablename__ = "business"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(
        db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    business_name = db.Column(db.String(255), nullable=False)
    business_type = db.Column(db.String(120))
    business_address = db.Column(db.String(500))
    business_phone = db.Column(db.String(64))
    business_email = db.Column(db.String(255))
    business_ein = db.Column(db.String(64))
    business_vat = db.Column(db.String(64))
    business_logo = db.Column(db.String(1024))
    return_policy = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    owner = db.relationship("User", back_populates="business")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "business_name": self.business_name,
            "business_type": self.business_type,
            "business_address": self.business_address,
            "business_phone": self.business_phone,
            "business_email": self.business_email,
            "business_ein": self.business_ein,
            "business_vat": self.business_vat,
            "business_logo": self.business_logo,
            "return_policy": self.return_policy,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Stock(db.Model):
    __tablename__ = "stock"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "barcode", name="uq_stock_owner_barcode"),
        db.UniqueConstraint("owner_id", "sku", name="uq_stock_owner_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(
        db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    barcode = db.Column(db.String(128), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(120))
    sub_category = db.Column(db.String(120))
    quantity = db.Column(db.Integer, nullable=False, default=0)
    stock_rate = db.Column(db.Numeric(12, 2), nullable=False, default=0)  # purchase cost
    selling_rate = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    vat_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    supplier = db.Column(db.String(255))
    stock_location = db.Column(db.String(255))
    discount_allowed = db.Column(db.Boolean, nullable=False, default=False)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)
    purchase_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def to_dict(self, *, in_stock_threshold: int = 1) -> dict:
        return {
            "id": self.id,
            "barcode": self.barcode,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "sub_category": self.sub_category,
            "status": stock_status(self.quantity, in_stock_threshold),
            "quantity": int(self.quantity or 0),
            "stock_rate": _money(self.stock_rate),
            "selling_rate": _money(self.selling_rate),
            "vat_percent": _money(self.vat_percent),
            "supplier": self.supplier,
            "stock_location": self.stock_location,
            "discount_allowed": bool(self.discount_allowed),
            "reorder_level": int(self.reorder_level or 0),
            "purchase_date": _iso(self.purchase_date),
            "expiry_date": _iso(self.expiry_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Invoice(db.Model):
    __tablename__ = "invoice"
    __table_args__ = (
        db.UniqueConstraint(
            "owner_id", "invoice_number", name="uq_invoice_owner_number"
        ),
        db.CheckConstraint("invoice_number > 0", name="ck_invoice_number_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(
        db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_number = db.Column(db.Integer, nullable=False)
    invoice_name = db.Column(db.String(255))
    client_name = db.Column(db.String(255), nullable=False)
    client_email = db.Column(db.String(255), nullable=False)
    client_address = db.Column(db.String(500), nullable=False)
    from_name = db.Column(db.String(255))
    from_email = db.Column(db.String(255))
    from_address = db.Column(db.String(500))
    currency = db.Column(db.String(3), nullable=False, default=Currency.USD)
    date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=InvoiceStatus.PENDING)
    total = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    note = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
    returned_at = db.Column(db.DateTime, nullable=True)

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    @property
    def reference(self) -> str:
        return f"INV-{self.invoice_number}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_name": self.invoice_name,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_address": self.client_address,
            "from_name": self.from_name,
            "from_email": self.from_email,
            "from_address": self.from_address,
            "currency": self.currency,
            "date": _iso(self.date),
            "status": self.status,
            "total": _money(self.total),
            "note": self.note,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "returned_at": _iso(self.returned_at),
            "items": [item.to_dict() for item in self.items],
        }


class InvoiceItem(db.Model):
    __tablename__ = "invoice_item"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_item_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # reference only; a deleted stock leaves the sale line in place
    stock_id = db.Column(
        db.Integer, db.ForeignKey("stock.id", ondelete="SET NULL"), nullable=True, index=True
    )
    quantity = db.Column(db.Integer, nullable=False)
    rate = db.Column(db.Numeric(12, 2), nullable=False)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    vat_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    invoice = db.relationship("Invoice", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_id": self.stock_id,
            "quantity": int(self.quantity),
            "rate": _money(self.rate),
            "discount": _money(self.discount),
            "vat_percent": _money(self.vat_percent),
            "line_total": _money(self.line_total),
        }


class StockMovement(db.Model):
    __tablename__ = "stock_movement"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(
        db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stock_id = db.Column(
        db.Integer, db.ForeignKey("stock.id", ondelete="SET NULL"), nullable=True, index=True
    )
    quantity = db.Column(db.Integer, nullable=False)  # signed delta
    movement_type = db.Column(db.String(16), nullable=False)  # SALE, RETURN, EDIT, ADJUST
    reference = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
