from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import (
    create_engine,
    String,
    Integer,
    Float,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    sessionmaker,
)

INVOICE_STATUSES = ("draft", "sent", "paid", "cancelled")
QUEUE_STATUSES = ("pending", "printing", "completed", "cancelled")
USER_ROLES = ("user", "admin")


# -----------------------------
# SQLAlchemy base
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Tables
# -----------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    contact_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    address_line1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    state_province: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    country: Mapped[str] = mapped_column(String(120), nullable=False, default="New Zealand")
    notes: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "businessName": self.business_name,
            "contactName": self.contact_name,
            "email": self.email,
            "phone": self.phone,
            "addressLine1": self.address_line1,
            "addressLine2": self.address_line2,
            "city": self.city,
            "stateProvince": self.state_province,
            "postalCode": self.postal_code,
            "country": self.country,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True, index=True)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    units_sold: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sku": self.sku,
            "unitPrice": self.unit_price,
            "unitsSold": self.units_sold,
            "active": self.active,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class InvoiceSequence(Base):
    """
    Stores the last used sequence number per invoice prefix.
    Used to generate invoice_number like: INV-0001.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (UniqueConstraint("prefix", name="uq_invoice_sequences_prefix"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    prefix: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class SalesInvoice(Base):
    __tablename__ = "sales_invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Human-friendly invoice number: INV-0001
    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    tax_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.07)
    tax_exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shipping_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    notes: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer: Mapped[Optional["Customer"]] = relationship()
    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.id",
    )

    # Convenience totals (computed, not stored; unrounded)
    def subtotal(self) -> float:
        return sum((li.quantity or 0.0) * (li.unit_price or 0.0) for li in self.line_items)

    def tax_amount(self) -> float:
        return 0.0 if self.tax_exempt else self.subtotal() * (self.tax_rate or 0.0)

    def invoice_total(self) -> float:
        return self.subtotal() + (self.shipping_cost or 0.0) + self.tax_amount()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "customerId": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "status": self.status,
            "taxRate": self.tax_rate,
            "taxExempt": self.tax_exempt,
            "shippingCost": self.shipping_cost,
            "notes": self.notes,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "sentAt": _iso(self.sent_at),
            "lineItems": [li.to_dict() for li in self.line_items],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("sales_invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id: Mapped[Optional[int]] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    product_name: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    queue_item_id: Mapped[Optional[int]] = mapped_column(ForeignKey("queue_items.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    invoice: Mapped["SalesInvoice"] = relationship(back_populates="line_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoiceId": self.invoice_id,
            "productId": self.product_id,
            "productName": self.product_name,
            "sku": self.sku,
            "details": self.details,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "queueItemId": self.queue_item_id,
            "createdAt": _iso(self.created_at),
        }


class QueueItem(Base):
    __tablename__ = "queue_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_name: Mapped[str] = mapped_column(String(300), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # No FK: the line item already links here, and a cycle would complicate create_all on Postgres
    invoice_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productName": self.product_name,
            "sku": self.sku,
            "details": self.details,
            "quantity": self.quantity,
            "position": self.position,
            "status": self.status,
            "invoiceId": self.invoice_id,
            "priority": self.priority,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


# -----------------------------
# Engine / Session factory
# -----------------------------
def make_engine(db_url: str, echo: bool = False):
    """
    Create SQLAlchemy engine.
    Note: SQLite path must exist (instance/ folder). db_init.py creates it.
    """
    return create_engine(db_url, echo=echo, future=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


# -----------------------------
# Invoice number generator
# -----------------------------
def next_invoice_number(session, prefix: str = "INV", seq_width: int = 4) -> str:
    """
    Returns next invoice number like INV-0001.
    Uses a per-prefix counter in invoice_sequences.

    Numbers already present on an invoice (e.g. imported with an explicit
    number) are skipped, so the counter never hands out a taken number.

    In Postgres this is safe under concurrency when run inside a transaction.
    In SQLite, writes are serialized, so it's also effectively safe.
    """
    seq_row = session.execute(
        select(InvoiceSequence).where(InvoiceSequence.prefix == prefix)
    ).scalar_one_or_none()

    if seq_row is None:
        seq_row = InvoiceSequence(prefix=prefix, last_seq=0)
        session.add(seq_row)
        session.flush()

    while True:
        seq_row.last_seq += 1
        number = f"{prefix}-{seq_row.last_seq:0{seq_width}d}"
        taken = session.execute(
            select(SalesInvoice.id).where(SalesInvoice.invoice_number == number)
        ).first()
        if taken is None:
            break
    session.flush()

    return number


# -----------------------------
# SKU suggestions
# -----------------------------
def sku_prefix(name: str) -> str:
    """
    First letter of each word that contains a letter, uppercased.
    "3D Printed Phone Stand" -> "DPPS"
    """
    words = [w for w in re.split(r"[\s\-_]+", name or "") if re.search(r"[a-zA-Z]", w)]
    letters = "".join(re.sub(r"[^a-zA-Z]", "", w)[:1] for w in words)
    return letters.upper() or "SKU"


def suggest_sku(name: str, existing_skus: Iterable[str]) -> str:
    """
    Next free SKU for a product name, given the SKUs already in use.
    Numbering continues from the highest existing suffix for the same prefix.
    """
    prefix = sku_prefix(name)
    highest = 0
    for sku in existing_skus:
        if not sku or not sku.startswith(f"{prefix}-"):
            continue
        tail = sku.rsplit("-", 1)[-1]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return f"{prefix}-{highest + 1:03d}"
