"""
Read-only invoice aggregate handed to the PDF layer.

get_invoice_for_render() resolves everything the layout needs (customer, ordered
line items) so pdf_service never touches the database.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import selectinload

from errors import NotFoundError
from models import SalesInvoice

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CustomerInfo:
    contact_name: str
    business_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state_province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def address_parts(self) -> list[str]:
        parts = [
            self.address_line1, self.address_line2, self.city,
            self.state_province, self.postal_code, self.country,
        ]
        return [p.strip() for p in parts if p and p.strip()]

    def bill_to_lines(self) -> list[str]:
        """One entry per present field, address parts joined into a single entry."""
        lines = []
        if self.business_name and self.business_name.strip():
            lines.append(self.business_name.strip())
        lines.append(self.contact_name)
        for v in (self.email, self.phone):
            if v and v.strip():
                lines.append(v.strip())
        addr = self.address_parts()
        if addr:
            lines.append(", ".join(addr))
        return lines


@dataclass(frozen=True)
class LineItemDoc:
    product_name: str
    quantity: Decimal
    unit_price: Decimal
    sku: Optional[str] = None
    details: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class InvoiceDocument:
    invoice_number: str
    status: str
    created_at: date
    due_date: Optional[date] = None
    customer: Optional[CustomerInfo] = None
    line_items: tuple[LineItemDoc, ...] = field(default_factory=tuple)
    tax_rate: Decimal = Decimal("0")
    tax_exempt: bool = False
    shipping_cost: Decimal = Decimal("0")
    notes: Optional[str] = None

    def totals(self) -> InvoiceTotals:
        return compute_totals(self)

    @property
    def pdf_filename(self) -> str:
        return f"{self.invoice_number}.pdf"


def to_decimal(value) -> Decimal:
    """Floats go through str() so 15.0 stays 15.0 rather than its binary expansion."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_totals(invoice: InvoiceDocument) -> InvoiceTotals:
    subtotal = sum((li.line_total for li in invoice.line_items), Decimal("0"))
    shipping = invoice.shipping_cost or Decimal("0")
    tax = Decimal("0") if invoice.tax_exempt else subtotal * invoice.tax_rate
    return InvoiceTotals(
        subtotal=subtotal,
        shipping_cost=shipping,
        tax_amount=tax,
        total=subtotal + shipping + tax,
    )


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    amount = round_money(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_quantity(value) -> str:
    q = to_decimal(value)
    if q == q.to_integral_value():
        return str(int(q))
    return format(q.normalize(), "f")


def format_percent(rate) -> str:
    pct = (to_decimal(rate) * 100).normalize()
    if pct == pct.to_integral_value():
        return f"{int(pct)}%"
    return f"{format(pct, 'f')}%"


def format_date(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%d/%m/%Y")


# -----------------------------
# Invoice Data Provider
# -----------------------------
def document_from_invoice(inv: SalesInvoice) -> InvoiceDocument:
    customer = None
    c = inv.customer
    if c is not None:
        customer = CustomerInfo(
            contact_name=c.contact_name,
            business_name=c.business_name,
            email=c.email,
            phone=c.phone,
            address_line1=c.address_line1,
            address_line2=c.address_line2,
            city=c.city,
            state_province=c.state_province,
            postal_code=c.postal_code,
            country=c.country,
        )

    items = tuple(
        LineItemDoc(
            product_name=li.product_name or "",
            quantity=to_decimal(li.quantity),
            unit_price=to_decimal(li.unit_price),
            sku=(li.sku or None),
            details=(li.details or None),
        )
        for li in sorted(inv.line_items, key=lambda li: li.id or 0)
    )

    created = inv.created_at or datetime.utcnow()
    return InvoiceDocument(
        invoice_number=inv.invoice_number,
        status=inv.status or "draft",
        created_at=created.date() if isinstance(created, datetime) else created,
        due_date=inv.due_date,
        customer=customer,
        line_items=items,
        tax_rate=to_decimal(inv.tax_rate),
        tax_exempt=bool(inv.tax_exempt),
        shipping_cost=to_decimal(inv.shipping_cost),
        notes=(inv.notes or None),
    )


def get_invoice_for_render(session, invoice_id: int) -> InvoiceDocument:
    inv = (
        session.query(SalesInvoice)
        .options(selectinload(SalesInvoice.line_items), selectinload(SalesInvoice.customer))
        .filter(SalesInvoice.id == invoice_id)
        .first()
    )
    if not inv:
        raise NotFoundError(f"Invoice not found: id={invoice_id}")
    return document_from_invoice(inv)
