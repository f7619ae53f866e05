# import_csv.py
"""
Bulk import from CSV.

    python import_csv.py customers customers.csv
    python import_csv.py products products.csv
    python import_csv.py invoices invoices.csv
    python import_csv.py line-items line_items.csv

Column order doesn't matter: headers are normalised (lowercase, spaces to
underscores, punctuation dropped) and looked up through alias lists.
Rows that fail to parse are quarantined and listed at the end with their
row number and reason; nothing is guessed.
"""
import argparse
import csv
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from config import Config
from models import (
    Base, make_engine, make_session_factory,
    Customer, Product, SalesInvoice, InvoiceLineItem,
    INVOICE_STATUSES, next_invoice_number,
)

ENTITIES = ("customers", "products", "invoices", "line-items")

TRUE_VALUES = {"true", "yes", "y", "1", "active"}
FALSE_VALUES = {"false", "no", "n", "0", "inactive"}

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%d-%m-%Y", "%B %d, %Y", "%b %d, %Y")

# Header aliases, most specific first
CUSTOMER_ALIASES = {
    "contact_name": ("contact_name", "name", "full_name", "customer_name", "contact"),
    "business_name": ("business_name", "company", "company_name", "business", "organisation", "organization"),
    "email": ("email", "email_address"),
    "phone": ("phone", "phone_number", "telephone", "mobile", "cell"),
    "address_line1": ("address_line1", "address1", "address", "street", "street_address"),
    "address_line2": ("address_line2", "address2", "suite", "apt", "unit"),
    "city": ("city", "town", "suburb"),
    "state_province": ("state_province", "state", "province", "region"),
    "postal_code": ("postal_code", "zip", "zip_code", "postcode"),
    "country": ("country",),
    "notes": ("notes", "comments", "additional_notes"),
}

PRODUCT_ALIASES = {
    "name": ("name", "product_name", "item_name", "product", "title", "item"),
    "description": ("description", "desc", "details", "product_description"),
    "sku": ("sku", "item_code", "product_code", "code", "part_number"),
    "unit_price": ("unit_price", "price", "unit_cost", "cost", "amount", "rate"),
    "active": ("active", "is_active", "enabled", "status"),
}

INVOICE_ALIASES = {
    "invoice_number": ("invoice_number", "invoice_no", "inv_number", "inv_no", "number"),
    "customer_name": ("customer_name", "customer", "client", "client_name", "bill_to", "billed_to"),
    "customer_email": ("customer_email", "client_email"),
    "status": ("status", "invoice_status"),
    "tax_rate": ("tax_rate", "tax", "tax_percent", "vat", "gst", "sales_tax"),
    "tax_exempt": ("tax_exempt", "exempt", "tax_free"),
    "shipping": ("shipping", "shipping_cost", "freight", "delivery"),
    "due_date": ("due_date", "due", "payment_due", "due_by"),
    "notes": ("notes", "comments", "memo", "description"),
    "item_name": ("item_name", "product_name", "item", "product", "description", "service"),
    "quantity": ("quantity", "qty", "units"),
    "unit_price": ("unit_price", "price", "rate", "unit_cost", "amount"),
    "sku": ("sku", "item_code", "product_code"),
}

LINE_ITEM_ALIASES = {
    "invoice_number": ("invoice_number", "invoice_no", "inv_number", "number"),
    "product_name": ("product_name", "item_name", "name", "description", "item", "product"),
    "sku": ("sku", "item_code", "product_code"),
    "details": ("details", "description", "notes"),
    "quantity": ("quantity", "qty", "units"),
    "unit_price": ("unit_price", "price", "rate", "unit_cost", "amount"),
}


class RowError(ValueError):
    pass


# -----------------------------
# Typed rows
# -----------------------------
@dataclass
class CustomerRow:
    contact_name: str
    business_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state_province: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = Config.DEFAULT_COUNTRY
    notes: Optional[str] = None


@dataclass
class ProductRow:
    name: str
    unit_price: float = 0.0
    description: Optional[str] = None
    sku: Optional[str] = None
    active: bool = True


@dataclass
class InvoiceRow:
    invoice_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    status: str = "draft"
    tax_rate: float = Config.DEFAULT_TAX_RATE
    tax_exempt: bool = False
    shipping_cost: float = 0.0
    due_date: Optional[date] = None
    notes: Optional[str] = None
    item_name: Optional[str] = None
    item_quantity: float = 1.0
    item_price: Optional[float] = None
    item_sku: Optional[str] = None


@dataclass
class LineItemRow:
    invoice_number: str
    product_name: str
    unit_price: float
    quantity: float = 1.0
    sku: Optional[str] = None
    details: Optional[str] = None


@dataclass
class ImportReport:
    entity: str
    created: int = 0
    updated: int = 0
    skipped: list = field(default_factory=list)       # (row_no, reason)
    quarantined: list = field(default_factory=list)   # (row_no, reason)

    def print_summary(self):
        print(f"✅ Import of {self.entity} complete.")
        print(f"Created:     {self.created}")
        if self.updated:
            print(f"Updated:     {self.updated}")
        print(f"Skipped:     {len(self.skipped)}")
        for row_no, reason in self.skipped:
            print(f"  row {row_no}: {reason}")
        print(f"Quarantined: {len(self.quarantined)}")
        for row_no, reason in self.quarantined:
            print(f"  row {row_no}: {reason}")


# -----------------------------
# Reading / coercion
# -----------------------------
def normalize_header(h: str) -> str:
    h = (h or "").strip().lower()
    h = re.sub(r"\s+", "_", h)
    return re.sub(r"[^a-z0-9_]", "", h)


def read_records(csv_path) -> list[tuple[int, dict]]:
    """
    Returns (row_number, record) pairs; row numbers match the spreadsheet
    (header is row 1). Blank lines are dropped.
    """
    records = []
    with open(csv_path, "r", newline="", encoding="utf-8-sig") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if not header:
            return records
        keys = [normalize_header(h) for h in header]
        for row_no, row in enumerate(reader, start=2):
            if not any((cell or "").strip() for cell in row):
                continue
            row = (row + [""] * len(keys))[:len(keys)]
            records.append((row_no, {k: (v or "").strip() for k, v in zip(keys, row) if k}))
    return records


def pick(rec: dict, aliases) -> Optional[str]:
    for alias in aliases:
        v = rec.get(normalize_header(alias))
        if v not in (None, ""):
            return v
    return None


def to_float(value: Optional[str], label: str) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value.replace("$", "").replace(",", ""))
    except ValueError:
        raise RowError(f"{label} is not a number: {value!r}")
    if not math.isfinite(number):
        raise RowError(f"{label} is not a finite number: {value!r}")
    return number


def to_bool(value: Optional[str], label: str) -> Optional[bool]:
    if value is None:
        return None
    v = value.strip().lower()
    if v in TRUE_VALUES:
        return True
    if v in FALSE_VALUES:
        return False
    raise RowError(f"{label} is not a yes/no value: {value!r}")


def to_date(value: Optional[str], label: str) -> Optional[date]:
    if value is None:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            pass
    raise RowError(f"{label} is not a date: {value!r}")


# -----------------------------
# Row parsers
# -----------------------------
def parse_customer(rec: dict) -> CustomerRow:
    get = {k: pick(rec, aliases) for k, aliases in CUSTOMER_ALIASES.items()}
    if not get["contact_name"] and not get["business_name"]:
        raise RowError("no contact or business name")
    return CustomerRow(
        contact_name=get["contact_name"] or get["business_name"],
        business_name=get["business_name"],
        email=get["email"],
        phone=get["phone"],
        address_line1=get["address_line1"],
        address_line2=get["address_line2"],
        city=get["city"],
        state_province=get["state_province"],
        postal_code=get["postal_code"],
        country=get["country"] or Config.DEFAULT_COUNTRY,
        notes=get["notes"],
    )


def parse_product(rec: dict) -> ProductRow:
    name = pick(rec, PRODUCT_ALIASES["name"])
    if not name:
        raise RowError("no product name")
    price = to_float(pick(rec, PRODUCT_ALIASES["unit_price"]), "price")
    if price is not None and price < 0:
        raise RowError("price is negative")
    active = to_bool(pick(rec, PRODUCT_ALIASES["active"]), "active")
    return ProductRow(
        name=name,
        unit_price=price or 0.0,
        description=pick(rec, PRODUCT_ALIASES["description"]),
        sku=pick(rec, PRODUCT_ALIASES["sku"]),
        active=True if active is None else active,
    )


def parse_invoice(rec: dict) -> InvoiceRow:
    get = lambda key: pick(rec, INVOICE_ALIASES[key])

    status = (get("status") or "draft").lower()
    if status not in INVOICE_STATUSES:
        raise RowError(f"unknown status {status!r}")

    tax_rate = to_float(get("tax_rate"), "tax rate")
    # 7 means 7%
    if tax_rate is not None and tax_rate > 1:
        tax_rate = tax_rate / 100
    if tax_rate is not None and tax_rate < 0:
        raise RowError("tax rate is negative")
    if tax_rate is not None and tax_rate > 1:
        raise RowError("tax rate is above 100%")

    shipping = to_float(get("shipping"), "shipping")
    if shipping is not None and shipping < 0:
        raise RowError("shipping is negative")

    qty = to_float(get("quantity"), "quantity")
    if qty is not None and qty <= 0:
        raise RowError("quantity must be positive")

    return InvoiceRow(
        invoice_number=get("invoice_number"),
        customer_name=get("customer_name"),
        customer_email=get("customer_email"),
        status=status,
        tax_rate=Config.DEFAULT_TAX_RATE if tax_rate is None else tax_rate,
        tax_exempt=bool(to_bool(get("tax_exempt"), "tax exempt")),
        shipping_cost=shipping or 0.0,
        due_date=to_date(get("due_date"), "due date"),
        notes=get("notes"),
        item_name=get("item_name"),
        item_quantity=qty or 1.0,
        item_price=to_float(get("unit_price"), "price"),
        item_sku=get("sku"),
    )


def parse_line_item(rec: dict) -> LineItemRow:
    get = lambda key: pick(rec, LINE_ITEM_ALIASES[key])
    inv_no = get("invoice_number")
    if not inv_no:
        raise RowError("no invoice number")
    name = get("product_name")
    if not name:
        raise RowError("no product name")
    price = to_float(get("unit_price"), "price")
    if price is None:
        raise RowError(f"no price for {name}")
    qty = to_float(get("quantity"), "quantity")
    if qty is not None and qty <= 0:
        raise RowError("quantity must be positive")
    return LineItemRow(
        invoice_number=inv_no.upper(),
        product_name=name,
        unit_price=price,
        quantity=qty or 1.0,
        sku=get("sku"),
        details=get("details"),
    )


# -----------------------------
# Importers
# -----------------------------
def _norm(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def find_customer(customers, name: Optional[str], email: Optional[str]) -> Optional[Customer]:
    """Email match wins; otherwise contact or business name, case-insensitive."""
    if email:
        for c in customers:
            if c.email and _norm(c.email) == _norm(email):
                return c
    if name:
        for c in customers:
            if _norm(c.contact_name) == _norm(name) or (c.business_name and _norm(c.business_name) == _norm(name)):
                return c
    return None


def import_customers(session, records) -> ImportReport:
    report = ImportReport("customers")
    for row_no, rec in records:
        try:
            row = parse_customer(rec)
        except RowError as e:
            report.quarantined.append((row_no, str(e)))
            continue
        session.add(Customer(**row.__dict__))
        report.created += 1
    session.commit()
    return report


def import_products(session, records) -> ImportReport:
    """Rows with a SKU that already exists update that product."""
    report = ImportReport("products")
    for row_no, rec in records:
        try:
            row = parse_product(rec)
        except RowError as e:
            report.quarantined.append((row_no, str(e)))
            continue

        existing = session.query(Product).filter(Product.sku == row.sku).first() if row.sku else None
        if existing:
            existing.name = row.name
            existing.description = row.description
            existing.unit_price = row.unit_price
            existing.active = row.active
            report.updated += 1
        else:
            session.add(Product(**row.__dict__))
            report.created += 1
        session.flush()
    session.commit()
    return report


def import_invoices(session, records) -> ImportReport:
    report = ImportReport("invoices")
    customers = session.query(Customer).all()

    for row_no, rec in records:
        try:
            row = parse_invoice(rec)
        except RowError as e:
            report.quarantined.append((row_no, str(e)))
            continue

        if row.invoice_number:
            dup = session.query(SalesInvoice.id).filter(SalesInvoice.invoice_number == row.invoice_number).first()
            if dup:
                report.skipped.append((row_no, f"duplicate invoice number {row.invoice_number}"))
                continue
            inv_no = row.invoice_number
        else:
            inv_no = next_invoice_number(session, Config.INVOICE_PREFIX, Config.INVOICE_SEQ_WIDTH)

        customer = find_customer(customers, row.customer_name, row.customer_email)
        inv = SalesInvoice(
            invoice_number=inv_no,
            customer_id=customer.id if customer else None,
            status=row.status,
            tax_rate=row.tax_rate,
            tax_exempt=row.tax_exempt,
            shipping_cost=row.shipping_cost,
            due_date=row.due_date,
            notes=row.notes,
        )
        # Single-line invoices carry their item inline
        if row.item_name and row.item_price is not None:
            inv.line_items.append(InvoiceLineItem(
                product_name=row.item_name,
                sku=row.item_sku,
                quantity=row.item_quantity,
                unit_price=row.item_price,
            ))
        session.add(inv)
        session.flush()
        report.created += 1
        print(f"  OK: {inv_no}" + (f" -> {customer.contact_name}" if customer else ""))
    session.commit()
    return report


def import_line_items(session, records) -> ImportReport:
    report = ImportReport("line-items")
    inv_map = {
        number.upper(): inv_id
        for inv_id, number in session.query(SalesInvoice.id, SalesInvoice.invoice_number).all()
    }
    for row_no, rec in records:
        try:
            row = parse_line_item(rec)
        except RowError as e:
            report.quarantined.append((row_no, str(e)))
            continue

        invoice_id = inv_map.get(row.invoice_number)
        if not invoice_id:
            report.skipped.append((row_no, f"invoice not found: {row.invoice_number}"))
            continue

        session.add(InvoiceLineItem(
            invoice_id=invoice_id,
            product_name=row.product_name,
            sku=row.sku,
            details=row.details,
            quantity=row.quantity,
            unit_price=row.unit_price,
        ))
        report.created += 1
    session.commit()
    return report


IMPORTERS = {
    "customers": import_customers,
    "products": import_products,
    "invoices": import_invoices,
    "line-items": import_line_items,
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Import customers, products, invoices or line items from CSV.")
    parser.add_argument("entity", choices=ENTITIES)
    parser.add_argument("file", help="Path to the CSV file.")
    args = parser.parse_args(argv)

    csv_path = Path(args.file)
    if not csv_path.exists():
        raise SystemExit(f"File not found: {csv_path.resolve()}")

    # Ensure instance/ exists for SQLite local dev
    if Config.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        Path("instance").mkdir(parents=True, exist_ok=True)

    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)

    records = read_records(csv_path)
    print(f"File: {csv_path.resolve()}")
    print(f"Rows: {len(records)}")

    with SessionLocal() as s:
        report = IMPORTERS[args.entity](s, records)
    report.print_summary()
    return report


if __name__ == "__main__":
    main()
