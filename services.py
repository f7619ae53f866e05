"""
Business rules shared by the JSON API and the command-line scripts.

Every function takes an open SQLAlchemy session and commits its own work.
Failures are raised as errors.ServiceError subclasses.
"""
from __future__ import annotations

import logging
import math
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload
from werkzeug.security import check_password_hash, generate_password_hash

from config import Config
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from models import (
    INVOICE_STATUSES,
    QUEUE_STATUSES,
    USER_ROLES,
    Customer,
    InvoiceLineItem,
    Product,
    QueueItem,
    SalesInvoice,
    User,
    next_invoice_number,
    suggest_sku,
)

logger = logging.getLogger(__name__)


# -----------------------------
# Helpers
# -----------------------------
def _to_float(value, default=None, *, field: str = "value") -> float | None:
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number")
    return number


def _clean(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_date(value) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("Dates must be YYYY-MM-DD")


def _get_or_404(session, model, obj_id: int, label: str):
    obj = session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


# -----------------------------
# Users / auth
# -----------------------------
def register_user(session, username: str, password: str, email: str | None = None, role: str | None = None) -> User:
    """The very first account always becomes admin."""
    username = (username or "").strip()
    if not username or len(username) < 3:
        raise ValidationError("Username must be at least 3 characters.")
    if not password or len(password) < 6:
        raise ValidationError("Password must be at least 6 characters.")

    if session.query(User).filter(User.username == username).first():
        raise ConflictError("Username already taken")

    count = session.scalar(select(func.count()).select_from(User)) or 0
    role = "admin" if count == 0 else (role or "user")
    if role not in USER_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(USER_ROLES)}")

    u = User(username=username, email=_clean(email), password_hash=generate_password_hash(password), role=role)
    session.add(u)
    session.commit()
    logger.info("Registered user %s (role=%s)", username, role)
    return u


def authenticate(session, username: str, password: str) -> User:
    u = session.query(User).filter(User.username == (username or "").strip()).first()
    if not u or not check_password_hash(u.password_hash, password or ""):
        raise AuthError("Invalid credentials")
    return u


def list_users(session) -> list[User]:
    return session.query(User).order_by(User.created_at.asc(), User.id.asc()).all()


def update_user(session, user_id: int, data: dict, *, acting_user_id: int | None = None) -> User:
    u = _get_or_404(session, User, user_id, "User")
    if "email" in data:
        u.email = _clean(data.get("email"))
    if "role" in data:
        if acting_user_id == user_id:
            raise ValidationError("Cannot change your own role")
        if data["role"] not in USER_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(USER_ROLES)}")
        u.role = data["role"]
    session.commit()
    return u


def reset_password(session, user_id: int, password: str) -> None:
    if not password or not isinstance(password, str):
        raise ValidationError("Password is required")
    u = _get_or_404(session, User, user_id, "User")
    u.password_hash = generate_password_hash(password)
    session.commit()


def delete_user(session, user_id: int, *, acting_user_id: int | None = None) -> None:
    if acting_user_id == user_id:
        raise ValidationError("Cannot delete your own account")
    u = _get_or_404(session, User, user_id, "User")
    session.delete(u)
    session.commit()


# -----------------------------
# Customers
# -----------------------------
CUSTOMER_FIELDS = {
    "businessName": "business_name",
    "contactName": "contact_name",
    "email": "email",
    "phone": "phone",
    "addressLine1": "address_line1",
    "addressLine2": "address_line2",
    "city": "city",
    "stateProvince": "state_province",
    "postalCode": "postal_code",
    "country": "country",
    "notes": "notes",
}


def list_customers(session) -> list[Customer]:
    return session.query(Customer).order_by(Customer.contact_name.asc()).all()


def get_customer(session, customer_id: int) -> Customer:
    return _get_or_404(session, Customer, customer_id, "Customer")


def create_customer(session, data: dict) -> Customer:
    contact = _clean(data.get("contactName"))
    if not contact:
        raise ValidationError("contactName is required")
    c = Customer(country=Config.DEFAULT_COUNTRY)
    for key, attr in CUSTOMER_FIELDS.items():
        if key in data:
            setattr(c, attr, _clean(data[key]))
    c.contact_name = contact
    c.country = c.country or Config.DEFAULT_COUNTRY
    session.add(c)
    session.commit()
    return c


def update_customer(session, customer_id: int, data: dict) -> Customer:
    c = get_customer(session, customer_id)
    for key, attr in CUSTOMER_FIELDS.items():
        if key in data:
            setattr(c, attr, _clean(data[key]))
    if not c.contact_name:
        raise ValidationError("contactName is required")
    c.country = c.country or Config.DEFAULT_COUNTRY
    session.commit()
    return c


def delete_customer(session, customer_id: int) -> None:
    c = get_customer(session, customer_id)
    # SQLite does not enforce ON DELETE SET NULL
    session.query(SalesInvoice).filter(SalesInvoice.customer_id == c.id).update(
        {"customer_id": None}, synchronize_session=False
    )
    session.delete(c)
    session.commit()


# -----------------------------
# Products
# -----------------------------
def list_products(session, active_only: bool = False) -> list[Product]:
    q = session.query(Product)
    if active_only:
        q = q.filter(Product.active.is_(True))
    return q.order_by(Product.name.asc()).all()


def get_product(session, product_id: int) -> Product:
    return _get_or_404(session, Product, product_id, "Product")


def _sku_taken(session, sku: str, exclude_id: int | None = None) -> bool:
    q = session.query(Product.id).filter(Product.sku == sku)
    if exclude_id:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


def create_product(session, data: dict) -> Product:
    name = _clean(data.get("name"))
    if not name:
        raise ValidationError("name is required")
    price = _to_float(data.get("unitPrice"), None, field="unitPrice")
    if price is None or price < 0:
        raise ValidationError("unitPrice must be a non-negative number")
    sku = _clean(data.get("sku"))
    if sku and _sku_taken(session, sku):
        raise ConflictError(f"SKU {sku} is already in use")

    p = Product(
        name=name,
        description=_clean(data.get("description")),
        sku=sku,
        unit_price=price,
        active=bool(data.get("active", True)),
    )
    session.add(p)
    session.commit()
    return p


def update_product(session, product_id: int, data: dict) -> Product:
    p = get_product(session, product_id)
    if "name" in data:
        name = _clean(data["name"])
        if not name:
            raise ValidationError("name is required")
        p.name = name
    if "description" in data:
        p.description = _clean(data["description"])
    if "sku" in data:
        sku = _clean(data["sku"])
        if sku and _sku_taken(session, sku, exclude_id=p.id):
            raise ConflictError(f"SKU {sku} is already in use")
        p.sku = sku
    if "unitPrice" in data:
        price = _to_float(data["unitPrice"], None, field="unitPrice")
        if price is None or price < 0:
            raise ValidationError("unitPrice must be a non-negative number")
        p.unit_price = price
    if "active" in data:
        p.active = bool(data["active"])
    session.commit()
    return p


def delete_product(session, product_id: int) -> None:
    p = get_product(session, product_id)
    in_use = session.query(InvoiceLineItem.id).filter(InvoiceLineItem.product_id == p.id).first()
    if in_use:
        raise ConflictError("Product is used in invoices and cannot be deleted. Mark it as inactive instead.")
    session.delete(p)
    session.commit()


def suggest_product_sku(session, name: str, exclude_id: int | None = None) -> str:
    q = session.query(Product.sku).filter(Product.sku.isnot(None))
    if exclude_id:
        q = q.filter(Product.id != exclude_id)
    return suggest_sku(name, [row[0] for row in q.all()])


# -----------------------------
# Sales invoices
# -----------------------------
def _invoice_query(session):
    return session.query(SalesInvoice).options(
        selectinload(SalesInvoice.line_items),
        selectinload(SalesInvoice.customer),
    )


def list_invoices(session) -> list[SalesInvoice]:
    return _invoice_query(session).order_by(SalesInvoice.created_at.desc(), SalesInvoice.id.desc()).all()


def get_invoice(session, invoice_id: int) -> SalesInvoice:
    inv = _invoice_query(session).filter(SalesInvoice.id == invoice_id).first()
    if not inv:
        raise NotFoundError("Invoice not found")
    return inv


def _validate_tax_rate(value) -> float:
    rate = _to_float(value, Config.DEFAULT_TAX_RATE, field="taxRate")
    if rate < 0 or rate > 1:
        raise ValidationError("taxRate must be between 0 and 1")
    return rate


def _line_item_from_dict(session, data: dict) -> InvoiceLineItem:
    name = _clean(data.get("productName"))
    product = None
    if data.get("productId"):
        product = get_product(session, int(data["productId"]))
        name = name or product.name
    if not name:
        raise ValidationError("productName is required")

    qty = _to_float(data.get("quantity"), 1.0, field="quantity")
    if qty <= 0:
        raise ValidationError("quantity must be positive")
    price = _to_float(data.get("unitPrice"), product.unit_price if product else None, field="unitPrice")
    if price is None or price < 0:
        raise ValidationError("unitPrice must be a non-negative number")

    return InvoiceLineItem(
        product_id=product.id if product else None,
        product_name=name,
        sku=_clean(data.get("sku")) or (product.sku if product else None),
        details=_clean(data.get("details")),
        quantity=qty,
        unit_price=price,
    )


def create_invoice(session, data: dict) -> SalesInvoice:
    customer_id = data.get("customerId")
    if customer_id:
        get_customer(session, int(customer_id))

    shipping = _to_float(data.get("shippingCost"), 0.0, field="shippingCost")
    if shipping < 0:
        raise ValidationError("shippingCost must be non-negative")

    tax_rate = _validate_tax_rate(data.get("taxRate"))
    due_date = _parse_date(data.get("dueDate"))
    items = [_line_item_from_dict(session, item) for item in data.get("lineItems") or []]

    # Number is allocated last so a rejected payload never burns a sequence value
    inv = SalesInvoice(
        invoice_number=next_invoice_number(session, Config.INVOICE_PREFIX, Config.INVOICE_SEQ_WIDTH),
        customer_id=int(customer_id) if customer_id else None,
        status="draft",
        tax_rate=tax_rate,
        tax_exempt=bool(data.get("taxExempt", False)),
        shipping_cost=shipping,
        notes=_clean(data.get("notes")),
        due_date=due_date,
        line_items=items,
    )

    session.add(inv)
    session.commit()
    logger.info("Created invoice %s", inv.invoice_number)
    return get_invoice(session, inv.id)


def update_invoice(session, invoice_id: int, data: dict) -> SalesInvoice:
    inv = get_invoice(session, invoice_id)
    if "customerId" in data:
        cid = data["customerId"]
        if cid:
            get_customer(session, int(cid))
        inv.customer_id = int(cid) if cid else None
    if "status" in data:
        if data["status"] not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}")
        inv.status = data["status"]
    if "taxRate" in data:
        inv.tax_rate = _validate_tax_rate(data["taxRate"])
    if "taxExempt" in data:
        inv.tax_exempt = bool(data["taxExempt"])
    if "shippingCost" in data:
        shipping = _to_float(data["shippingCost"], 0.0, field="shippingCost")
        if shipping < 0:
            raise ValidationError("shippingCost must be non-negative")
        inv.shipping_cost = shipping
    if "notes" in data:
        inv.notes = _clean(data["notes"])
    if "dueDate" in data:
        inv.due_date = _parse_date(data["dueDate"])
    session.commit()
    return get_invoice(session, invoice_id)


def delete_invoice(session, invoice_id: int) -> None:
    inv = get_invoice(session, invoice_id)
    if inv.status != "draft":
        raise ValidationError("Only draft invoices can be deleted")
    session.delete(inv)
    session.commit()


def mark_invoice_sent(session, invoice_id: int) -> SalesInvoice:
    inv = get_invoice(session, invoice_id)
    inv.status = "sent"
    inv.sent_at = datetime.utcnow()
    session.commit()
    return inv


def add_line_item(session, invoice_id: int, data: dict) -> InvoiceLineItem:
    inv = get_invoice(session, invoice_id)
    li = _line_item_from_dict(session, data)
    inv.line_items.append(li)
    session.commit()
    return li


def _line_item_or_404(session, invoice_id: int, item_id: int) -> InvoiceLineItem:
    li = session.get(InvoiceLineItem, item_id)
    if not li or li.invoice_id != invoice_id:
        raise NotFoundError("Line item not found")
    return li


def update_line_item(session, invoice_id: int, item_id: int, data: dict) -> InvoiceLineItem:
    li = _line_item_or_404(session, invoice_id, item_id)
    if "productName" in data:
        name = _clean(data["productName"])
        if not name:
            raise ValidationError("productName is required")
        li.product_name = name
    if "details" in data:
        li.details = _clean(data["details"])
    if "sku" in data:
        li.sku = _clean(data["sku"])
    if "quantity" in data:
        qty = _to_float(data["quantity"], None, field="quantity")
        if qty is None or qty <= 0:
            raise ValidationError("quantity must be positive")
        li.quantity = qty
    if "unitPrice" in data:
        price = _to_float(data["unitPrice"], None, field="unitPrice")
        if price is None or price < 0:
            raise ValidationError("unitPrice must be a non-negative number")
        li.unit_price = price
    session.commit()
    return li


def delete_line_item(session, invoice_id: int, item_id: int) -> None:
    li = _line_item_or_404(session, invoice_id, item_id)
    session.delete(li)
    session.commit()


def send_to_queue(session, invoice_id: int, line_item_ids: list[int] | None = None) -> list[QueueItem]:
    """
    Creates one pending print job per line item that has not been queued yet,
    links it back to the line item and bumps the product's units sold.
    """
    inv = get_invoice(session, invoice_id)
    items = inv.line_items
    if line_item_ids is not None:
        wanted = {int(i) for i in line_item_ids}
        items = [li for li in items if li.id in wanted]

    created = []
    for li in items:
        if li.queue_item_id:
            continue
        qi = QueueItem(
            product_name=li.product_name,
            sku=li.sku,
            details=li.details,
            quantity=li.quantity,
            status="pending",
            position=_next_queue_position(session),
            invoice_id=inv.id,
        )
        session.add(qi)
        session.flush()
        li.queue_item_id = qi.id

        if li.product_id:
            product = session.get(Product, li.product_id)
            if product:
                product.units_sold = (product.units_sold or 0.0) + (li.quantity or 0.0)
        created.append(qi)

    session.commit()
    logger.info("Queued %d line item(s) from %s", len(created), inv.invoice_number)
    return created


# -----------------------------
# Print queue
# -----------------------------
def _next_queue_position(session) -> int:
    current = session.scalar(select(func.max(QueueItem.position)))
    return (current or 0) + 1


def list_queue(session) -> list[QueueItem]:
    return session.query(QueueItem).order_by(QueueItem.position.asc(), QueueItem.id.asc()).all()


def get_queue_item(session, item_id: int) -> QueueItem:
    return _get_or_404(session, QueueItem, item_id, "Queue item")


def create_queue_item(session, data: dict, *, commit: bool = True) -> QueueItem:
    name = _clean(data.get("productName"))
    if not name:
        raise ValidationError("productName is required")
    qty = _to_float(data.get("quantity"), 1.0, field="quantity")
    if qty <= 0:
        raise ValidationError("quantity must be positive")
    status = data.get("status") or "pending"
    if status not in QUEUE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(QUEUE_STATUSES)}")

    qi = QueueItem(
        product_name=name,
        sku=_clean(data.get("sku")),
        details=_clean(data.get("details")),
        quantity=qty,
        status=status,
        priority=int(data.get("priority") or 0),
        notes=_clean(data.get("notes")),
        invoice_id=data.get("invoiceId"),
        position=int(data["position"]) if data.get("position") else _next_queue_position(session),
    )
    session.add(qi)
    if commit:
        session.commit()
    else:
        session.flush()
    return qi


def create_queue_items(session, items: list[dict]) -> list[QueueItem]:
    """All or nothing: one invalid item rejects the whole batch."""
    created = []
    try:
        for data in items:
            created.append(create_queue_item(session, data, commit=False))
    except ValidationError:
        session.rollback()
        raise
    session.commit()
    return created


def update_queue_item(session, item_id: int, data: dict) -> QueueItem:
    qi = get_queue_item(session, item_id)
    for key, attr in (("productName", "product_name"), ("sku", "sku"), ("details", "details"), ("notes", "notes")):
        if key in data:
            setattr(qi, attr, _clean(data[key]))
    if not qi.product_name:
        raise ValidationError("productName is required")
    if "quantity" in data:
        qty = _to_float(data["quantity"], None, field="quantity")
        if qty is None or qty <= 0:
            raise ValidationError("quantity must be positive")
        qi.quantity = qty
    if "priority" in data:
        qi.priority = int(data["priority"] or 0)
    if "status" in data:
        set_queue_status(session, item_id, data["status"], commit=False)
    session.commit()
    return qi


def set_queue_status(session, item_id: int, status: str, *, commit: bool = True) -> QueueItem:
    if status not in QUEUE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(QUEUE_STATUSES)}")
    qi = get_queue_item(session, item_id)
    qi.status = status
    if commit:
        session.commit()
    return qi


def delete_queue_item(session, item_id: int) -> None:
    qi = get_queue_item(session, item_id)
    session.query(InvoiceLineItem).filter(InvoiceLineItem.queue_item_id == qi.id).update(
        {"queue_item_id": None}, synchronize_session=False
    )
    session.delete(qi)
    session.commit()


def reorder_queue(session, item_id: int, new_position: int) -> list[QueueItem]:
    """
    Moves one item to new_position (1-based, clamped) and renumbers the whole
    queue 1..N so positions stay contiguous.
    """
    items = list_queue(session)
    moving = next((qi for qi in items if qi.id == item_id), None)
    if moving is None:
        raise NotFoundError("Queue item not found")

    items.remove(moving)
    idx = max(0, min(len(items), int(new_position) - 1))
    items.insert(idx, moving)
    for pos, qi in enumerate(items, start=1):
        qi.position = pos
    session.commit()
    return items
