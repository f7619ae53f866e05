"""Tests for the invoice aggregate: money maths, formatting and loading from the database."""
from datetime import date, datetime
from decimal import Decimal

import pytest

from errors import NotFoundError
from invoice_document import (
    CustomerInfo,
    InvoiceDocument,
    LineItemDoc,
    format_date,
    format_money,
    format_percent,
    format_quantity,
    get_invoice_for_render,
    round_money,
    to_decimal,
)
from models import Customer, InvoiceLineItem, SalesInvoice


def test_example_totals(sample_invoice):
    totals = sample_invoice.totals()
    assert totals.subtotal == Decimal("52.50")
    assert totals.tax_amount == Decimal("3.675")
    assert totals.total == Decimal("61.175")
    assert format_money(totals.tax_amount) == "$3.68"
    assert format_money(totals.total) == "$61.18"


def test_tax_exempt_has_zero_tax(sample_invoice):
    doc = InvoiceDocument(
        invoice_number="INV-0001",
        status="draft",
        created_at=date(2024, 1, 1),
        line_items=sample_invoice.line_items,
        tax_rate=Decimal("0.07"),
        tax_exempt=True,
    )
    totals = doc.totals()
    assert totals.tax_amount == 0
    assert totals.total == totals.subtotal


def test_empty_invoice_totals_are_zero():
    doc = InvoiceDocument(invoice_number="INV-0002", status="draft", created_at=date(2024, 1, 1))
    totals = doc.totals()
    assert totals.subtotal == totals.tax_amount == totals.total == 0


def test_line_total():
    assert LineItemDoc("Vase", Decimal("1.5"), Decimal("12.00")).line_total == Decimal("18.000")


@pytest.mark.parametrize(
    "value, expected",
    [
        (Decimal("0.005"), Decimal("0.01")),
        (Decimal("2.675"), Decimal("2.68")),
        (2.675, Decimal("2.68")),
        (Decimal("-1.005"), Decimal("-1.01")),
        (None, Decimal("0.00")),
    ],
)
def test_round_money_half_up(value, expected):
    assert round_money(value) == expected


def test_to_decimal_avoids_binary_float_noise():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(15) == Decimal("15")


def test_formatters():
    assert format_money(Decimal("1234.5")) == "$1,234.50"
    assert format_money(Decimal("-3")) == "-$3.00"
    assert format_quantity(Decimal("2.0")) == "2"
    assert format_quantity(Decimal("1.50")) == "1.5"
    assert format_percent(Decimal("0.07")) == "7%"
    assert format_percent(Decimal("0.0725")) == "7.25%"
    assert format_date(date(2024, 3, 1)) == "01/03/2024"
    assert format_date(datetime(2024, 3, 1, 15, 30)) == "01/03/2024"
    assert format_date(None) == ""


def test_bill_to_lines_skip_empty_fields():
    c = CustomerInfo(contact_name="Jane", email="  ", city="Auckland", country="New Zealand")
    assert c.bill_to_lines() == ["Jane", "Auckland, New Zealand"]


def test_bill_to_lines_full():
    c = CustomerInfo(
        contact_name="Jane",
        business_name="Smith Models",
        email="jane@example.com",
        phone="021",
        address_line1="1 Main St",
        postal_code="1010",
    )
    assert c.bill_to_lines() == ["Smith Models", "Jane", "jane@example.com", "021", "1 Main St, 1010"]


def test_get_invoice_for_render(session):
    c = Customer(contact_name="Sam Lee", business_name="Lee Labs", city="Wellington")
    inv = SalesInvoice(
        invoice_number="INV-0042",
        customer=c,
        status="paid",
        tax_rate=0.15,
        shipping_cost=4.5,
        notes="Thanks",
        due_date=date(2024, 5, 1),
    )
    inv.line_items.append(InvoiceLineItem(product_name="Gear", sku="G-001", quantity=3, unit_price=2.5))
    inv.line_items.append(InvoiceLineItem(product_name="Bracket", quantity=1, unit_price=10))
    session.add(inv)
    session.commit()

    doc = get_invoice_for_render(session, inv.id)
    assert doc.invoice_number == "INV-0042"
    assert doc.status == "paid"
    assert doc.customer.business_name == "Lee Labs"
    assert [li.product_name for li in doc.line_items] == ["Gear", "Bracket"]
    assert doc.line_items[0].sku == "G-001"
    assert doc.tax_rate == Decimal("0.15")
    assert doc.shipping_cost == Decimal("4.5")
    assert doc.totals().subtotal == Decimal("17.5")
    assert doc.pdf_filename == "INV-0042.pdf"
    assert isinstance(doc.created_at, date)


def test_get_invoice_for_render_missing(session):
    with pytest.raises(NotFoundError):
        get_invoice_for_render(session, 999)
