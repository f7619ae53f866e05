"""Shared fixtures: throwaway SQLite databases, a Flask test client and sample invoices."""
from datetime import date
from decimal import Decimal

import pytest

from app import create_app
from config import BrandingConfig, MailConfig
from invoice_document import CustomerInfo, InvoiceDocument, LineItemDoc
from models import Base, make_engine, make_session_factory
from pdf_service import CanvasRenderer


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{(tmp_path / 'test.db').as_posix()}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    SessionLocal = make_session_factory(engine)
    with SessionLocal() as s:
        yield s


@pytest.fixture
def branding() -> BrandingConfig:
    return BrandingConfig(
        company_name="Wiz3D Prints",
        email="hello@wiz3d.example",
        phone="+64 21 555 0100",
        website="wiz3d.example",
    )


@pytest.fixture
def mail() -> MailConfig:
    return MailConfig(host="smtp.test", port=587, user="shop@wiz3d.example", password="secret", sender="shop@wiz3d.example")


@pytest.fixture
def app(tmp_path, branding, mail):
    app = create_app(
        overrides={
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'app.db').as_posix()}",
        },
        branding=branding,
        mail=mail,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(client) -> dict:
    """Registers the bootstrap admin and returns its Authorization header."""
    resp = client.post("/api/auth/register", json={"username": "admin", "password": "secret123"})
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.get_json()['data']['token']}"}


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(
        contact_name="Jane Smith",
        business_name="Smith Models Ltd",
        email="jane@smithmodels.example",
        phone="021 555 0199",
        address_line1="12 Queen Street",
        city="Auckland",
        postal_code="1010",
        country="New Zealand",
    )


@pytest.fixture
def sample_invoice(customer) -> InvoiceDocument:
    """INV-0007: 2 x Benchy @ $15.00, 1 x Phone Stand @ $22.50, $5.00 shipping, 7% tax."""
    return InvoiceDocument(
        invoice_number="INV-0007",
        status="sent",
        created_at=date(2024, 3, 1),
        due_date=date(2024, 3, 15),
        customer=customer,
        line_items=(
            LineItemDoc("Benchy", Decimal("2"), Decimal("15.00"), sku="B-001"),
            LineItemDoc("Phone Stand", Decimal("1"), Decimal("22.50"), details="Matte black PLA"),
        ),
        tax_rate=Decimal("0.07"),
        shipping_cost=Decimal("5.00"),
    )


class RecordingRenderer(CanvasRenderer):
    """CanvasRenderer that also remembers every text run and image request."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.texts = []
        self.images = []

    def draw_text(self, text, x, y, **kwargs):
        self.texts.append((str(text), x, y, kwargs.get("color")))
        return super().draw_text(text, x, y, **kwargs)

    def draw_image(self, path, x, y, w, h):
        self.images.append(path)
        return super().draw_image(path, x, y, w, h)

    def text_values(self) -> list[str]:
        return [t[0] for t in self.texts]


@pytest.fixture
def recorder() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def make_recorder():
    return RecordingRenderer
