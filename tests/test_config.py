"""Tests for branding and mail settings read from the environment."""
from config import BrandingConfig, MailConfig


def test_branding_from_env(monkeypatch):
    monkeypatch.setenv("COMPANY_NAME", "Layer Lab")
    monkeypatch.setenv("COMPANY_EMAIL", "hi@layerlab.example")
    monkeypatch.setenv("COMPANY_PHONE", "")
    monkeypatch.setenv("COMPANY_ADDRESS", "")
    monkeypatch.setenv("COMPANY_WEBSITE", "")
    monkeypatch.setenv("PAYPAL_HANDLE", "")
    monkeypatch.setenv("VENMO_HANDLE", "layerlab")
    monkeypatch.setenv("TAX_LABEL", "GST")
    monkeypatch.setenv("BRAND_ACCENT_COLOR", "#123456")

    b = BrandingConfig.from_env()
    assert b.company_name == "Layer Lab"
    assert b.contact_lines() == ["hi@layerlab.example"]
    assert b.payment_lines() == ["Venmo: @layerlab"]
    assert b.tax_label == "GST"
    assert b.palette.accent == "#123456"


def test_payment_lines():
    assert BrandingConfig().payment_lines() == []
    b = BrandingConfig(paypal_handle="me@example.com", venmo_handle="@me")
    assert b.payment_lines() == ["PayPal: me@example.com", "Venmo: @me"]


def test_mail_from_env(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("SMTP_USER", "user@example.com")
    monkeypatch.setenv("SMTP_PASS", "pw")
    monkeypatch.delenv("SMTP_FROM", raising=False)
    monkeypatch.setenv("SMTP_TLS", "0")

    m = MailConfig.from_env()
    assert (m.host, m.port, m.sender, m.use_tls) == ("smtp.example.com", 2525, "user@example.com", False)
    assert m.is_configured()
    assert not MailConfig().is_configured()
