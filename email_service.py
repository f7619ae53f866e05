# email_service.py
import html
import logging
import smtplib
from email.message import EmailMessage

from config import BrandingConfig, MailConfig
from invoice_document import CustomerInfo

logger = logging.getLogger(__name__)


class EmailError(Exception):
    pass


def build_invoice_email(
    mail: MailConfig,
    branding: BrandingConfig,
    customer: CustomerInfo,
    invoice_number: str,
    pdf_bytes: bytes,
) -> EmailMessage:
    company = branding.company_name
    msg = EmailMessage()
    msg["From"] = f'"{company}" <{mail.sender}>'
    msg["To"] = customer.email
    msg["Subject"] = f"Invoice {invoice_number} from {company}"
    msg.set_content(
        f"Hi {customer.contact_name},\n\n"
        f"Please find your invoice {invoice_number} attached.\n\n"
        f"Thank you for your business!\n\n{company}"
    )
    msg.add_alternative(
        f"<p>Hi {html.escape(customer.contact_name)},</p>"
        f"<p>Please find your invoice <strong>{html.escape(invoice_number)}</strong> attached.</p>"
        f"<p>Thank you for your business!</p><p>{html.escape(company)}</p>",
        subtype="html",
    )
    msg.add_attachment(pdf_bytes, maintype="application", subtype="pdf", filename=f"{invoice_number}.pdf")
    return msg


def send_invoice_email(
    mail: MailConfig,
    branding: BrandingConfig,
    customer: CustomerInfo,
    invoice_number: str,
    pdf_bytes: bytes,
) -> None:
    """
    Sends the invoice PDF as <invoice_number>.pdf. No retry here; callers decide.
    """
    if not mail.is_configured():
        raise EmailError("SMTP credentials not configured. Set SMTP_USER, SMTP_PASS, and SMTP_FROM in .env")
    if not (customer.email or "").strip():
        raise EmailError(f'Customer "{customer.contact_name}" has no email address')

    msg = build_invoice_email(mail, branding, customer, invoice_number, pdf_bytes)
    with smtplib.SMTP(mail.host, mail.port, timeout=30) as smtp:
        if mail.use_tls:
            smtp.starttls()
        if mail.user and mail.password:
            smtp.login(mail.user, mail.password)
        smtp.send_message(msg)
    logger.info("Sent invoice %s to %s", invoice_number, customer.email)
