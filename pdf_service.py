# pdf_service.py
import io
import logging
import os
import re
from dataclasses import dataclass, field, replace

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.lib.utils import ImageReader

from config import BrandingConfig, Palette
from invoice_document import (
    InvoiceDocument,
    LineItemDoc,
    format_date,
    format_money,
    format_percent,
    format_quantity,
    get_invoice_for_render,
)

logger = logging.getLogger(__name__)

# -----------------------------
# Page geometry (points, top-down)
# -----------------------------
PAGE_W, PAGE_H = A4            # 595 x 842
M = 50                         # margin on every side
CONTENT_W = PAGE_W - 2 * M     # 495
CONTENT_BOTTOM = PAGE_H - M

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_ITALIC = "Helvetica-Oblique"
LEADING = 1.2

BOX_PAD = 10
BOX_RADIUS = 6
BLOCK_GAP = 15

# Header band
LOGO_W, LOGO_H = 50, 57
COMPANY_NAME_H = 22
COMPANY_LINE_H = 13
RIGHT_COL_X = 350
RIGHT_COL_W = PAGE_W - M - RIGHT_COL_X   # 195
COMPANY_BOX_W = RIGHT_COL_X - M - 15
DIVIDER_MIN_Y = 150
DIVIDER_GAP = 10

# Bill-to box
BILL_TO_W = 280
LABEL_H = 16
BOX_LINE_H = 14

# Line-item table
TABLE_GAP = 20
HEADER_ROW_H = 22
ROW_MIN_CONTENT_H = 12
ROW_VPAD = 5
CELL_PAD = 4
TABLE_FONT_SIZE = 9
SKU_FONT_SIZE = 7
# (key, title, x, width, align)
COLUMNS = (
    ("product", "PRODUCT", M, 120, "left"),
    ("details", "DETAILS", M + 120, 160, "left"),
    ("qty", "QTY", M + 280, 60, "right"),
    ("price", "UNIT PRICE", M + 340, 80, "right"),
    ("subtotal", "SUBTOTAL", M + 420, 75, "right"),
)
EMPTY_TABLE_TEXT = "No line items"

# Totals box
TOTALS_W = 200
TOTALS_X = PAGE_W - M - TOTALS_W
TOTALS_ROW_H = 16
TOTALS_GAP = 6
TOTAL_ROW_H = 24

# Notes / payment
NOTES_FONT_SIZE = 9
NOTES_MIN_LINES = 3

CONT_HEADER_H = 24
# Tallest row content that still fits below the continuation header and table header
MAX_ROW_CONTENT_H = CONTENT_BOTTOM - (M + CONT_HEADER_H + HEADER_ROW_H) - 2 * ROW_VPAD
FOOTER_TEXT = "Thank you for your business."

STATUS_LABELS = {
    "draft": "DRAFT",
    "sent": "SENT",
    "paid": "PAID",
    "cancelled": "CANCELLED",
}


def _safe_filename(name: str) -> str:
    # strip characters not allowed on Windows/mac paths
    return re.sub(r'[\\/*?:"<>|]', "", (name or "")).strip() or "Invoice"


def _color(value):
    if isinstance(value, colors.Color):
        return value
    value = (value or "").strip()
    if value.startswith("#"):
        return colors.HexColor(value)
    return getattr(colors, value, colors.black)


def _wrap_text(text, font, size, max_width):
    words = str(text).split()
    lines = []
    current = ""

    def split_long_token(token: str):
        """Break a single long token (like an email) into width-safe chunks."""
        if stringWidth(token, font, size) <= max_width:
            return [token]
        chunks = []
        remaining = token
        while remaining:
            lo, hi = 1, len(remaining)
            fit = 1
            while lo <= hi:
                mid = (lo + hi) // 2
                piece = remaining[:mid]
                if stringWidth(piece, font, size) <= max_width:
                    fit = mid
                    lo = mid + 1
                else:
                    hi = mid - 1
            chunks.append(remaining[:fit])
            remaining = remaining[fit:]
        return chunks

    expanded_words = []
    for w in words:
        expanded_words.extend(split_long_token(w))

    for w in expanded_words:
        test = current + (" " if current else "") + w
        if stringWidth(test, font, size) <= max_width:
            current = test
        else:
            if current:
                lines.append(current)
            current = w
    if current:
        lines.append(current)
    return lines or [""]


def _ellipsize(text, font, size, max_width):
    text = str(text or "")
    if stringWidth(text, font, size) <= max_width:
        return text
    ell = "..."
    while text and stringWidth(text + ell, font, size) > max_width:
        text = text[:-1]
    return text.rstrip() + ell


def status_style(status: str, palette: Palette) -> tuple[str, str]:
    """Label text and hex colour for an invoice status."""
    key = (status or "").strip().lower()
    label = STATUS_LABELS.get(key, key.upper() or "DRAFT")
    return label, palette.status_colors.get(key, palette.dark)


# -----------------------------
# Document renderer
# -----------------------------
class CanvasRenderer:
    """
    Drawing surface over a ReportLab canvas.

    Coordinates are top-down: (x, y) is measured from the top-left corner of the
    page, and y for text is the top of the first line box. The canvas runs in
    invariant mode so identical input gives identical bytes.
    """

    def __init__(self, pagesize=A4, title: str = "", author: str = ""):
        self.page_w, self.page_h = pagesize
        self._buf = io.BytesIO()
        self.pdf = canvas.Canvas(self._buf, pagesize=pagesize, invariant=1)
        if title:
            self.pdf.setTitle(title)
        if author:
            self.pdf.setAuthor(author)
        self.page_count = 1

    def _flip(self, y: float) -> float:
        return self.page_h - y

    @staticmethod
    def line_height(size: float) -> float:
        return size * LEADING

    def wrap(self, text, max_width, size, font=FONT) -> list[str]:
        """Word-wrap keeping explicit newlines; blank source lines stay blank."""
        out = []
        for para in str(text or "").splitlines() or [""]:
            if not para.strip():
                out.append("")
                continue
            out.extend(_wrap_text(para, font, size, max_width))
        return out

    def measure_text_height(self, text, max_width, size, font=FONT) -> float:
        return len(self.wrap(text, max_width, size, font)) * self.line_height(size)

    def draw_text(self, text, x, y, *, width=None, align="left", font=FONT, size=10, color="#000000") -> float:
        lines = self.wrap(text, width, size, font) if width else [str(text or "")]
        lh = self.line_height(size)
        ascent = pdfmetrics.getAscent(font, size)
        self.pdf.setFont(font, size)
        self.pdf.setFillColor(_color(color))
        for i, line in enumerate(lines):
            baseline = self._flip(y + i * lh + ascent)
            if align == "right" and width:
                self.pdf.drawRightString(x + width, baseline, line)
            elif align == "center" and width:
                self.pdf.drawCentredString(x + width / 2.0, baseline, line)
            else:
                self.pdf.drawString(x, baseline, line)
        return len(lines) * lh

    def draw_rect(self, x, y, w, h, fill_color):
        self.pdf.setFillColor(_color(fill_color))
        self.pdf.rect(x, self._flip(y + h), w, h, stroke=0, fill=1)

    def draw_rounded_rect(self, x, y, w, h, radius, fill_color=None, stroke_color=None):
        if fill_color:
            self.pdf.setFillColor(_color(fill_color))
        if stroke_color:
            self.pdf.setStrokeColor(_color(stroke_color))
            self.pdf.setLineWidth(0.75)
        self.pdf.roundRect(
            x, self._flip(y + h), w, h, radius,
            stroke=1 if stroke_color else 0,
            fill=1 if fill_color else 0,
        )

    def draw_line(self, x1, y1, x2, y2, width=1, color="#000000"):
        self.pdf.setStrokeColor(_color(color))
        self.pdf.setLineWidth(width)
        self.pdf.line(x1, self._flip(y1), x2, self._flip(y2))

    def draw_image(self, path, x, y, w, h):
        if not path or not os.path.exists(path):
            raise FileNotFoundError(f"Image not found: {path}")
        img = ImageReader(path)
        self.pdf.drawImage(img, x, self._flip(y + h), width=w, height=h, mask="auto", preserveAspectRatio=True)

    def new_page(self):
        self.pdf.showPage()
        self.page_count += 1

    def finish(self) -> bytes:
        self.pdf.save()
        return self._buf.getvalue()


# -----------------------------
# Layout record
# -----------------------------
@dataclass(frozen=True)
class LayoutBlock:
    name: str
    page: int
    top: float
    bottom: float

    @property
    def height(self) -> float:
        return self.bottom - self.top


@dataclass
class InvoiceLayout:
    blocks: list[LayoutBlock] = field(default_factory=list)
    page_count: int = 1

    def add(self, name, page, top, bottom):
        self.blocks.append(LayoutBlock(name, page, top, bottom))

    def get(self, name) -> LayoutBlock | None:
        for b in self.blocks:
            if b.name == name:
                return b
        return None

    def names(self) -> list[str]:
        return [b.name for b in self.blocks]


# -----------------------------
# Measurements
# -----------------------------
def company_box_height(contact_line_count: int, has_logo: bool) -> float:
    logo_slot = LOGO_H if has_logo else 0
    return BOX_PAD + max(logo_slot, COMPANY_NAME_H + COMPANY_LINE_H * contact_line_count) + BOX_PAD


def bill_to_box_height(line_count: int) -> float:
    return BOX_PAD + LABEL_H + line_count * BOX_LINE_H + BOX_PAD


def totals_box_height(visible_rows: int) -> float:
    return BOX_PAD + visible_rows * TOTALS_ROW_H + TOTALS_GAP + TOTAL_ROW_H + BOX_PAD


def line_item_row_height(renderer, item: LineItemDoc) -> float:
    """Tallest of the product column (name + optional SKU) and the details column, plus padding."""
    product_w = COLUMNS[0][3] - 2 * CELL_PAD
    details_w = COLUMNS[1][3] - 2 * CELL_PAD
    product_h = renderer.measure_text_height(item.product_name, product_w, TABLE_FONT_SIZE)
    if item.sku:
        product_h += renderer.measure_text_height(f"SKU: {item.sku}", product_w, SKU_FONT_SIZE)
    details_h = renderer.measure_text_height(item.details, details_w, TABLE_FONT_SIZE) if item.details else 0
    return max(product_h, details_h, ROW_MIN_CONTENT_H) + ROW_VPAD * 2


def _clip_text(renderer, text, width, size, max_h):
    lines = renderer.wrap(text, width, size)
    max_lines = max(1, int(max_h // renderer.line_height(size)))
    if len(lines) <= max_lines:
        return text
    kept = lines[:max_lines]
    last = kept[-1]
    while last and stringWidth(last + "...", FONT, size) > width:
        last = last[:-1]
    kept[-1] = last.rstrip() + "..."
    return "\n".join(kept)


def clip_line_item(renderer, item: LineItemDoc) -> LineItemDoc:
    """
    Rows never split across pages, so text that would make a row taller than
    an empty continuation page is cut off with "...".
    """
    product_w = COLUMNS[0][3] - 2 * CELL_PAD
    details_w = COLUMNS[1][3] - 2 * CELL_PAD
    sku_h = renderer.measure_text_height(f"SKU: {item.sku}", product_w, SKU_FONT_SIZE) if item.sku else 0
    name = _clip_text(renderer, item.product_name, product_w, TABLE_FONT_SIZE, MAX_ROW_CONTENT_H - sku_h)
    details = item.details
    if details:
        details = _clip_text(renderer, details, details_w, TABLE_FONT_SIZE, MAX_ROW_CONTENT_H)
    if name == item.product_name and details == item.details:
        return item
    logger.warning("Line item %r is taller than a page; text clipped", item.product_name[:40])
    return replace(item, product_name=name, details=details)


def _bill_to_wrapped(renderer, invoice: InvoiceDocument) -> list[str]:
    inner_w = BILL_TO_W - 2 * BOX_PAD
    if invoice.customer is None:
        return ["N/A"]
    out = []
    for ln in invoice.customer.bill_to_lines():
        out.extend(renderer.wrap(ln, inner_w, 10))
    return out


# -----------------------------
# Layout engine
# -----------------------------
def layout_invoice(invoice: InvoiceDocument, branding: BrandingConfig, renderer) -> InvoiceLayout:
    """
    Single forward pass over the page: each block is measured first, then its
    background is drawn, then its text. `y` only ever moves down; when a block
    would cross the bottom margin the engine continues on a new page.
    """
    palette = branding.palette
    layout = InvoiceLayout()
    page = 1
    y = M

    def footer():
        renderer.draw_text(FOOTER_TEXT, M, PAGE_H - M + 18, font=FONT_ITALIC, size=8, color=palette.muted)

    def start_new_page():
        nonlocal page, y
        footer()
        renderer.new_page()
        page += 1
        y = M
        renderer.draw_text(
            f"INVOICE {invoice.invoice_number} (cont.)", M, y,
            font=FONT_BOLD, size=12, color=palette.dark,
        )
        layout.add("continuation_header", page, y, y + CONT_HEADER_H)
        y += CONT_HEADER_H

    def ensure_space(h):
        if y + h > CONTENT_BOTTOM and y > M + CONT_HEADER_H:
            start_new_page()

    def right_text(x_right, top, text, font=FONT, size=9, color=palette.dark, width=RIGHT_COL_W):
        renderer.draw_text(text, x_right - width, top, width=width, align="right", font=font, size=size, color=color)

    # -- 1. Header band --------------------------------------------------
    contact_lines = branding.contact_lines()
    has_logo = bool(branding.logo_path)
    box_h = company_box_height(len(contact_lines), has_logo)
    renderer.draw_rounded_rect(M, y, COMPANY_BOX_W, box_h, BOX_RADIUS, fill_color=palette.light_gray, stroke_color=palette.mid_gray)

    text_x = M + BOX_PAD
    if has_logo:
        try:
            renderer.draw_image(branding.logo_path, M + BOX_PAD, y + BOX_PAD, LOGO_W, LOGO_H)
        except Exception as exc:
            logger.warning("Logo could not be drawn for %s (%s); leaving slot blank", invoice.invoice_number, exc)
        text_x += LOGO_W + 10

    text_w = M + COMPANY_BOX_W - BOX_PAD - text_x
    renderer.draw_text(
        _ellipsize(branding.company_name, FONT_BOLD, 16, text_w), text_x, y + BOX_PAD,
        font=FONT_BOLD, size=16, color=palette.accent,
    )
    line_y = y + BOX_PAD + COMPANY_NAME_H
    for ln in contact_lines:
        renderer.draw_text(_ellipsize(ln, FONT, 9, text_w), text_x, line_y, font=FONT, size=9, color=palette.dark)
        line_y += COMPANY_LINE_H

    right_x = PAGE_W - M
    right_text(right_x, y, "INVOICE", FONT_BOLD, 28, palette.dark)
    right_text(right_x, y + 35, invoice.invoice_number, FONT, 11, palette.accent)
    status_label, status_color = status_style(invoice.status, palette)
    right_text(right_x, y + 55, status_label, FONT_BOLD, 10, status_color)
    right_text(right_x, y + 75, f"Issue Date: {format_date(invoice.created_at)}")
    col_bottom = y + 75 + renderer.line_height(9)
    if invoice.due_date:
        right_text(right_x, y + 89, f"Due Date: {format_date(invoice.due_date)}")
        col_bottom = y + 89 + renderer.line_height(9)

    header_bottom = max(y + box_h, col_bottom)
    layout.add("header", page, y, header_bottom)

    # -- 2. Divider ------------------------------------------------------
    divider_y = max(header_bottom, DIVIDER_MIN_Y) + DIVIDER_GAP
    renderer.draw_line(M, divider_y, PAGE_W - M, divider_y, 1.5, palette.accent)
    layout.add("divider", page, divider_y, divider_y)
    y = divider_y + BLOCK_GAP

    # -- 3. Bill-to box --------------------------------------------------
    bill_lines = _bill_to_wrapped(renderer, invoice)
    bill_h = bill_to_box_height(len(bill_lines))
    renderer.draw_rounded_rect(M, y, BILL_TO_W, bill_h, BOX_RADIUS, fill_color=palette.light_gray, stroke_color=palette.mid_gray)
    renderer.draw_text("BILL TO", M + BOX_PAD, y + BOX_PAD, font=FONT_BOLD, size=10, color=palette.accent)
    line_y = y + BOX_PAD + LABEL_H
    for ln in bill_lines:
        renderer.draw_text(ln, M + BOX_PAD, line_y, font=FONT, size=10, color=palette.dark)
        line_y += BOX_LINE_H
    layout.add("bill_to", page, y, y + bill_h)
    y += bill_h + TABLE_GAP

    # -- 4. Line-item table ----------------------------------------------
    def table_header():
        nonlocal y
        renderer.draw_rect(M, y, CONTENT_W, HEADER_ROW_H, palette.accent)
        text_top = y + (HEADER_ROW_H - renderer.line_height(TABLE_FONT_SIZE)) / 2
        for _key, title, cx, cw, align in COLUMNS:
            renderer.draw_text(
                title, cx + CELL_PAD, text_top, width=cw - 2 * CELL_PAD, align=align,
                font=FONT_BOLD, size=TABLE_FONT_SIZE, color="white",
            )
        y += HEADER_ROW_H

    clipped = [clip_line_item(renderer, item) for item in invoice.line_items]
    rows = [(item, line_item_row_height(renderer, item)) for item in clipped]
    first_row_h = rows[0][1] if rows else ROW_MIN_CONTENT_H + 2 * ROW_VPAD
    ensure_space(HEADER_ROW_H + first_row_h)
    table_top, table_page = y, page
    table_header()

    if not rows:
        row_h = ROW_MIN_CONTENT_H + 2 * ROW_VPAD
        renderer.draw_rect(M, y, CONTENT_W, row_h, palette.light_gray)
        renderer.draw_text(
            EMPTY_TABLE_TEXT, M + CELL_PAD, y + ROW_VPAD, width=CONTENT_W - 2 * CELL_PAD,
            align="center", font=FONT_ITALIC, size=TABLE_FONT_SIZE, color=palette.muted,
        )
        y += row_h
        renderer.draw_line(M, y, PAGE_W - M, y, 0.5, palette.mid_gray)

    for idx, (item, row_h) in enumerate(rows):
        if y + row_h > CONTENT_BOTTOM:
            layout.add("line_items", table_page, table_top, y)
            start_new_page()
            table_top, table_page = y, page
            table_header()

        if idx % 2 == 0:
            renderer.draw_rect(M, y, CONTENT_W, row_h, palette.light_gray)

        cell_top = y + ROW_VPAD
        px, pw = COLUMNS[0][2] + CELL_PAD, COLUMNS[0][3] - 2 * CELL_PAD
        used = renderer.draw_text(item.product_name, px, cell_top, width=pw, size=TABLE_FONT_SIZE, color=palette.dark)
        if item.sku:
            renderer.draw_text(f"SKU: {item.sku}", px, cell_top + used, width=pw, size=SKU_FONT_SIZE, color=palette.muted)
        if item.details:
            dx, dw = COLUMNS[1][2] + CELL_PAD, COLUMNS[1][3] - 2 * CELL_PAD
            renderer.draw_text(item.details, dx, cell_top, width=dw, size=TABLE_FONT_SIZE, color=palette.dark)

        values = (format_quantity(item.quantity), format_money(item.unit_price), format_money(item.line_total))
        for (_key, _title, cx, cw, _align), value in zip(COLUMNS[2:], values):
            renderer.draw_text(
                value, cx + CELL_PAD, cell_top, width=cw - 2 * CELL_PAD, align="right",
                size=TABLE_FONT_SIZE, color=palette.dark,
            )

        y += row_h
        renderer.draw_line(M, y, PAGE_W - M, y, 0.5, palette.mid_gray)

    layout.add("line_items", table_page, table_top, y)
    y += 12

    # -- 5. Totals box ---------------------------------------------------
    totals = invoice.totals()
    total_rows = [("Subtotal:", format_money(totals.subtotal))]
    if totals.shipping_cost > 0:
        total_rows.append(("Shipping:", format_money(totals.shipping_cost)))
    if invoice.tax_exempt:
        total_rows.append(("Tax Exempt", ""))
    else:
        total_rows.append((f"{branding.tax_label} ({format_percent(invoice.tax_rate)}):", format_money(totals.tax_amount)))

    totals_h = totals_box_height(len(total_rows))
    ensure_space(totals_h)
    renderer.draw_rounded_rect(TOTALS_X, y, TOTALS_W, totals_h, BOX_RADIUS, fill_color=palette.light_gray, stroke_color=palette.mid_gray)
    inner_x = TOTALS_X + BOX_PAD
    inner_w = TOTALS_W - 2 * BOX_PAD
    row_y = y + BOX_PAD
    for label, value in total_rows:
        renderer.draw_text(label, inner_x, row_y, size=9, color=palette.dark)
        if value:
            renderer.draw_text(value, inner_x, row_y, width=inner_w, align="right", size=9, color=palette.dark)
        row_y += TOTALS_ROW_H
    band_y = row_y + TOTALS_GAP
    renderer.draw_rect(TOTALS_X + 4, band_y, TOTALS_W - 8, TOTAL_ROW_H, palette.accent)
    band_text_y = band_y + (TOTAL_ROW_H - renderer.line_height(11)) / 2
    renderer.draw_text("TOTAL:", inner_x, band_text_y, font=FONT_BOLD, size=11, color="white")
    renderer.draw_text(format_money(totals.total), inner_x, band_text_y, width=inner_w, align="right", font=FONT_BOLD, size=11, color="white")
    layout.add("totals", page, y, y + totals_h)
    y += totals_h

    # -- 6. Payment box --------------------------------------------------
    payment_lines = branding.payment_lines()
    if payment_lines:
        pay_h = BOX_PAD + LABEL_H + len(payment_lines) * BOX_LINE_H + BOX_PAD
        y += BLOCK_GAP
        ensure_space(pay_h)
        renderer.draw_rounded_rect(M, y, BILL_TO_W, pay_h, BOX_RADIUS, fill_color=palette.light_gray, stroke_color=palette.mid_gray)
        renderer.draw_text("PAYMENT", M + BOX_PAD, y + BOX_PAD, font=FONT_BOLD, size=10, color=palette.accent)
        line_y = y + BOX_PAD + LABEL_H
        for ln in payment_lines:
            renderer.draw_text(ln, M + BOX_PAD, line_y, size=10, color=palette.dark)
            line_y += BOX_LINE_H
        layout.add("payment", page, y, y + pay_h)
        y += pay_h

    # -- 7. Notes box ----------------------------------------------------
    notes = (invoice.notes or "").strip()
    if notes:
        y += BLOCK_GAP
        notes_w = CONTENT_W - 2 * BOX_PAD
        lh = renderer.line_height(NOTES_FONT_SIZE)
        remaining = renderer.wrap(notes, notes_w, NOTES_FONT_SIZE)
        chrome_h = BOX_PAD + LABEL_H + BOX_PAD
        title = "NOTES"
        while remaining:
            fit = int((CONTENT_BOTTOM - y - chrome_h) // lh)
            if fit < min(NOTES_MIN_LINES, len(remaining)) and y > M + CONT_HEADER_H:
                start_new_page()
                continue
            fit = max(1, min(fit, len(remaining)))
            chunk, remaining = remaining[:fit], remaining[fit:]
            box_h = chrome_h + len(chunk) * lh
            renderer.draw_rounded_rect(M, y, CONTENT_W, box_h, BOX_RADIUS, fill_color=palette.light_gray, stroke_color=palette.mid_gray)
            renderer.draw_text(title, M + BOX_PAD, y + BOX_PAD, font=FONT_BOLD, size=9, color=palette.accent)
            line_y = y + BOX_PAD + LABEL_H
            for ln in chunk:
                renderer.draw_text(ln, M + BOX_PAD, line_y, size=NOTES_FONT_SIZE, color=palette.dark)
                line_y += lh
            layout.add("notes", page, y, y + box_h)
            y += box_h
            if remaining:
                start_new_page()
                title = "NOTES (cont.)"

    footer()
    layout.page_count = page
    return layout


# -----------------------------
# Public entry points
# -----------------------------
def render_invoice_pdf(invoice: InvoiceDocument, branding: BrandingConfig) -> bytes:
    """
    Render an invoice to PDF bytes. Same input, same bytes.
    """
    renderer = CanvasRenderer(
        title=f"Invoice - {invoice.invoice_number}",
        author=branding.company_name,
    )
    layout_invoice(invoice, branding, renderer)
    return renderer.finish()


def invoice_pdf_filename(invoice: InvoiceDocument) -> str:
    return f"{_safe_filename(invoice.invoice_number)}.pdf"


def stored_pdf_path(exports_dir: str, invoice_number: str) -> str:
    return os.path.abspath(os.path.join(exports_dir, f"{_safe_filename(invoice_number)}.pdf"))


def store_invoice_pdf(invoice: InvoiceDocument, branding: BrandingConfig, exports_dir: str) -> str:
    """Writes <exports_dir>/<invoice_number>.pdf and returns its absolute path."""
    os.makedirs(exports_dir, exist_ok=True)
    pdf_path = stored_pdf_path(exports_dir, invoice.invoice_number)
    data = render_invoice_pdf(invoice, branding)
    with open(pdf_path, "wb") as f:
        f.write(data)
    logger.info("Wrote %s (%d bytes)", pdf_path, len(data))
    return pdf_path


def generate_and_store_pdf(session, invoice_id: int, branding: BrandingConfig, exports_dir: str) -> str:
    """
    Generates (or regenerates) the PDF for the given invoice_id on disk.

    Returns: absolute pdf path on disk.
    """
    invoice = get_invoice_for_render(session, invoice_id)
    return store_invoice_pdf(invoice, branding, exports_dir)
