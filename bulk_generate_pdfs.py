# bulk_generate_pdfs.py
import argparse
import os
from pathlib import Path

from config import Config, BrandingConfig, configure_logging
from models import Base, make_engine, make_session_factory, SalesInvoice, INVOICE_STATUSES
from pdf_service import generate_and_store_pdf, stored_pdf_path


def main(argv=None):
    parser = argparse.ArgumentParser(description="Bulk generate invoice PDFs.")
    parser.add_argument("--status", choices=INVOICE_STATUSES, default=None, help="Only generate PDFs for invoices with this status.")
    parser.add_argument("--all", action="store_true", help="Regenerate PDFs even if one already exists.")
    args = parser.parse_args(argv)

    configure_logging()
    branding = BrandingConfig.from_env()
    exports_dir = Config.EXPORTS_DIR

    # Ensure exports dir exists
    Path(exports_dir).mkdir(parents=True, exist_ok=True)

    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)

    with SessionLocal() as s:
        q = s.query(SalesInvoice).order_by(SalesInvoice.created_at.asc(), SalesInvoice.id.asc())
        if args.status:
            q = q.filter(SalesInvoice.status == args.status)

        invoices = [(inv.id, inv.invoice_number) for inv in q.all()]

        if not invoices:
            print("No invoices found for the given filter.")
            return

        total = len(invoices)
        generated = 0
        skipped = 0
        failed = 0

        for i, (inv_id, inv_no) in enumerate(invoices, start=1):
            existing = stored_pdf_path(exports_dir, inv_no)
            if os.path.exists(existing) and not args.all:
                skipped += 1
                print(f"[{i}/{total}] SKIP  {inv_no} (already has PDF)")
                continue

            try:
                path = generate_and_store_pdf(s, inv_id, branding, exports_dir)
            except Exception as e:
                s.rollback()
                failed += 1
                print(f"[{i}/{total}] FAIL  {inv_no}  ({e})")
                continue

            generated += 1
            print(f"[{i}/{total}] DONE  {inv_no} -> {path}")

        print("\n✅ Bulk PDF generation complete.")
        print(f"Generated: {generated}")
        print(f"Skipped:   {skipped}")
        print(f"Failed:    {failed}")
        print(f"Exports:   {exports_dir}")


if __name__ == "__main__":
    main()
