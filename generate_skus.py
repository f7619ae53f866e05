# generate_skus.py
"""
Assigns SKUs to every product that has none, using the same rule as the
product form: initials of the name plus a running suffix.

    "3D Printed Phone Stand" -> DPPS-001

Usage: python generate_skus.py [--dry-run]
"""
import argparse

from config import Config
from models import Base, Product, make_engine, make_session_factory, suggest_sku


def assign_missing_skus(session, dry_run: bool = False) -> list[tuple[Product, str]]:
    """
    Returns (product, sku) pairs in id order. SKUs handed out earlier in the
    run count as taken, so a dry run shows what a real run would write.
    """
    taken = [sku for (sku,) in session.query(Product.sku).filter(Product.sku.isnot(None), Product.sku != "").all()]
    missing = (
        session.query(Product)
        .filter((Product.sku.is_(None)) | (Product.sku == ""))
        .order_by(Product.id.asc())
        .all()
    )

    assigned = []
    for p in missing:
        sku = suggest_sku(p.name, taken)
        taken.append(sku)
        assigned.append((p, sku))
        if not dry_run:
            p.sku = sku

    if dry_run:
        session.rollback()
    else:
        session.commit()
    return assigned


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate SKUs for products that have none.")
    parser.add_argument("--dry-run", action="store_true", help="Show the SKUs without saving them.")
    args = parser.parse_args(argv)

    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)

    prefix = "[DRY RUN] " if args.dry_run else ""
    with SessionLocal() as s:
        assigned = assign_missing_skus(s, dry_run=args.dry_run)
        if not assigned:
            print("All products already have SKUs.")
            return

        print(f"{prefix}Generated SKUs for {len(assigned)} products:\n")
        for p, sku in assigned:
            print(f"  {p.name:<45} -> {sku}")

    if args.dry_run:
        print("\n[DRY RUN] No changes written.")
    else:
        print(f"\n✅ Done. {len(assigned)} SKUs assigned.")


if __name__ == "__main__":
    main()
