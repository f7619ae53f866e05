# db_init.py
from pathlib import Path

from config import Config
from models import Base, make_engine


def main():
    db_url = Config.SQLALCHEMY_DATABASE_URI
    # Ensure the SQLite folder exists for local dev
    if db_url.startswith("sqlite:///"):
        Path(db_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    # Ensure exports/ exists for PDFs
    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    engine = make_engine(db_url, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)

    print("✅ Database initialized.")
    print(f"Tables: {', '.join(sorted(Base.metadata.tables))}")
    print(f"DB: {db_url}")
    print(f"Exports dir: {Config.EXPORTS_DIR}")


if __name__ == "__main__":
    main()
