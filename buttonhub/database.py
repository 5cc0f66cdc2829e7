"""Database connection and initialization."""

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from buttonhub.config import settings

# Import all models so SQLModel registers them
import buttonhub.models  # noqa: F401


def make_engine(db_path) -> Engine:
    return create_engine(
        f"sqlite:///{db_path}",
        echo=settings.debug,
        connect_args={"check_same_thread": False},
    )


engine = make_engine(settings.db_path)


def init_db(bind: Engine = engine) -> None:
    """Create all tables and enable WAL mode."""
    SQLModel.metadata.create_all(bind)

    # WAL lets the tenancy enumeration read while a writer is active
    with bind.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
        conn.commit()
