"""Database setup for the local (SQLite) backend."""

from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine


def create_db_engine(db_path: Path) -> Engine:
    """Create a SQLite engine, making the parent directory if needed."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def init_db(engine: Engine) -> None:
    """Create all tables."""
    # Import models to register them with SQLModel before create_all()
    import homedash.remote.local_models  # noqa: F401

    SQLModel.metadata.create_all(engine)
