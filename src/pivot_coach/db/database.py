"""Database connection and session management."""

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for models
Base = declarative_base()


def create_db_engine(db_path: Path, echo: bool = False) -> Engine:
    """Create a SQLite engine for a single-file store."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        echo=echo,
    )


def init_db(engine: Engine) -> sessionmaker:
    """Create tables and return a session factory bound to the engine."""
    # Import models to register them
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
