import os
import logging
from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from errors import PersistenceFailure

load_dotenv()

logger = logging.getLogger(__name__)

# Production sets DATABASE_URL (Postgres); local runs fall back to a SQLite file
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ecoreport.db")

# Fix for Render/Heroku which might provide 'postgres://' instead of 'postgresql://'
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options = {"connect_args": {"check_same_thread": False}}
    # In-memory SQLite lives in one connection, share it across sessions
    if url in ("sqlite://", "sqlite:///:memory:"):
        options["poolclass"] = StaticPool
    return options


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db):
    """Run a block as one database transaction.

    Commits on success. Any failure rolls back; SQLAlchemy errors surface as
    PersistenceFailure, everything else is re-raised unchanged.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[DB] Transaction rolled back: %s", e)
        raise PersistenceFailure("Storage operation failed") from e
    except Exception:
        db.rollback()
        raise
