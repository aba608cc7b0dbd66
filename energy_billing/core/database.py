"""
Database initialisation with SQLAlchemy.
Builds the engine from settings and provides sessions.
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from energy_billing.config import settings

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, timeout: float = 30.0):
    """
    Creates an engine for the given URL.

    For SQLite the connection may be shared between threads (FastAPI and
    the billing worker pool) and waits up to `timeout` seconds for locks.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
    return create_engine(database_url, connect_args=connect_args)


engine = create_db_engine(settings.database_url, settings.database_timeout_seconds)

# Database session
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base for ORM models
Base = declarative_base()


def get_db():
    """
    FastAPI dependency - yields a database session.
    Closes the session after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """
    FastAPI dependency - returns the session factory.
    Billing runs open one session per worker thread.
    """
    return SessionLocal


def init_db(bind=None):
    """
    Initialises the database - creates all tables.
    """
    from energy_billing.models import Meter, Contract, Reading, Invoice, BillingRunLease  # noqa: F401

    Base.metadata.create_all(bind=bind or engine, checkfirst=True)
    logger.info("[OK] Database initialised")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
