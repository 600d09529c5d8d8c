# credora/database/db.py
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def make_engine(database_url, echo=False):
    """
    Create the SQLAlchemy engine for ``database_url``.

    SQLite is opened with ``check_same_thread=False`` because Flask serves
    requests (and the refresher polls) from other threads. An in-memory
    SQLite URL gets a StaticPool so every session sees the same database.
    """
    kwargs = {"echo": echo, "future": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def make_session_factory(engine):
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


# ----------- IMPORTANT FUNCTION -------------
def init_db(engine):
    """
    Creates all tables in the database using SQLAlchemy models.
    Must be called once when the app starts.
    """
    from credora.database.models_db import Base

    logger.info("Creating database tables if not exist...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized!")
