"""
Database Connection Manager.

Creates the SQLModel engine used by the SQL session store. The engine is
only built when a DATABASE_URL is configured.
"""

from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine


@lru_cache()
def get_engine(database_url: str) -> Engine:
    # echo=False in production to avoid leaking sensitive data in logs
    return create_engine(database_url, echo=False)


def init_db(engine: Engine) -> None:
    """
    Idempotent initialization.
    Creates tables if they do not exist.
    """
    # Registers the table metadata
    from . import tables  # noqa: F401

    SQLModel.metadata.create_all(engine)
