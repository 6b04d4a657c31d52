"""
Database connection helper
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = 'sqlite:///recordings.db'


def get_db_connection(url: str = DEFAULT_DB_URL, create_tables: bool = True):
    """
    Open an engine and a session for the recording catalog.

    Args:
        url: SQLAlchemy database URL
        create_tables: Create missing tables on connect

    Returns:
        (engine, session)
    """
    engine = create_engine(url)
    if create_tables:
        Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    logger.debug(f"Connected to recording catalog at {url}")
    return engine, session
