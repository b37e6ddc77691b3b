"""
Initialize the database schema by creating all tables.
This should be run once on deployment or development setup.
"""
import logging

from db.models import Base
from db.session import engine
from logging_config import setup_logging

logger = logging.getLogger(__name__)


def init_db(bind=engine) -> None:
    """Create all tables defined in models."""
    logger.info("Initializing database schema...")
    Base.metadata.create_all(bind=bind)
    logger.info("Database schema initialized")


if __name__ == "__main__":
    setup_logging()
    init_db()
