# clinicqueue/database.py
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

# Create engine
engine = create_engine(
    _settings.database_url,
    pool_pre_ping=True,
    echo=False,
    connect_args={"check_same_thread": False} if _settings.is_sqlite else {},
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

# Dependency to get database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def create_tables(bind=None):
    """Create all database tables - MUST import models first!"""
    # Import models to register them with Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")

def drop_tables(bind=None):
    """Drop all database tables"""
    Base.metadata.drop_all(bind=bind or engine)
    logger.info("Database tables dropped")
