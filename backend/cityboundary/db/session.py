from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cityboundary.core.config import get_settings

settings = get_settings()

engine = create_engine(settings.database_url, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for getting a database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create tables for all registered models."""
    from cityboundary.models import Base

    Base.metadata.create_all(bind=bind or engine)
