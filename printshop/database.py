"""
Database configuration and session management for the print-shop service.

Builds the SQLAlchemy engine from DATABASE_URL and the session factory the
SQL record store runs on.
"""
import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

# Get database URL from environment variable
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./printshop.db")


def make_engine(url: str, **kwargs):
    """Create an engine. SQLite connections may cross threads and enforce foreign keys."""
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    db_engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    @event.listens_for(db_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return db_engine


# Create SQLAlchemy engine
engine = make_engine(DATABASE_URL)

# Create SessionLocal class for database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for declarative models
Base = declarative_base()
