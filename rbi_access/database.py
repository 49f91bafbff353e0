"""Database configuration and session management"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from rbi_access.config import settings


def _build_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite needs a single shared connection"""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )
    return create_engine(url, pool_pre_ping=True, echo=settings.debug)


# Application engine: connects as the role subject to row-level security
engine = _build_engine(settings.database_url)

# Privileged engine: elevated credentials, bypasses row-level security
if settings.get_privileged_database_url() == settings.database_url:
    privileged_engine = engine
else:
    privileged_engine = _build_engine(settings.get_privileged_database_url())

# Session mode marker read by the enforcement hooks
SESSION_MODE_KEY = "rbi_mode"
PRINCIPAL_MODE = "principal"
PRIVILEGED_MODE = "privileged"

# Session factories
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine,
    info={SESSION_MODE_KEY: PRINCIPAL_MODE},
)
PrivilegedSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=privileged_engine,
    info={SESSION_MODE_KEY: PRIVILEGED_MODE},
)

# Base class for models
Base = declarative_base()


def get_db():
    """Dependency to get a privileged database session for service wiring"""
    db = PrivilegedSessionLocal()
    try:
        yield db
    finally:
        db.close()
