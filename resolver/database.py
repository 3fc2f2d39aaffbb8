from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from resolver.config import settings
from resolver.models.base import Base

# Create database engine
if "sqlite" in settings.database_url:
    engine = create_engine(
        settings.database_url,
        echo=settings.database_echo,
        connect_args={"check_same_thread": False}
    )
else:
    # PostgreSQL and friends
    engine = create_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all tables in the database."""
    import resolver.models  # noqa: F401  registers every mapped class
    Base.metadata.create_all(bind=engine)
