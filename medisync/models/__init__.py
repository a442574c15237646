# medisync/models/__init__.py
from medisync.db.session import Base, engine

# Import model modules so SQLAlchemy registers all mappers.
from . import medical_report  # noqa: F401


def init_db() -> None:
    """Create tables if they don't exist."""
    Base.metadata.create_all(bind=engine)
