from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from . import config

# Base class for declarative ORM models.
Base = declarative_base()


def make_engine(url: str) -> Engine:
    """Engine usable from the save pipeline's worker threads."""
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})

        # SQLite only honours ON DELETE CASCADE with foreign keys switched on.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True)


# Create the SQLAlchemy engine.
engine = make_engine(config.DATABASE_URL)

# Create a configured "Session" class for database interactions.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None):
    """Create the tables if they don't exist."""
    from . import models  # noqa: F401  register the tables on Base
    Base.metadata.create_all(bind=bind or engine)
