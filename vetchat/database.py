from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from vetchat.config import get_settings

settings = get_settings()

# SQLite needs check_same_thread=False: sessions are used from executor threads
connect_args = {}
engine_kwargs = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}
    if ":memory:" in settings.database_url:
        # One shared connection, otherwise every thread sees an empty database
        engine_kwargs = {"poolclass": StaticPool}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=False,
    **engine_kwargs,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create tables directly (development and tests). Production uses Alembic."""
    import vetchat.models  # noqa: F401 - register models on Base.metadata

    Base.metadata.create_all(bind=engine)
