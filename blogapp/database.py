import logging
import time

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import settings

logger = logging.getLogger(__name__)


def require_database_url(url: str = None) -> str:
    url = url if url is not None else settings.DATABASE_URL
    if not url:
        raise RuntimeError("Missing required environment variable: DATABASE_URL")
    return url


def make_engine(url: str):
    # check_same_thread is needed for SQLite, ignored by PostgreSQL drivers
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    new_engine = create_engine(url, connect_args=connect_args)

    if new_engine.dialect.name == "sqlite":
        # SQLite leaves foreign keys (and ON DELETE CASCADE) off per connection
        @event.listens_for(new_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = make_engine(require_database_url())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    # Retry logic to wait for the Postgres container to be fully ready
    bind = bind or engine
    retries = settings.DB_CONNECT_RETRIES
    while retries > 0:
        try:
            from .models import Base
            Base.metadata.create_all(bind=bind)
            logger.info("Database connected and tables created")
            return True
        except OperationalError:
            retries -= 1
            logger.warning(
                "Database not ready yet... retrying in %s seconds (%s retries left)",
                settings.DB_RETRY_INTERVAL,
                retries,
            )
            if retries:
                time.sleep(settings.DB_RETRY_INTERVAL)
    logger.error("Database never became ready, giving up")
    return False


def check_connection(bind=None) -> bool:
    """Run ``SELECT 1`` against the store; False when it is unreachable."""
    bind = bind or engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.exception("Database connection failed")
        return False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
