import functools
import logging
import time

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import declarative_base, sessionmaker

from railpass.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str, step_timeout: float = None):
    """Create an engine whose statements give up after ``step_timeout`` seconds."""
    timeout = settings.STEP_TIMEOUT_SECONDS if step_timeout is None else step_timeout

    if url.startswith("sqlite"):
        # busy timeout bounds how long a writer waits for the database lock
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )

    return create_engine(
        url,
        pool_pre_ping=True,
        connect_args={"options": f"-c statement_timeout={int(timeout * 1000)}"},
    )


engine = make_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return SessionLocal


def init_db(bind=None):
    # models must be imported so their tables are registered on Base.metadata
    from railpass import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def retry_read(func):
    """Retry an idempotent read with exponential backoff on driver errors.

    The wrapped method must belong to an object holding its session as
    ``self.db``; the session is rolled back between attempts. Never use this
    on anything that writes.
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        attempts = max(1, settings.READ_RETRY_ATTEMPTS)
        delay = settings.READ_RETRY_BACKOFF_SECONDS
        for attempt in range(1, attempts + 1):
            try:
                return func(self, *args, **kwargs)
            except DBAPIError as exc:
                self.db.rollback()
                if attempt == attempts:
                    raise
                logger.warning(
                    "Read %s failed (attempt %d/%d): %s",
                    func.__qualname__, attempt, attempts, exc.orig,
                )
                time.sleep(delay)
                delay *= 2

    return wrapper
