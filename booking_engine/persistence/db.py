import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from booking_engine.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    url = url or settings.database.url
    connect_args = {}
    if url.startswith("sqlite"):
        # Shared across request threads; writers queue on SQLite's lock.
        connect_args = {"check_same_thread": False, "timeout": 15}
    return create_engine(
        url,
        connect_args=connect_args,
        echo=settings.database.echo if echo is None else echo,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine()
SessionLocal = make_session_factory(engine)


def init_db(bind: Optional[Engine] = None) -> None:
    # Import models here so they get registered with Base before creating tables
    import booking_engine.persistence.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database schema ready")


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Transaction per block: commit on success, roll back on any error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
