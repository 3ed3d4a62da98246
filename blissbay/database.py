import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


# ======================================================
# DATABASE CONNECTION
# ======================================================

class Database:
    """Owns the engine and session factory for one process."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = self._build_engine(url, echo)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )

    @staticmethod
    def _build_engine(url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, echo=echo, **kwargs)

            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine

        return create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,       # drops stale connections
            pool_size=5,
            max_overflow=2,
            pool_timeout=30,
            pool_recycle=300,
        )

    def create_all(self) -> None:
        from blissbay import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables verified")

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()


# ======================================================
# DEPENDENCY
# ======================================================

def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()


# ======================================================
# UNIT OF WORK
# ======================================================

@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or roll it all back."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
