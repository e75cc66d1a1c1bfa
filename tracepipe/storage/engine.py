"""SQLAlchemy engine and session handling.

One ``Database`` per process. Sessions are short-lived and scoped to a single
unit of work; no session is held across a call to an external service.
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tracepipe.utils import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


class Database:
    def __init__(self, url: str, *, echo: bool = False, pool_size: int = 10, busy_timeout: float = 30.0):
        self.url = url
        kwargs = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": busy_timeout}
            if _is_memory_sqlite(url):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_size"] = pool_size
            kwargs["pool_pre_ping"] = True

        logger.info("database engine url=%s", url.split("@")[-1])
        self.engine = create_engine(url, **kwargs)

        if url.startswith("sqlite") and not _is_memory_sqlite(url):
            @event.listens_for(self.engine, "connect")
            def _sqlite_pragmas(dbapi_conn, connection_record):
                cur = dbapi_conn.cursor()
                cur.execute("PRAGMA journal_mode=WAL")
                cur.close()

        self._factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_config(cls, cfg: dict) -> "Database":
        db_cfg = cfg.get("database") or {}
        url = os.getenv("TRACEPIPE_DATABASE_URL") or db_cfg["url"]
        db = cls(url, echo=bool(db_cfg.get("echo", False)))
        if db_cfg.get("create_schema", True):
            db.create_all()
        return db

    def create_all(self) -> None:
        # Register every mapped table before creating
        from tracepipe.storage import tables  # noqa: F401
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self._factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Commit on success, roll back and re-raise on any exception."""
        session = self._factory()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
