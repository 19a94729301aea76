# copyflow/db.py
import datetime
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from copyflow.monitoring import get_logger

log = get_logger("db")

Base = declarative_base()


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp; SQLite drops tzinfo on the way back anyway."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


class Database:
    """Engine plus session factory for one DATABASE_URL."""

    def __init__(self, url: str):
        self.url = url
        self.engine = _make_engine(url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False,
                                         expire_on_commit=False, bind=self.engine)

    def init_db(self):
        # import models so Base metadata has every table
        import copyflow.models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)
        log.info("Database initialized", extra={"url": self.url.split("@")[-1]})

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Transactional scope: commit on success, rollback on any error."""
        db: Session = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self):
        self.engine.dispose()
