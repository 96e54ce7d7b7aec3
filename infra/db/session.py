from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from app.settings import settings


def make_engine(sqlite_path: str):
    # Store writes run in worker threads; give SQLite a busy timeout for them.
    eng = create_engine(
        f"sqlite:///{sqlite_path}", echo=False, future=True,
        connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(eng, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return eng


def make_session_factory(bind):
    return sessionmaker(
        bind=bind, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


engine = make_engine(settings.SQLITE_PATH)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


def init_db(bind=None):
    from infra.db.models import (  # noqa: F401
        BulkMatchJobRecord, BulkMatchResultRecord, CandidateRecord, JobPostingRecord)
    Base.metadata.create_all(bind=bind or engine)
