from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from . import config
from .errors import ConstraintViolation, StoreUnavailable

SessionLocal = sessionmaker(
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
)

_engine: Engine | None = None


class Base(DeclarativeBase):
    """ORM base for every model."""
    pass


def _setup_sqlite(engine: Engine) -> None:
    # pysqlite needs its own BEGIN handling for SAVEPOINT to work,
    # and foreign keys are off unless switched on per connection
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


def configure_database(url: str | None = None, echo: bool | None = None) -> Engine:
    """(Re)bind the engine and the session factory, e.g. to a test database."""
    global _engine

    if _engine is not None:
        _engine.dispose()

    url = url or config.DATABASE_URL
    engine = create_engine(
        url,
        echo=config.DB_ECHO if echo is None else echo,
        future=True,
    )
    if engine.dialect.name == "sqlite":
        _setup_sqlite(engine)

    SessionLocal.configure(bind=engine)
    _engine = engine
    return engine


def get_engine() -> Engine:
    if _engine is None:
        return configure_database()
    return _engine


@contextmanager
def db_session(operation: str | None = None) -> Iterator[Session]:
    """
    Context manager for one unit of work:
    - commit if everything went fine
    - rollback on any exception, store errors translated to VisitStoreError
    - always close
    """
    get_engine()
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise ConstraintViolation(
            f"{operation or 'write'} rejected by the store: {e.orig}",
            operation=operation,
        ) from e
    except OperationalError as e:
        session.rollback()
        raise StoreUnavailable(
            f"{operation or 'operation'} failed: {e.orig}",
            operation=operation,
        ) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
