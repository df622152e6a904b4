# carpool/database.py
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeout
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .errors import TransientStoreError

log = logging.getLogger(__name__)

Base = declarative_base()

# execution option read by the sqlite "begin" hook below
BEGIN_IMMEDIATE = "carpool_begin_immediate"


def build_engine(database_url: str, tx_timeout_sec: float = 10.0, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False, "timeout": tx_timeout_sec},
        )
        _install_sqlite_hooks(engine)
        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=echo,
        future=True,
    )


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite starts transactions lazily on the first write, which lets two
    # readers decide on the same snapshot. Take over BEGIN so serializable
    # sessions grab the write lock before their first read.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys = ON")
        cur.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(BEGIN_IMMEDIATE):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@contextmanager
def serializable_session(session_factory: sessionmaker, timeout_sec: float) -> Iterator[Session]:
    """Run a unit of work under serializable isolation, commit on success.

    Store-level aborts (serialization failure, lock/statement timeout, busy
    database) surface as TransientStoreError; nothing is retried here.
    """
    db = session_factory()
    try:
        dialect = db.get_bind().dialect.name
        if dialect == "sqlite":
            db.connection(execution_options={BEGIN_IMMEDIATE: True})
        else:
            db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
            if dialect == "postgresql":
                ms = int(timeout_sec * 1000)
                db.execute(text(f"SET LOCAL statement_timeout = {ms}"))
                db.execute(text(f"SET LOCAL lock_timeout = {ms}"))
        yield db
        db.commit()
    except (OperationalError, PoolTimeout) as exc:
        db.rollback()
        log.warning("Serializable transaction aborted by store: %s", exc)
        raise TransientStoreError(
            "Schedule store is busy or the transaction could not be serialized; retry the request"
        ) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    from . import models  # noqa: F401  registers the mappers

    Base.metadata.create_all(engine)
