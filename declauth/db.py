import os
from contextlib import contextmanager
from sqlite3 import Connection as SQLite3Connection
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from declauth import config, declauth_logging

logger = declauth_logging.init_logging("db")


# SQLite only enforces foreign keys when asked to on each connection
@event.listens_for(Engine, "connect")  # type: ignore
def _set_sqlite_pragma(dbapi_connection: SQLite3Connection, _: Any) -> None:
    if isinstance(dbapi_connection, SQLite3Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_engine(component: str = "server", url: Optional[str] = None, **engine_args: Any) -> Engine:
    """Create a database engine from the "database_url" option of the given component (unless a URL is given)"""
    url = url or config.get(component, "database_url")

    if not url:
        raise ValueError(f"no database_url configured for component '{component}'")

    if url.startswith("sqlite"):
        engine_args.setdefault("connect_args", {"check_same_thread": False})

        if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
            db_dir = os.path.dirname(os.path.abspath(url[len("sqlite:///") :]))
            if not os.path.exists(db_dir):
                os.makedirs(db_dir, 0o700)
    else:
        # sqlite does not support setting pool size and max overflow
        engine_args.setdefault("pool_size", config.getint(component, "database_pool_size", fallback=5))
        engine_args.setdefault("max_overflow", config.getint(component, "database_max_overflow", fallback=10))
        engine_args.setdefault("pool_pre_ping", True)

    return create_engine(url, **engine_args)


class SessionManager:
    """Hands out sessions bound to an engine. Objects stay usable after their session is closed, as sessions are
    created with ``expire_on_commit`` disabled.
    """

    def __init__(self) -> None:
        self._factories: dict[Engine, sessionmaker[Session]] = {}

    def make_session(self, engine: Engine) -> Session:
        factory = self._factories.get(engine)

        if factory is None:
            factory = sessionmaker(bind=engine, expire_on_commit=False)
            self._factories[engine] = factory

        return factory()

    @contextmanager
    def session_context(self, engine: Engine) -> Iterator[Session]:
        """
        Yields a session which is committed when the block completes, or rolled back if it raises, and then closed::

            with session_manager.session_context(engine) as session:
                session.add(obj)
        """
        session = self.make_session(engine)

        try:
            yield session
            session.commit()
        except SQLAlchemyError as err:
            logger.error("Database session failed: %s", err)
            session.rollback()
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
