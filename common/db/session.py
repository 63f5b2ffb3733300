from contextlib import contextmanager
import os
from pathlib import Path
from typing import Callable, ContextManager, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..models.base import Base


SessionFactory = Callable[[], ContextManager[Session]]

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # wait on the writer lock instead of failing with "database is locked"
        connect_args = {"check_same_thread": False, "timeout": 30}
        # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
        if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
            db_path = database_url.split("sqlite:///")[-1]
            Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, future=True, connect_args=connect_args)


def make_session_factory(engine: Engine) -> SessionFactory:
    session_local = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def get_session():
        session = session_local()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return get_session


def init_db(engine: Engine) -> None:
    # mapped classes register on Base.metadata when imported
    from ..models import coupon, order, order_item, order_status_history, product  # noqa: F401

    Base.metadata.create_all(engine)


_default_factory: Optional[SessionFactory] = None


@contextmanager
def get_session():
    """Session bound to ``DATABASE_URL``, created on first use."""
    global _default_factory
    if _default_factory is None:
        _default_factory = make_session_factory(build_engine(DATABASE_URL))
    with _default_factory() as session:
        yield session
