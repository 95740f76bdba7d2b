from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from mfa_core.core.config import get_settings


def build_engine(database_url: str, echo: bool = False, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
    else:
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(database_url, echo=echo, future=True, **kwargs)

    if engine.dialect.name == "sqlite":
        # challenge rows rely on ON DELETE CASCADE from their factor
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


_settings = get_settings()
engine = build_engine(_settings.database_url, echo=_settings.db_echo)
SessionLocal = make_session_factory(engine)
