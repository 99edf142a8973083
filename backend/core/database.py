from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from core.config import get_settings

_engine: Optional[Engine] = None


def build_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # in-memory databases live on a single connection
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().DATABASE_URL)
    return _engine


def create_db_and_tables(engine: Optional[Engine] = None) -> None:
    # model modules register their tables on SQLModel.metadata
    import models.user  # noqa: F401
    import models.auth_session  # noqa: F401
    import models.complaints  # noqa: F401
    import models.documents  # noqa: F401

    SQLModel.metadata.create_all(engine or get_engine())
