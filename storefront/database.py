from typing import Callable

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session
from storefront.config import settings


def build_engine(url: str, echo: bool = False):
    if url.startswith("sqlite"):
        # single shared connection so worker threads see the same in-memory db
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,      # checks dead connections
        pool_recycle=1800        # refresh every 30 min
    )


engine = build_engine(settings.database_url)


def create_db_and_tables(bind=None):
    from storefront.models import order, order_item, order_event  # noqa: F401
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session


def get_session_factory() -> Callable[[], Session]:
    """Used by async callers that open their own session per worker thread."""
    return lambda: Session(engine)
