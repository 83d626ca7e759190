import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from video_rental.db.base import Base
from video_rental.models import rental_models  # noqa: F401  registers tables on Base.metadata


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def build_engine(db_url: str | None = None) -> Engine:
    url = db_url or _require_env("VIDEO_RENTAL_DB_URL")
    connect_args = {}
    if url.startswith("sqlite"):
        # Request handlers run in a worker pool, so connections cross threads.
        connect_args["check_same_thread"] = False
    return create_engine(
        url,
        pool_pre_ping=True,
        future=True,
        connect_args=connect_args,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)
