from sqlmodel import SQLModel, create_engine, Session
from typing import Generator
from config import config


def make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}  # Needed for SQLite + FastAPI threadpool
    return create_engine(url, connect_args=connect_args, echo=False)


engine = make_engine(config.DATABASE_URL)


def init_db(bind=None):
    import models  # noqa: F401  registers the tables on SQLModel.metadata
    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
