import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str = DATABASE_URL) -> Engine:
    # SQLite connections are shared with the threaded server and the
    # calendar sync worker, so the same-thread check is disabled.
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(url, connect_args=connect_args)
    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    # Objects stay readable after commit; the admission controller hands
    # committed bookings back to the request handler.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    from . import models  # noqa: F401 - registers tables on Base

    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.info("Database tables created successfully")
