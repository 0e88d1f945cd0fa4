import logging
from typing import Generator

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from .config import settings


logger = logging.getLogger(__name__)


# SQLite needs check_same_thread disabled because FastAPI runs sync routes in a thread pool
if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)


def _ensure_column(engine: Engine, table_name: str, column_name: str, column_sql: str) -> None:
    inspector = inspect(engine)
    try:
        columns = {col["name"] for col in inspector.get_columns(table_name)}
    except SQLAlchemyError:
        return

    if column_name in columns:
        return

    try:
        with engine.begin() as connection:
            connection.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}"))
        logger.info("Added missing column %s.%s", table_name, column_name)
    except SQLAlchemyError:
        # Leave it to Alembic when the ALTER is not permitted
        logger.warning("Could not add column %s.%s", table_name, column_name, exc_info=True)


def init_db():
    # Import models so every table is registered in the metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)

    # Installs created before the download workflow existed
    _ensure_column(engine, "files", "download_count", "download_count INTEGER NOT NULL DEFAULT 0")
    _ensure_column(engine, "files", "driver", "driver VARCHAR(32) NOT NULL DEFAULT 'local'")
    _ensure_column(engine, "download_requests", "admin_notes", "admin_notes VARCHAR(500)")


def get_session() -> Generator[Session, None, None]:
    session = Session(engine)
    try:
        yield session
    finally:
        session.close()
