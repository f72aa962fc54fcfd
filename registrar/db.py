from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from .config import settings


def _build_engine(url: str) -> Engine:
    # SQLite en tests y desarrollo local: permitir uso desde varios hilos (cola de tareas)
    if url.startswith("sqlite"):
        built = create_engine(
            url,
            echo=settings.debug,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(built, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return built
    return create_engine(url, echo=settings.debug, pool_pre_ping=True)


engine = _build_engine(settings.database_url)


def init_db():
    # Importar modelos para asegurar que todas las tablas estén registradas en el metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    session = Session(engine)
    try:
        yield session
    finally:
        session.close()
