from pathlib import Path
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine
from mnemos.config import settings
from mnemos.logging import logger

DB_PATH = Path(settings.DATABASE_PATH)
DB_URL = f"sqlite:///{DB_PATH}"


def make_engine(url: str = DB_URL) -> Engine:
    """Create an engine usable from both the caller thread and the formation worker."""
    engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


engine = make_engine()

def init_db(target: Engine = engine):
    if target.url.database and target.url.database != ":memory:":
        Path(target.url.database).parent.mkdir(parents=True, exist_ok=True)

    # Import all models here so SQLModel knows about them
    from mnemos.models import memory  # noqa: F401

    logger.info(f"Initializing database at {target.url}")
    SQLModel.metadata.create_all(target)
