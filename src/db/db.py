import logging
import shutil
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event

from db.models import Base

DB_DIR = "db"
DB_FILE_NAME = "oracle.db"

logger = logging.getLogger(__name__)


def db_path(db_root: str | Path) -> Path:
    return Path(db_root) / DB_DIR / DB_FILE_NAME


def init_engine(db_root: str | Path, echo: bool = False, *, busy_timeout: float = 30.0) -> Engine:
    path = db_path(db_root)
    path.parent.mkdir(parents=True, exist_ok=True)

    engine: Engine = create_engine(
        f"sqlite:///{path}",
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)

    Base.metadata.create_all(engine)
    logger.info("Opened oracle store at %s", path)
    return engine


def clean_db(db_root: str | Path) -> bool:
    """Remove the whole data directory. Returns False when there was nothing to remove."""
    root = Path(db_root)
    if not root.exists():
        return False
    shutil.rmtree(root)
    return True


def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: object) -> None:
    # WAL lets readers keep going while a batch holds the write transaction.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()
