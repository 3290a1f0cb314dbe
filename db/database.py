import os
import platform
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

# Default SQLite path, stored in a user data directory so it survives
# package upgrades and works when installed via pip/pipx.
# Override with TC_CERT_DB_URL (full SQLAlchemy URL) or TC_CERT_DB_PATH.
if platform.system() == "Windows":
    _DEFAULT_DB_PATH = Path(os.environ.get("APPDATA", Path.home())) / "tc-cert-rotate" / "tc-cert.db"
else:
    _DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "tc-cert-rotate" / "tc-cert.db"

_engine = None
_SessionFactory = None


def get_db_url() -> str:
    if url := os.environ.get("TC_CERT_DB_URL"):
        return url
    db_path = os.environ.get("TC_CERT_DB_PATH", str(_DEFAULT_DB_PATH))
    return f"sqlite:///{db_path}"


def init_db(db_url: Optional[str] = None) -> None:
    """Create tables and initialise the session factory.

    Call once at startup (CLI entry point or test fixture). Safe to call
    multiple times; the last URL wins.
    """
    global _engine, _SessionFactory
    url = db_url or get_db_url()
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    Base.metadata.create_all(_engine)


def _ensure_init() -> None:
    if _SessionFactory is None:
        init_db()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Context manager that yields a database session with auto commit/rollback."""
    _ensure_init()
    session: Session = _SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
