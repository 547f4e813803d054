# cod_orders/database.py
from contextlib import contextmanager

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from cod_orders.core.config import get_settings

settings = get_settings()


def _engine_options(db_url: str) -> tuple[str, dict]:
    """
    Build the URL and engine kwargs for the configured database.

    Supabase Postgres (via pooler):
      - sslmode=require   : enforce SSL when running in the cloud
      - pool_size=1       : keep only 1 connection to the Supabase pooler
      - max_overflow=0    : do not open extra connections beyond the pool
      - pool_pre_ping=True: validate connections before using them

    Supabase Session mode limits the number of clients. If each backend
    process opens many connections you can easily hit:
      "MaxClientsInSessionMode: max clients reached"

    SQLite (local runs and tests) shares one connection through StaticPool
    so an in-memory database survives across sessions.
    """
    if db_url.startswith("sqlite"):
        return db_url, {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }

    # Append sslmode=require if it is not already present
    if "sslmode=" not in db_url:
        if "?" in db_url:
            db_url = db_url + "&sslmode=require"
        else:
            db_url = db_url + "?sslmode=require"

    return db_url, {
        "pool_pre_ping": True,
        "pool_size": 1,
        "max_overflow": 0,
    }


db_url, engine_options = _engine_options(settings.DATABASE_URL)

engine = create_engine(
    db_url,
    echo=False,  # set to True if you want to debug SQL queries
    **engine_options,
)


def create_db_and_tables() -> None:
    """
    Create all tables defined in SQLModel metadata if they do not exist.

    This is called once on application startup.
    """
    SQLModel.metadata.create_all(engine)


def get_session():
    """
    FastAPI dependency that yields a SQLModel Session.

    Services own commit/rollback; the session is closed here.
    """
    with Session(engine) as session:
        yield session


@contextmanager
def unit_of_work(session: Session):
    """
    Commit everything done inside the block, or roll all of it back.

    Usage:

        with unit_of_work(session):
            repo.transition(...)
            repo.add_history(...)
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
