"""
Database configuration and session management for the Telegram relay.

The connection string comes from ``settings.database_url`` and defaults
to a SQLite file in the working directory.  ``SessionLocal`` produces
sessions for request handlers (through :func:`get_db`) and for the
background pipeline (through :class:`relay.store.ConversationStore`).
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import settings


def make_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    SQLite connections are shared between the request threads and the
    event loop, so the same-thread check is disabled.  In-memory SQLite
    gets a single static connection; otherwise every new connection
    would see an empty database.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = make_engine(settings.database_url)

# Autocommit and autoflush are disabled for explicit transaction
# control.  Objects stay readable after commit because the pipeline
# keeps using rows after their session is closed.
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)

# Base class for the ORM models.
Base = declarative_base()


def init_db() -> None:
    """Create all tables defined on the declarative Base."""
    import relay.models  # noqa: F401 – ensure models are registered

    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency that yields a database session and commits/rolls back as needed.

    The session is committed when the request finishes, rolled back if
    the handler raised, and closed in every case.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_readonly_db():
    """Dependency that yields a session that cannot keep any change.

    The session runs on one dedicated connection whose transaction is
    always rolled back.  pysqlite only opens a transaction for statements
    that start with INSERT, UPDATE, DELETE or REPLACE, so on SQLite the
    connection is also switched to ``query_only`` while the session is
    in use.
    """
    connection = engine.connect()
    sqlite = connection.dialect.name == "sqlite"
    if sqlite:
        connection.exec_driver_sql("PRAGMA query_only = ON")
    db = SessionLocal(bind=connection)
    try:
        yield db
    finally:
        db.close()
        connection.rollback()
        if sqlite:
            connection.exec_driver_sql("PRAGMA query_only = OFF")
        connection.close()
