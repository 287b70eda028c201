"""SQLAlchemy database engine, session factory, and connection management.

Provides the shared engine, session factory, and declarative base for all
ORM models. SQLite connections enable WAL mode and foreign keys via an event
listener. Schema migrations are handled externally; ``create_tables`` is a
development convenience.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from tiro.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def _get_engine():
    settings = get_settings()
    connect_args = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args=connect_args,
        echo=settings.DEBUG,
    )
    if settings.DATABASE_URL.startswith("sqlite"):
        enable_sqlite_pragmas(engine)
    return engine


def enable_sqlite_pragmas(engine) -> None:
    """Turn on WAL mode and foreign keys for every new SQLite connection.

    pysqlite's own transaction handling breaks SAVEPOINT, which the invoice
    step relies on, so the driver is put in autocommit and SQLAlchemy emits
    BEGIN itself.
    """

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = _get_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all tables from ORM metadata (dev convenience)."""
    import tiro.models  # noqa: F401  (register mappers)

    Base.metadata.create_all(bind=engine)
