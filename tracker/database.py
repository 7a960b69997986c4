from contextlib import contextmanager
from sqlalchemy import create_engine, event, make_url
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker, declarative_base, Session

SUPPORTED_BACKENDS = ("sqlite", "postgresql")

# Session factory for database operations
# Bound to an engine by configure_engine() at startup
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

# Base class for all models
Base = declarative_base()


class DatabaseConfigError(RuntimeError):
    """database_url names a backend the service cannot run on."""


def configure_engine(database_url: str, echo: bool = False, **kwargs):
    """
    Create engine and bind the session factory to it.

    Only SQLite and PostgreSQL are accepted, the two backends with
    INSERT .. ON CONFLICT. check_same_thread=False needed for SQLite since
    FastAPI runs sync handlers in a thread pool. For Postgres the default
    QueuePool is used.
    """
    backend = make_url(database_url).get_backend_name()
    if backend not in SUPPORTED_BACKENDS:
        raise DatabaseConfigError(
            f"Unsupported database backend {backend}; use one of {', '.join(SUPPORTED_BACKENDS)}"
        )

    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args, echo=echo, **kwargs)

    # SQLite ignores ON DELETE CASCADE unless asked per connection
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    SessionLocal.configure(bind=engine)
    return engine


def get_db():
    """
    Dependency that provides database session to route handlers.
    Ensures session is properly closed after request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(engine):
    """
    Initialize database schema.
    Creates all tables defined in models.
    Call this on application startup.
    """
    # Register models on Base.metadata
    from tracker import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


@contextmanager
def atomic(db: Session):
    """
    Run a block as one store transaction.

    Commits when the block finishes, rolls back every pending write
    if it raises. There is no compensating logic beyond the rollback.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def upsert_insert(db: Session, table):
    """
    Dialect-specific INSERT that supports ON CONFLICT clauses.

    Only SQLite and PostgreSQL are supported since both speak the same
    ON CONFLICT syntax.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")
