"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine construction with sane pooling defaults
- The entitlement_records table definition
- Dialect-aware upsert statements (PostgreSQL in production, SQLite for tests)

There is no module-level engine: the application lifespan builds one and
hands it to the store explicitly.
"""
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Index, MetaData, String, Table, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def init_engine(database_url: Optional[str]) -> Engine:
    """
    Build a SQLAlchemy engine for the given URL.

    SQLite URLs get a single shared connection usable from the threadpool;
    everything else gets a bounded QueuePool.

    Raises:
        ValueError: If database_url is empty
    """
    if not database_url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def create_all_tables(engine: Engine) -> None:
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    """Return True when a trivial query succeeds against the engine."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True


def upsert_statement(engine: Engine, table: Table):
    """Return the dialect's INSERT construct that supports ON CONFLICT."""
    dialect = engine.dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ValueError(f"Atomic upsert is not supported for dialect: {dialect}")
    return insert(table)


# Entitlement records, one row per email
entitlement_records = Table(
    'entitlement_records',
    metadata,
    Column('email', String(320), primary_key=True),
    Column('is_pro', Boolean, nullable=False, default=False),
    Column('method', String(32), nullable=False, default="unset"),
    Column('subscription_status', String(32), nullable=True),
    Column('stripe_customer_id', String(255), nullable=True),
    Column('subscription_id', String(255), nullable=True),
    Column('lifetime_access', Boolean, nullable=False, default=False),
    Column('activated_at', DateTime(timezone=True), nullable=True),
    Column('last_payment', DateTime(timezone=True), nullable=True),
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('cancel_requested_at', DateTime(timezone=True), nullable=True),
    Column('code_used_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column('updated_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Support lookups by Stripe customer id
    Index('idx_entitlement_records_customer', 'stripe_customer_id'),
)
