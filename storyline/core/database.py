"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (StaticPool for in-memory SQLite)
- Test database support
- Table definitions for the entitlement, billing, usage and answer stores
"""
from typing import List, Optional
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os

from sqlalchemy import create_engine, inspect, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, ForeignKey, UniqueConstraint, text
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
from sqlalchemy.exc import SQLAlchemyError

from storyline.core.config import settings

logger = logging.getLogger("storyline")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if make_url(url).get_backend_name() == "sqlite":
        # One shared connection so in-memory databases survive across sessions and threads
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the current engine."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on error. Each block is one transaction.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def missing_tables() -> List[str]:
    """Tables defined in metadata that the database does not have yet."""
    inspector = inspect(get_engine())
    return [name for name in sorted(metadata.tables) if not inspector.has_table(name)]


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, ValueError) as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetimes read back from drivers that drop tzinfo (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Users (identity mirror of the auth provider)
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, index=True),
    Column('display_name', Text, nullable=True),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Entitlement record: plan tier, admin override and consumable credits
user_status = Table(
    'user_status',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('plan_indicator', Integer, nullable=False, server_default='0'),  # 0 basic, 1 premium
    Column('custom_premium', Integer, nullable=False, server_default='0'),
    Column('credit_balance', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Local subscription cache mirrored from Stripe, one row per user
stripe_subscriptions = Table(
    'stripe_subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, unique=True),
    Column('stripe_customer_id', String(100), nullable=True),
    Column('stripe_subscription_id', String(100), nullable=True),
    Column('subscription_status', String(50), nullable=True),
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default='false'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_stripe_subscriptions_period_end', 'current_period_end'),
)

# Billing events (webhook idempotency)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False),
    Column('event_type', String(100), nullable=False, index=True),
    Column('user_id', String(100), nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of the raw body
    Column('processed', Boolean, nullable=False, server_default='false'),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    UniqueConstraint('stripe_event_id', name='uq_billing_events_stripe_id'),
    Index('idx_billing_events_received_at', 'received_at'),
)

# Usage events; monthly counters are reduced from timestamps at read time
usage_events = Table(
    'usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('usage_key', String(100), nullable=False),
    Column('occurred_at', DateTime(timezone=True), nullable=False),
    Column('metadata', JSON, nullable=True),
    Index('idx_usage_events_user_key_occurred', 'user_id', 'usage_key', 'occurred_at'),
)

# Practice sessions (a job application with its generated questions)
practice_jobs = Table(
    'practice_jobs',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('job_title', Text, nullable=True),
    Column('company_name', Text, nullable=True),
    Column('job_description', Text, nullable=True),
    Column('status', String(50), nullable=False, server_default='pending'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

job_questions = Table(
    'job_questions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('job_id', String(36), ForeignKey('practice_jobs.id', ondelete='CASCADE'), nullable=False),
    Column('question_index', Integer, nullable=False),
    Column('question', Text, nullable=False),
    Column('question_type', String(50), nullable=False, server_default='behavioral'),
    UniqueConstraint('job_id', 'question_index', name='uq_job_questions_job_index'),
)

# Append-only answer history; the highest seq is the current iteration
answer_iterations = Table(
    'answer_iterations',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('job_id', String(36), ForeignKey('practice_jobs.id', ondelete='CASCADE'), nullable=False),
    Column('question_index', Integer, nullable=False),
    Column('seq', Integer, nullable=False),
    Column('answer_text', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('feedback', JSON, nullable=True),
    Column('feedback_attached_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('job_id', 'question_index', 'seq', name='uq_answer_iterations_seq'),
    Index('idx_answer_iterations_job_question', 'job_id', 'question_index'),
)
