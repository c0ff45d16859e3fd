"""DB connection and ORM tables for the Spend Parser."""

import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.models import ParseStatus
from app.core.utils import utcnow

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class EventORM(Base):
    """One captured notification and its parse state."""

    __tablename__ = "events"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    device_id = Column(String, nullable=False)
    app_source = Column(String, nullable=False)
    posted_at = Column(DateTime, nullable=False)
    text_redacted = Column(Text, nullable=False)
    text_raw = Column(Text, nullable=True)
    text_hash = Column(String, nullable=False, index=True)
    locale = Column(String, nullable=False, default="en-IN")
    timezone = Column(String, nullable=False, default="Asia/Kolkata")
    parse_status = Column(String, nullable=False, default=ParseStatus.PENDING.value, index=True)
    parse_confidence = Column(Float, nullable=True)
    parse_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_events_user_created", "user_id", "created_at"),)

    transaction = relationship("TransactionORM", back_populates="event", uselist=False)


class TransactionORM(Base):
    """Durable transaction, created once per event that parses as a real transaction."""

    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False)
    event_id = Column(String, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, unique=True)
    occurred_at = Column(DateTime, nullable=False)
    amount = Column(Numeric(15, 2, asdecimal=False), nullable=False)
    currency = Column(String, nullable=False, default="INR")
    direction = Column(String, nullable=False)
    instrument = Column(String, nullable=True)
    merchant = Column(String, nullable=True)
    payee = Column(String, nullable=True)
    bank_hint = Column(String, nullable=True)
    ref_id = Column(String, nullable=True)
    category = Column(String, nullable=True)
    category_source = Column(String, nullable=True)
    confidence = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_transactions_user_occurred", "user_id", "occurred_at"),
        Index("idx_transactions_user_category", "user_id", "category"),
    )

    event = relationship("EventORM", back_populates="transaction")


class ParseCacheORM(Base):
    """Durable tier of the parse result cache, keyed by text fingerprint."""

    __tablename__ = "parse_cache"

    id = Column(String, primary_key=True, default=_new_id)
    text_hash = Column(String, nullable=False, unique=True)
    result_json = Column(Text, nullable=False)
    provider = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    hit_count = Column(Integer, nullable=False, default=0)
    last_hit_at = Column(DateTime, nullable=False, default=utcnow)


class WeeklySummaryORM(Base):
    """Latest computed spending summary of one user for one week."""

    __tablename__ = "weekly_summaries"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False)
    week_start = Column(DateTime, nullable=False)
    week_end = Column(DateTime, nullable=False)
    summary_json = Column(Text, nullable=False)
    transaction_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "week_start", name="uq_weekly_summaries_user_week"),)


class TokenUsageORM(Base):
    """Audit record of one billed provider call."""

    __tablename__ = "token_usage"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=True)
    provider = Column(String, nullable=False)
    model = Column(String, nullable=False)
    operation = Column(String, nullable=False)
    input_tokens = Column(Integer, nullable=False)
    output_tokens = Column(Integer, nullable=False)
    cost_usd = Column(Numeric(10, 6, asdecimal=False), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_token_usage_user_created", "user_id", "created_at"),
        Index("idx_token_usage_created", "created_at"),
    )


def get_engine(url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine using the given or configured database URL."""
    if url is None:
        from app.core.settings import get_settings

        url = get_settings().database_url
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)
