"""Pydantic models and enumerations for the Spend Parser.

This module defines the transient shapes that flow through the parsing pipeline
(ParsedTransaction, CategoryResult, CachedParseResult) and the request/response
bodies of the HTTP API. Model output arrives with camelCase keys, so every model
accepts both camelCase and snake_case field names.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ParseStatus(StrEnum):
    """Lifecycle of a stored event: PENDING until parsed, then exactly one terminal state."""

    PENDING = "PENDING"
    PARSED = "PARSED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class Direction(StrEnum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class Instrument(StrEnum):
    UPI = "UPI"
    CARD = "CARD"
    NEFT = "NEFT"
    IMPS = "IMPS"
    WALLET = "WALLET"
    CASH = "CASH"
    OTHER = "OTHER"


class CategorySource(StrEnum):
    RULE = "rule"
    LLM = "llm"
    USER = "user"


class ParseSource(StrEnum):
    CACHE = "cache"
    HEURISTIC = "heuristic"
    LLM = "llm"


class IngestStatus(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    ERROR = "error"


class Category(StrEnum):
    """Stable category taxonomy consumed by summary and export collaborators."""

    FOOD_DINING = "FOOD_DINING"
    GROCERIES = "GROCERIES"
    TRANSPORT = "TRANSPORT"
    SHOPPING = "SHOPPING"
    ENTERTAINMENT = "ENTERTAINMENT"
    UTILITIES = "UTILITIES"
    HEALTH = "HEALTH"
    EDUCATION = "EDUCATION"
    TRAVEL = "TRAVEL"
    SUBSCRIPTION = "SUBSCRIPTION"
    EMI = "EMI"
    INSURANCE = "INSURANCE"
    INVESTMENT = "INVESTMENT"
    RENT = "RENT"
    SALARY = "SALARY"
    REFUND = "REFUND"
    CASHBACK = "CASHBACK"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"

    @classmethod
    def coerce(cls, value: object) -> "Category":
        """Map a code or a label (any case) to a category, defaulting to OTHER."""
        if isinstance(value, Category):
            return value
        text = str(value or "").strip()
        key = text.upper().replace(" & ", "_").replace(" ", "_").replace("/", "_")
        if key in cls.__members__:
            return cls[key]
        for category, label in CATEGORY_LABELS.items():
            if label.lower() == text.lower():
                return category
        if key == "EMI_LOAN":
            return cls.EMI
        return cls.OTHER


CATEGORY_LABELS: dict[Category, str] = {
    Category.FOOD_DINING: "Food & Dining",
    Category.GROCERIES: "Groceries",
    Category.TRANSPORT: "Transport",
    Category.SHOPPING: "Shopping",
    Category.ENTERTAINMENT: "Entertainment",
    Category.UTILITIES: "Utilities",
    Category.HEALTH: "Health",
    Category.EDUCATION: "Education",
    Category.TRAVEL: "Travel",
    Category.SUBSCRIPTION: "Subscription",
    Category.EMI: "EMI/Loan",
    Category.INSURANCE: "Insurance",
    Category.INVESTMENT: "Investment",
    Category.RENT: "Rent",
    Category.SALARY: "Salary",
    Category.REFUND: "Refund",
    Category.CASHBACK: "Cashback",
    Category.TRANSFER: "Transfer",
    Category.OTHER: "Other",
}


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParsedTransaction(CamelModel):
    """Structured output of one parse attempt, from the heuristics or a provider."""

    is_transaction: bool
    amount: float | None = None
    currency: str = "INR"
    direction: Direction | None = None
    occurred_at: str | None = None
    merchant: str | None = None
    payee: str | None = None
    instrument: Instrument | None = None
    bank_hint: str | None = None
    app_hint: str | None = None
    reference_id: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    flags: list[str] = Field(default_factory=list)
    reason: str | None = None

    @field_validator("direction", mode="before")
    @classmethod
    def _upper_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().upper()
            return value or None
        return value

    @field_validator("instrument", mode="before")
    @classmethod
    def _known_instrument(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().upper()
            if not value:
                return None
            return value if value in Instrument.__members__ else Instrument.OTHER
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, int | float):
            return min(1.0, max(0.0, float(value)))
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _default_currency(cls, value: Any) -> Any:
        return value or "INR"

    @field_validator("flags", mode="before")
    @classmethod
    def _flags_list(cls, value: Any) -> Any:
        return value if value is not None else []


class CategoryResult(CamelModel):
    """Outcome of categorizing one transaction."""

    category: Category = Category.OTHER
    subcategory: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: CategorySource = CategorySource.LLM

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Category:
        return Category.coerce(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, int | float):
            return min(1.0, max(0.0, float(value)))
        return value


class CachedParseResult(CamelModel):
    """A cached parse result with its provenance (``heuristic`` or a provider name)."""

    transaction: ParsedTransaction
    provider: str
    cached_at: str


# --- API bodies ---


class EventInput(CamelModel):
    """One captured notification as sent by the device."""

    event_id: str = Field(min_length=1, max_length=64)
    device_id: str = Field(min_length=1, max_length=64)
    app_source: str = Field(min_length=1, max_length=50)
    posted_at: datetime
    text_redacted: str = Field(max_length=1000)
    text_raw: str | None = Field(default=None, max_length=1000)
    locale: str = "en-IN"
    timezone: str = "Asia/Kolkata"


class IngestRequest(CamelModel):
    """Batch of events for one user."""

    events: list[EventInput] = Field(min_length=1, max_length=100)


class IngestResult(CamelModel):
    """Per-item ingestion outcome."""

    event_id: str
    status: IngestStatus
    error: str | None = None


class IngestResponse(CamelModel):
    """Aggregate ingestion response."""

    success: bool = True
    accepted: int
    duplicates: int
    errors: int
    details: list[IngestResult]


class RetryResponse(CamelModel):
    """Number of FAILED events reset to PENDING."""

    retried: int


class EventStatus(CamelModel):
    """Parse status of a stored event."""

    event_id: str
    app_source: str
    posted_at: str
    parse_status: ParseStatus
    parse_confidence: float | None = None
    parse_error: str | None = None


class TransactionOut(CamelModel):
    """A user-visible transaction row."""

    id: str
    occurred_at: str
    amount: float
    currency: str
    direction: Direction
    instrument: str | None = None
    merchant: str | None = None
    payee: str | None = None
    category: Category | None = None
    category_source: CategorySource | None = None
    confidence: float
    app_source: str


class Pagination(CamelModel):
    """Limit/offset window of a listing; ``has_more`` is set when the page came back full."""

    limit: int
    offset: int
    has_more: bool


class RecentTransactionsResponse(CamelModel):
    """One page of the caller's transactions, newest first."""

    transactions: list[TransactionOut]
    pagination: Pagination


class SummaryTotals(CamelModel):
    """Money in and out over the summary week."""

    total_spent: float
    total_received: float
    net_flow: float
    transaction_count: int


class CategoryTotal(CamelModel):
    """Debit spend in one category."""

    category: Category
    total: float
    count: int


class MerchantTotal(CamelModel):
    """Debit spend at one merchant, name lower-cased."""

    merchant: str
    total: float
    count: int


class WeeklySummary(CamelModel):
    """Spending summary of one user for one week.

    ``week_end`` is exclusive. Category and merchant breakdowns count debits
    only; ``subscriptions`` are merchants paid at least twice in the week.
    """

    week_start: str
    week_end: str
    totals: SummaryTotals
    top_merchants: list[MerchantTotal]
    categories: list[CategoryTotal]
    subscriptions: list[MerchantTotal]
    transaction_count: int
