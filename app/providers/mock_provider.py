"""MockProvider: deterministic stand-in backend for development, tests and evaluation runs."""

import re
import time

from app.core.models import Category, CategoryResult, Direction, Instrument, ParsedTransaction
from app.providers.base import BaseProvider, LlmUsage, ParseContext

MOCK_MODEL = "mock"

_AMOUNT = re.compile(r"(?:rs\.?|inr|₹)\s*([\d,]+(?:\.\d{2})?)", re.IGNORECASE)
_TRANSACTION_VERB = re.compile(r"debited|credited|paid|received|sent|transferred")
_DEBIT_VERB = re.compile(r"debited|paid|sent|transferred to|purchase")
_COUNTERPARTY = re.compile(r"(?:to|at)\s+([A-Za-z][A-Za-z0-9\s]+?)(?:\s+on|\s+ref|\.|\s*$)", re.IGNORECASE)
_REFERENCE = re.compile(r"(?:ref(?:erence)?|txn|utr)[:\s#]*([A-Z0-9]{8,})", re.IGNORECASE)
_BANKS = ("hdfc", "icici", "sbi", "axis", "kotak", "yes bank", "pnb")

_INSTRUMENTS = (
    (re.compile(r"upi|@"), Instrument.UPI),
    (re.compile(r"card"), Instrument.CARD),
    (re.compile(r"neft"), Instrument.NEFT),
    (re.compile(r"imps"), Instrument.IMPS),
    (re.compile(r"wallet"), Instrument.WALLET),
)

_CATEGORY_KEYWORDS = (
    (re.compile(r"swiggy|zomato|restaurant|cafe|food"), Category.FOOD_DINING),
    (re.compile(r"amazon|flipkart|myntra|shop"), Category.SHOPPING),
    (re.compile(r"uber|ola|metro|fuel|petrol"), Category.TRANSPORT),
    (re.compile(r"netflix|spotify|hotstar|prime"), Category.ENTERTAINMENT),
    (re.compile(r"bigbasket|dmart|grocery|reliance fresh"), Category.GROCERIES),
    (re.compile(r"electricity|water|gas|internet|jio|airtel"), Category.UTILITIES),
)
MOCK_SALARY_THRESHOLD = 10000


class MockProvider(BaseProvider):
    """Keyword-driven provider with a fixed usage per call and an artificial latency."""

    name = "mock"
    model = MOCK_MODEL

    def __init__(self, latency_ms: int = 100) -> None:
        """Initialize with the artificial per-call latency in milliseconds."""
        self.latency_ms = latency_ms

    def _simulate_latency(self) -> None:
        if self.latency_ms > 0:
            time.sleep(self.latency_ms / 1000)

    def parse_transaction(self, text: str, context: ParseContext) -> tuple[ParsedTransaction, LlmUsage]:
        """Keyword parse: an amount plus a transaction verb makes a transaction at confidence 0.7."""
        self._simulate_latency()
        lower = text.lower()
        amount_match = _AMOUNT.search(text)

        if not amount_match or not _TRANSACTION_VERB.search(lower):
            transaction = ParsedTransaction(
                is_transaction=False,
                app_hint=context.app_source,
                confidence=0.9,
                reason="Not a financial transaction",
            )
            return transaction, LlmUsage(input_tokens=50, output_tokens=30, model=MOCK_MODEL)

        direction = Direction.DEBIT if _DEBIT_VERB.search(lower) else Direction.CREDIT
        merchant = payee = None
        counterparty = _COUNTERPARTY.search(text)
        if counterparty:
            if direction is Direction.DEBIT:
                merchant = counterparty.group(1).strip()
            else:
                payee = counterparty.group(1).strip()

        instrument = next((value for pattern, value in _INSTRUMENTS if pattern.search(lower)), None)
        bank = next((bank.upper() for bank in _BANKS if bank in lower), None)
        reference = _REFERENCE.search(text)

        transaction = ParsedTransaction(
            is_transaction=True,
            amount=float(amount_match.group(1).replace(",", "")),
            direction=direction,
            occurred_at=context.posted_at,
            merchant=merchant,
            payee=payee,
            instrument=instrument,
            bank_hint=bank,
            app_hint=context.app_source,
            reference_id=reference.group(1) if reference else None,
            confidence=0.7,
        )
        return transaction, LlmUsage(input_tokens=50, output_tokens=80, model=MOCK_MODEL)

    def categorize(
        self,
        merchant: str | None,
        payee: str | None,
        amount: float,
        direction: Direction,
    ) -> tuple[CategoryResult, LlmUsage]:
        """Keyword categorization; large unmatched credits are salary."""
        self._simulate_latency()
        name = (merchant or payee or "").lower()
        category = next((value for pattern, value in _CATEGORY_KEYWORDS if pattern.search(name)), None)
        if category is None:
            category = (
                Category.SALARY
                if direction is Direction.CREDIT and amount > MOCK_SALARY_THRESHOLD
                else Category.OTHER
            )
        subcategory = "Streaming" if category is Category.ENTERTAINMENT else None
        result = CategoryResult(category=category, subcategory=subcategory, confidence=0.6)
        return result, LlmUsage(input_tokens=20, output_tokens=20, model=MOCK_MODEL)

    def health_check(self) -> bool:
        """Always healthy."""
        return True
