"""Zero-cost heuristic extractor for payment notifications.

Pure functions only: no network, no storage. The extractor runs a fixed,
ordered set of regex checks and scores the result additively, so adding a
detectable field never lowers the confidence.
"""

import re
from dataclasses import dataclass

from app.core.models import Direction, Instrument, ParsedTransaction

NON_TRANSACTION_CONFIDENCE = 0.95
NO_AMOUNT_CONFIDENCE = 0.3
NO_DIRECTION_CONFIDENCE = 0.4

BASE_CONFIDENCE = 0.5
AMOUNT_WEIGHT = 0.15
DIRECTION_WEIGHT = 0.15
REFERENCE_WEIGHT = 0.10
COUNTERPARTY_WEIGHT = 0.05
INSTRUMENT_WEIGHT = 0.05

MAX_NAME_LEN = 50

_NUMBER = r"(\d[\d,]*(?:\.\d{1,2})?)"

AMOUNT_PATTERNS = [
    re.compile(rf"(?:\brs\.?|\binr|₹)\s*{_NUMBER}", re.IGNORECASE),
    re.compile(rf"\b(?:amount|amt)[:\s]*{_NUMBER}", re.IGNORECASE),
    re.compile(rf"{_NUMBER}\s*(?:rs\b\.?|inr\b|₹)", re.IGNORECASE),
]

# Checked in order; debit wins on text that carries both kinds of keyword.
DEBIT_PATTERNS = [
    re.compile(r"\bdebited\b", re.IGNORECASE),
    re.compile(r"\bpaid\s+(?:to\b|at\b|for\b|rs\b|inr\b|₹)", re.IGNORECASE),
    re.compile(r"\bsent\s+(?:to\b|money\b|rs\b|inr\b|₹)", re.IGNORECASE),
    re.compile(r"\btransferred\s+to\b", re.IGNORECASE),
    re.compile(r"\bpurchase", re.IGNORECASE),
    re.compile(r"\bpayment\s+(?:of|for)\b", re.IGNORECASE),
    re.compile(r"\bspent\b", re.IGNORECASE),
    re.compile(r"\bwithdrawn\b", re.IGNORECASE),
]

CREDIT_PATTERNS = [
    re.compile(r"\bcredited\b", re.IGNORECASE),
    re.compile(r"\breceived\s+(?:from\b|money\b|rs\b|inr\b|₹)", re.IGNORECASE),
    re.compile(r"\brefund", re.IGNORECASE),
    re.compile(r"\bcashback\b", re.IGNORECASE),
    re.compile(r"\btransferred\s+from\b", re.IGNORECASE),
    re.compile(r"\bdeposited\b", re.IGNORECASE),
]

NON_TRANSACTION_PATTERNS = [
    re.compile(r"\botp\b", re.IGNORECASE),
    re.compile(r"one.?time.?password", re.IGNORECASE),
    re.compile(r"verification.?code", re.IGNORECASE),
    re.compile(r"\blogin\b", re.IGNORECASE),
    re.compile(r"\balert\b.*\bsecurity\b", re.IGNORECASE),
    re.compile(r"password.?(?:change|reset)", re.IGNORECASE),
    re.compile(r"promotional", re.IGNORECASE),
    re.compile(r"\boffer\b.*\bexpir", re.IGNORECASE),
    re.compile(r"balance.?(?:is|enquiry|check)", re.IGNORECASE),
    re.compile(r"minimum.?balance", re.IGNORECASE),
    re.compile(r"\bkyc\b", re.IGNORECASE),
    re.compile(r"click.?(?:here|link)", re.IGNORECASE),
]

UPI_ID_PATTERN = re.compile(r"([a-zA-Z0-9._-]+@[a-zA-Z0-9]+)")

REFERENCE_PATTERNS = [
    re.compile(r"\b(?:ref(?:erence)?|txn|utr|rrn)(?:\s*(?:no|id)\.?)?[:\s#.]*([A-Z0-9]{8,})", re.IGNORECASE),
    re.compile(r"\btransaction\s*(?:id|no)?[:\s#.]*([A-Z0-9]{8,})", re.IGNORECASE),
]

INSTRUMENT_PATTERNS = [
    (Instrument.CARD, re.compile(r"\bcard\b", re.IGNORECASE)),
    (Instrument.NEFT, re.compile(r"\bneft\b", re.IGNORECASE)),
    (Instrument.IMPS, re.compile(r"\bimps\b", re.IGNORECASE)),
    (Instrument.WALLET, re.compile(r"\bwallet\b", re.IGNORECASE)),
]
UPI_WORD = re.compile(r"\bupi\b", re.IGNORECASE)

BANKS = [
    "hdfc",
    "icici",
    "sbi",
    "axis",
    "kotak",
    "yes bank",
    "pnb",
    "bob",
    "canara",
    "union",
    "idbi",
    "indusind",
    "rbl",
    "federal",
    "bandhan",
]
_BANK_PATTERNS = [(bank, re.compile(rf"\b{re.escape(bank)}\b")) for bank in BANKS]

APPS = {
    "gpay": "Google Pay",
    "google pay": "Google Pay",
    "phonepe": "PhonePe",
    "paytm": "Paytm",
    "amazon pay": "Amazon Pay",
    "bhim": "BHIM",
    "cred": "CRED",
}
_APP_PATTERNS = [(re.compile(rf"\b{re.escape(key)}\b"), value) for key, value in APPS.items()]

_NAME = r"([A-Za-z][A-Za-z0-9\s&'.]*?)"
_NAME_END = r"(?=\s+(?:on|ref|via|using|order|upi|avl|bal|towards)\b|[.,;]|\s*$)"

TO_PATTERNS = [
    re.compile(rf"\b(?:to|at|for)\s+{_NAME}{_NAME_END}", re.IGNORECASE),
    re.compile(rf"\bpaid\s+(?:to\s+)?{_NAME}\s+(?:rs\b|inr\b|₹)", re.IGNORECASE),
]

FROM_PATTERNS = [
    re.compile(rf"\bfrom\s+{_NAME}{_NAME_END}", re.IGNORECASE),
    re.compile(rf"\breceived\s+(?:from\s+)?{_NAME}\s+(?:rs\b|inr\b|₹)", re.IGNORECASE),
]

# Captures that name the account holder rather than a counterparty.
_SELF_REFERENCES = re.compile(r"^(?:your|you|my|a/?c|account|the)\b", re.IGNORECASE)


@dataclass(frozen=True)
class HeuristicResult:
    """Outcome of a heuristic pass: a transaction or None, plus confidence and provenance."""

    transaction: ParsedTransaction | None
    confidence: float
    reason: str


def is_non_transaction(text: str) -> bool:
    """True when the text matches any "not a transaction" pattern."""
    return any(pattern.search(text) for pattern in NON_TRANSACTION_PATTERNS)


def extract_amount(text: str) -> float | None:
    """First matching currency amount, thousands separators removed."""
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(text)
        if match:
            try:
                return float(match.group(1).replace(",", ""))
            except ValueError:
                continue
    return None


def detect_direction(text: str) -> Direction | None:
    """DEBIT if any debit keyword is present, else CREDIT if any credit keyword is, else None."""
    if any(pattern.search(text) for pattern in DEBIT_PATTERNS):
        return Direction.DEBIT
    if any(pattern.search(text) for pattern in CREDIT_PATTERNS):
        return Direction.CREDIT
    return None


def extract_reference(text: str) -> str | None:
    """First transaction reference (UPI Ref, UTR, Txn id) in the text."""
    for pattern in REFERENCE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_upi_id(text: str) -> str | None:
    match = UPI_ID_PATTERN.search(text)
    return match.group(1) if match else None


def detect_instrument(text: str, upi_id: str | None = None) -> Instrument | None:
    """UPI when a UPI id or the word UPI is present, else the first matching rail."""
    if upi_id or UPI_WORD.search(text):
        return Instrument.UPI
    for instrument, pattern in INSTRUMENT_PATTERNS:
        if pattern.search(text):
            return instrument
    return None


def detect_bank(text: str) -> str | None:
    """Upper-cased short name of the first bank mentioned."""
    lower = text.lower()
    for bank, pattern in _BANK_PATTERNS:
        if pattern.search(lower):
            return bank.upper()
    return None


def detect_app(text: str, default: str | None) -> str | None:
    """Payment app named in the text, falling back to ``default`` (usually the source package)."""
    lower = text.lower()
    for pattern, app in _APP_PATTERNS:
        if pattern.search(lower):
            return app
    return default


def _capture_name(text: str, patterns: list[re.Pattern]) -> str | None:
    for pattern in patterns:
        for match in pattern.finditer(text):
            name = match.group(1).strip(" .'&")
            if name and not _SELF_REFERENCES.match(name):
                return name[:MAX_NAME_LEN]
    return None


def extract_counterparty(
    text: str, direction: Direction, upi_id: str | None = None
) -> tuple[str | None, str | None]:
    """Return ``(merchant, payee)``; only one side is filled, depending on direction."""
    if direction is Direction.DEBIT:
        merchant = _capture_name(text, TO_PATTERNS)
        if not merchant and upi_id:
            merchant = upi_id.split("@", 1)[0]
        return merchant, None
    payee = _capture_name(text, FROM_PATTERNS)
    if not payee and upi_id:
        payee = upi_id.split("@", 1)[0]
    return None, payee


def score(
    *,
    amount: float | None,
    direction: Direction | None,
    reference_id: str | None,
    counterparty: str | None,
    instrument: Instrument | None,
) -> float:
    """Additive confidence, clamped to 1.0."""
    confidence = BASE_CONFIDENCE
    if amount is not None:
        confidence += AMOUNT_WEIGHT
    if direction is not None:
        confidence += DIRECTION_WEIGHT
    if reference_id:
        confidence += REFERENCE_WEIGHT
    if counterparty:
        confidence += COUNTERPARTY_WEIGHT
    if instrument is not None:
        confidence += INSTRUMENT_WEIGHT
    return min(1.0, round(confidence, 4))


def extract(text: str, app_source: str | None = None, posted_at: str | None = None) -> HeuristicResult:
    """Run the ordered heuristic checks over one notification text."""
    if is_non_transaction(text):
        transaction = ParsedTransaction(
            is_transaction=False,
            app_hint=app_source,
            confidence=NON_TRANSACTION_CONFIDENCE,
            reason="Non-transaction message detected",
        )
        return HeuristicResult(transaction, NON_TRANSACTION_CONFIDENCE, "Matched non-transaction pattern")

    amount = extract_amount(text)
    if amount is None:
        return HeuristicResult(None, NO_AMOUNT_CONFIDENCE, "No amount found")

    direction = detect_direction(text)
    if direction is None:
        return HeuristicResult(None, NO_DIRECTION_CONFIDENCE, "Could not determine transaction direction")

    reference_id = extract_reference(text)
    upi_id = extract_upi_id(text)
    instrument = detect_instrument(text, upi_id)
    merchant, payee = extract_counterparty(text, direction, upi_id)

    confidence = score(
        amount=amount,
        direction=direction,
        reference_id=reference_id,
        counterparty=merchant or payee,
        instrument=instrument,
    )
    transaction = ParsedTransaction(
        is_transaction=True,
        amount=amount,
        currency="INR",
        direction=direction,
        occurred_at=posted_at,
        merchant=merchant,
        payee=payee,
        instrument=instrument,
        bank_hint=detect_bank(text),
        app_hint=detect_app(text, app_source),
        reference_id=reference_id,
        confidence=confidence,
    )
    return HeuristicResult(transaction, confidence, "Parsed with heuristics")
