"""Rule-first transaction categorization.

Credits are classified by amount and keywords alone. Debits go through an
ordered keyword table for common Indian merchants, then a person-name check for
P2P transfers, and only then to the injected provider fallback. Categorization
never raises: every failure degrades to OTHER at low confidence.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

from app.core.models import Category, CategoryResult, CategorySource, Direction
from app.core.utils import get_logger

logger = get_logger("spend-parser.categorization")

RULE_CONFIDENCE = 0.8
PERSON_CONFIDENCE = 0.7
SALARY_CONFIDENCE = 0.6
TRANSFER_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.3
DEFAULT_SALARY_THRESHOLD = 20000.0

REFUND_PATTERN = re.compile(r"refund|return")
CASHBACK_PATTERN = re.compile(r"cashback|reward|bonus")

CategoryFallback = Callable[[str | None, str | None, float, Direction], CategoryResult]


@dataclass(frozen=True)
class CategoryRule:
    """Keyword rule-set for one category."""

    category: Category
    keywords: tuple[str, ...]


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        Category.FOOD_DINING,
        (
            "swiggy", "zomato", "dominos", "pizza hut", "mcdonalds", "kfc", "burger king", "starbucks",
            "cafe coffee day", "ccd", "subway", "haldirams", "restaurant", "cafe", "food", "dining",
            "biryani", "kitchen",
        ),
    ),
    CategoryRule(
        Category.GROCERIES,
        (
            "bigbasket", "big basket", "grofers", "blinkit", "zepto", "dmart", "d-mart", "reliance fresh",
            "reliance smart", "more supermarket", "star bazaar", "spencer", "nature basket", "jiomart",
            "kirana", "grocery", "supermarket", "vegetables", "fruits",
        ),
    ),
    CategoryRule(
        Category.TRANSPORT,
        (
            "uber", "ola", "rapido", "metro", "dmrc", "bmtc", "auto", "rickshaw", "petrol", "diesel", "fuel",
            "hp", "bharat petroleum", "indian oil", "iocl", "bpcl", "hpcl", "parking", "fastag", "toll",
        ),
    ),
    CategoryRule(
        Category.SHOPPING,
        (
            "amazon", "flipkart", "myntra", "ajio", "nykaa", "meesho", "snapdeal", "croma", "reliance digital",
            "vijay sales", "decathlon", "lifestyle", "shoppers stop", "westside", "max", "pantaloons", "ikea",
            "pepperfry", "urban ladder",
        ),
    ),
    CategoryRule(
        Category.ENTERTAINMENT,
        (
            "netflix", "prime video", "hotstar", "disney", "spotify", "gaana", "wynk", "jiosaavn",
            "youtube premium", "bookmyshow", "pvr", "inox", "cinepolis", "movie", "cinema", "game", "gaming",
            "dream11", "mpl",
        ),
    ),
    CategoryRule(
        Category.UTILITIES,
        (
            "electricity", "power", "water", "gas", "piped gas", "mahanagar gas", "adani gas",
            "indraprastha gas", "broadband", "internet", "wifi", "jio", "airtel", "vi", "vodafone", "bsnl",
            "act fibernet", "tata sky", "dish tv", "mobile recharge", "postpaid", "prepaid",
        ),
    ),
    CategoryRule(
        Category.HEALTH,
        (
            "apollo", "fortis", "max hospital", "medplus", "netmeds", "pharmeasy", "1mg", "tata 1mg",
            "pharmacy", "medical", "doctor", "hospital", "clinic", "diagnostic", "lab", "pathology", "practo",
            "healthkart",
        ),
    ),
    CategoryRule(
        Category.EDUCATION,
        (
            "byju", "unacademy", "coursera", "udemy", "skillshare", "linkedin learning", "school", "college",
            "university", "tuition", "coaching", "exam", "books", "stationery",
        ),
    ),
    CategoryRule(
        Category.TRAVEL,
        (
            "makemytrip", "goibibo", "cleartrip", "yatra", "easemytrip", "irctc", "indian railways", "redbus",
            "abhibus", "oyo", "treebo", "fabhotels", "airbnb", "booking.com", "hotel", "flight", "train",
            "bus ticket",
        ),
    ),
    CategoryRule(
        Category.SUBSCRIPTION,
        ("subscription", "monthly", "annual", "renewal", "membership", "prime", "plus", "gold", "premium"),
    ),
    CategoryRule(
        Category.EMI,
        (
            "emi", "loan", "installment", "repayment", "principal", "interest", "home loan", "car loan",
            "personal loan", "education loan",
        ),
    ),
    CategoryRule(
        Category.INSURANCE,
        (
            "insurance", "lic", "hdfc life", "icici prudential", "sbi life", "max life", "bajaj allianz",
            "tata aig", "premium", "policy", "health insurance", "term insurance",
        ),
    ),
    CategoryRule(
        Category.INVESTMENT,
        (
            "mutual fund", "sip", "zerodha", "groww", "upstox", "kite", "coin", "fd", "fixed deposit",
            "recurring deposit", "rd", "gold", "sovereign gold", "sgb", "ppf", "nps", "stock", "share", "demat",
        ),
    ),
    CategoryRule(Category.RENT, ("rent", "house rent", "pg", "paying guest", "accommodation")),
)

# Short keywords ("hp", "vi", "pg") would match inside unrelated words.
SHORT_KEYWORD_LEN = 3


def _compile(keyword: str) -> re.Pattern:
    if len(keyword) <= SHORT_KEYWORD_LEN:
        return re.compile(rf"\b{re.escape(keyword)}\b")
    return re.compile(re.escape(keyword))


_COMPILED_RULES: tuple[tuple[Category, tuple[re.Pattern, ...]], ...] = tuple(
    (rule.category, tuple(_compile(keyword) for keyword in rule.keywords)) for rule in CATEGORY_RULES
)

_UPI_DOTTED_NAME = re.compile(r"^[a-z]+\.[a-z]+$", re.IGNORECASE)
_UPI_PLAIN_NAME = re.compile(r"^[a-z]+[0-9]*$", re.IGNORECASE)
_NON_LETTERS = re.compile(r"[^a-zA-Z\s]")


def match_rules(merchant: str | None, payee: str | None) -> CategoryResult | None:
    """First matching keyword rule over merchant and payee text, or None."""
    search_text = f"{merchant or ''} {payee or ''}".lower().strip()
    if not search_text:
        return None
    for category, patterns in _COMPILED_RULES:
        if any(pattern.search(search_text) for pattern in patterns):
            return CategoryResult(category=category, confidence=RULE_CONFIDENCE, source=CategorySource.RULE)
    return None


def looks_like_person_name(name: str | None) -> bool:
    """Heuristic for P2P counterparties: UPI local parts like ``first.last`` or short plain names."""
    if not name:
        return False
    if "@" in name:
        local_part = name.split("@", 1)[0]
        if _UPI_DOTTED_NAME.match(local_part):
            return True
        if _UPI_PLAIN_NAME.match(local_part) and len(local_part) < 15:
            return True
    words = _NON_LETTERS.sub("", name).split()
    return 1 <= len(words) <= 3 and all(2 <= len(word) <= 15 for word in words)


class CategoryRuleEngine:
    """Keyword-table classifier used before falling back to a provider."""

    def __init__(
        self,
        salary_threshold: float = DEFAULT_SALARY_THRESHOLD,
        fallback: CategoryFallback | None = None,
    ) -> None:
        """Initialize with the high-value credit threshold and an optional provider fallback."""
        self.salary_threshold = salary_threshold
        self.fallback = fallback

    def categorize(
        self,
        merchant: str | None,
        payee: str | None,
        amount: float,
        direction: Direction,
    ) -> CategoryResult:
        """Categorize one transaction. Never raises."""
        if direction is Direction.CREDIT:
            return self._categorize_credit(merchant, payee, amount)

        rule_result = match_rules(merchant, payee)
        if rule_result is not None:
            return rule_result

        if looks_like_person_name(merchant or payee):
            return CategoryResult(
                category=Category.TRANSFER, confidence=PERSON_CONFIDENCE, source=CategorySource.RULE
            )

        if self.fallback is not None:
            try:
                result = self.fallback(merchant, payee, amount, direction)
                return result.model_copy(update={"source": CategorySource.LLM})
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Category fallback failed for merchant={merchant!r} payee={payee!r}: {exc}")
        return CategoryResult(category=Category.OTHER, confidence=FALLBACK_CONFIDENCE, source=CategorySource.RULE)

    def _categorize_credit(self, merchant: str | None, payee: str | None, amount: float) -> CategoryResult:
        if amount > self.salary_threshold:
            return CategoryResult(category=Category.SALARY, confidence=SALARY_CONFIDENCE, source=CategorySource.RULE)
        name = (merchant or payee or "").lower()
        if REFUND_PATTERN.search(name):
            return CategoryResult(category=Category.REFUND, confidence=RULE_CONFIDENCE, source=CategorySource.RULE)
        if CASHBACK_PATTERN.search(name):
            return CategoryResult(category=Category.CASHBACK, confidence=RULE_CONFIDENCE, source=CategorySource.RULE)
        return CategoryResult(category=Category.TRANSFER, confidence=TRANSFER_CONFIDENCE, source=CategorySource.RULE)
