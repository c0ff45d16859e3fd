"""Base provider abstraction for language-model backends.

Every backend exposes the same three operations: parse a notification into a
``ParsedTransaction``, categorize a transaction, and report health. Both model
operations return the usage alongside the result so the cost guard can bill it.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from app.core.errors import ProviderError
from app.core.models import CategoryResult, Direction, ParsedTransaction
from app.core.utils import get_logger

logger = get_logger("spend-parser.providers")

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})
SERVER_ERROR_MIN = 500

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class ParseContext:
    """Where and when a notification was captured."""

    app_source: str
    locale: str = "en-IN"
    timezone: str = "Asia/Kolkata"
    posted_at: str | None = None


@dataclass(frozen=True)
class LlmUsage:
    """Token usage of one billed call."""

    input_tokens: int
    output_tokens: int
    model: str


def is_retryable_status(status_code: int | None) -> bool:
    """Timeouts, conflicts, rate limits and server errors are worth retrying."""
    if status_code is None:
        return False
    return status_code in RETRYABLE_STATUS_CODES or status_code >= SERVER_ERROR_MIN


def parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def extract_json_object(raw_output: str) -> dict[str, Any]:
    """Pull the JSON object out of model output, tolerating code fences and chatter."""
    text = _FENCE.sub("", raw_output.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(text)
        if not match:
            msg = f"No JSON object in model output: {raw_output[:200]!r}"
            raise ValueError(msg) from None
        data = json.loads(match.group(0))
    if not isinstance(data, dict):
        msg = f"Expected a JSON object, got {type(data).__name__}"
        raise ValueError(msg)
    return data


class BaseProvider(ABC):
    """Abstract base class for all language-model providers."""

    name: str
    model: str

    @abstractmethod
    def parse_transaction(self, text: str, context: ParseContext) -> tuple[ParsedTransaction, LlmUsage]:
        """Parse one notification text into a transaction."""

    @abstractmethod
    def categorize(
        self,
        merchant: str | None,
        payee: str | None,
        amount: float,
        direction: Direction,
    ) -> tuple[CategoryResult, LlmUsage]:
        """Categorize one transaction."""

    @abstractmethod
    def health_check(self) -> bool:
        """Return True if the backend is reachable and configured."""

    def _validate(self, raw_output: str, model_cls: type[BaseModel]) -> Any:
        """Decode and validate model output; malformed output is a non-retryable provider error."""
        try:
            return model_cls.model_validate(extract_json_object(raw_output))
        except (ValueError, ValidationError) as exc:
            msg = f"{self.name} returned invalid output: {exc}"
            logger.warning(msg)
            raise ProviderError(msg, self.name, retryable=False) from exc
