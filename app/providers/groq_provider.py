"""GroqProvider: primary language-model backend using Groq chat completions in JSON mode.

The client is built with a bounded timeout and no SDK-side retries; retry
policy belongs to the caller (explicit retry of FAILED events), and every
failure is classified into a retryable or non-retryable ``ProviderError``.
"""

import groq
from groq import Groq

from app.core.errors import ProviderError, RateLimitError
from app.core.models import CategoryResult, Direction, ParsedTransaction
from app.core.settings import Settings
from app.core.utils import get_logger
from app.providers.base import BaseProvider, LlmUsage, ParseContext, is_retryable_status, parse_retry_after
from app.providers.prompts import (
    CATEGORIZE_SYSTEM_PROMPT,
    PARSE_SYSTEM_PROMPT,
    build_categorize_prompt,
    build_parse_prompt,
)

PROMPT_LOG_LEN = 80

logger = get_logger("spend-parser.providers.groq")


class GroqProvider(BaseProvider):
    """Provider backed by the Groq API."""

    name = "groq"

    def __init__(self, settings: Settings, client: object | None = None) -> None:
        """Initialize the provider with settings and an optional pre-built client."""
        self.settings = settings
        self.model = settings.groq_model
        self.client = client or Groq(
            api_key=settings.groq_api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )

    def _complete(self, system_prompt: str, user_prompt: str) -> tuple[str, LlmUsage]:
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.1,
                max_completion_tokens=self.settings.llm_max_tokens,
                response_format={"type": "json_object"},
            )
        except groq.RateLimitError as exc:
            retry_after = parse_retry_after(exc.response.headers.get("retry-after"))
            logger.warning(f"Groq rate limited, retry after {retry_after}")
            raise RateLimitError(self.name, retry_after) from exc
        except groq.APIStatusError as exc:
            msg = f"Groq API error {exc.status_code}: {exc.message}"
            logger.exception(msg)
            raise ProviderError(
                msg, self.name, retryable=is_retryable_status(exc.status_code), status_code=exc.status_code
            ) from exc
        except groq.APIConnectionError as exc:
            # Timeouts are a subclass of connection errors.
            msg = f"Groq API call failed: {exc}"
            logger.exception(msg)
            raise ProviderError(msg, self.name, retryable=True) from exc

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            msg = "Groq returned an empty response"
            raise ProviderError(msg, self.name, retryable=False)
        usage = LlmUsage(
            input_tokens=getattr(completion.usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(completion.usage, "completion_tokens", 0) or 0,
            model=self.model,
        )
        return content, usage

    def parse_transaction(self, text: str, context: ParseContext) -> tuple[ParsedTransaction, LlmUsage]:
        """Use the model to parse one notification text."""
        logger.info(f"Parsing with Groq: {text[:PROMPT_LOG_LEN]!r}")
        user_prompt = build_parse_prompt(text, context.app_source, context.posted_at, context.timezone, context.locale)
        raw_output, usage = self._complete(PARSE_SYSTEM_PROMPT, user_prompt)
        transaction = self._validate(raw_output, ParsedTransaction)
        return transaction, usage

    def categorize(
        self,
        merchant: str | None,
        payee: str | None,
        amount: float,
        direction: Direction,
    ) -> tuple[CategoryResult, LlmUsage]:
        """Use the model to categorize one transaction."""
        user_prompt = build_categorize_prompt(merchant, payee, amount, direction.value)
        raw_output, usage = self._complete(CATEGORIZE_SYSTEM_PROMPT, user_prompt)
        return self._validate(raw_output, CategoryResult), usage

    def health_check(self) -> bool:
        try:
            self.client.models.list()
        except groq.GroqError as exc:
            logger.warning(f"Groq health check failed: {exc}")
            return False
        return True
