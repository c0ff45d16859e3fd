"""AnthropicProvider: secondary backend using the Anthropic Messages API."""

import anthropic

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

logger = get_logger("spend-parser.providers.anthropic")


class AnthropicProvider(BaseProvider):
    """Provider backed by Claude models."""

    name = "anthropic"

    def __init__(self, settings: Settings, client: object | None = None) -> None:
        """Initialize the provider with settings and an optional pre-built client."""
        self.settings = settings
        self.model = settings.anthropic_model
        self.client = client or anthropic.Anthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )

    def _complete(self, system_prompt: str, user_prompt: str) -> tuple[str, LlmUsage]:
        """Send one message and return the text blocks joined, mapping SDK errors to provider errors."""
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.settings.llm_max_tokens,
                system=system_prompt.strip(),
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.RateLimitError as exc:
            retry_after = parse_retry_after(exc.response.headers.get("retry-after"))
            logger.warning(f"Anthropic rate limited, retry after {retry_after}")
            raise RateLimitError(self.name, retry_after) from exc
        except anthropic.APIStatusError as exc:
            msg = f"Anthropic API error {exc.status_code}: {exc.message}"
            logger.exception(msg)
            raise ProviderError(
                msg, self.name, retryable=is_retryable_status(exc.status_code), status_code=exc.status_code
            ) from exc
        except anthropic.APIConnectionError as exc:
            msg = f"Anthropic API call failed: {exc}"
            logger.exception(msg)
            raise ProviderError(msg, self.name, retryable=True) from exc

        text = "".join(block.text for block in message.content if getattr(block, "type", None) == "text")
        if not text:
            msg = "Anthropic returned an empty response"
            raise ProviderError(msg, self.name, retryable=False)
        usage = LlmUsage(
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            model=self.model,
        )
        return text, usage

    def parse_transaction(self, text: str, context: ParseContext) -> tuple[ParsedTransaction, LlmUsage]:
        """Use the model to parse one notification text."""
        user_prompt = build_parse_prompt(text, context.app_source, context.posted_at, context.timezone, context.locale)
        raw_output, usage = self._complete(PARSE_SYSTEM_PROMPT, user_prompt)
        return self._validate(raw_output, ParsedTransaction), usage

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
        """Cheap authenticated call; any SDK error counts as unhealthy."""
        try:
            self.client.models.list(limit=1)
        except anthropic.AnthropicError as exc:
            logger.warning(f"Anthropic health check failed: {exc}")
            return False
        return True
