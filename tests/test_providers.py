"""Tests for the provider backends and the registry."""

import json
from types import SimpleNamespace

import anthropic
import groq
import httpx
import pytest

from app.core.errors import ProviderError, RateLimitError
from app.core.models import Category, Direction, Instrument
from app.core.settings import Settings
from app.providers.anthropic_provider import AnthropicProvider
from app.providers.base import ParseContext, extract_json_object
from app.providers.groq_provider import GroqProvider
from app.providers.mock_provider import MockProvider
from app.providers.registry import ProviderKind, build_providers

CONTEXT = ParseContext(app_source="gpay", posted_at="2025-01-05T10:30:00.000Z")
GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"

PARSED_JSON = json.dumps(
    {
        "isTransaction": True,
        "amount": 349,
        "direction": "credit",
        "merchant": None,
        "payee": "Myntra",
        "instrument": "upi",
        "confidence": 0.92,
        "flags": None,
    }
)


def _groq_client(create) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _groq_completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
    )


def _raise(exc: Exception):
    def create(**_: object):
        raise exc

    return create


def test_extract_json_object_handles_fences_and_chatter() -> None:
    fenced = "```json\n{\"isTransaction\": false}\n```"
    chatty = 'Sure! Here is the result: {"isTransaction": false} Hope this helps.'
    for raw in (fenced, chatty):
        if extract_json_object(raw) != {"isTransaction": False}:
            msg = f"Failed to extract JSON from {raw!r}"
            raise AssertionError(msg)
    with pytest.raises(ValueError):
        extract_json_object("no json here")


def test_groq_parse_success(settings: Settings) -> None:
    calls = []

    def create(**kwargs: object) -> SimpleNamespace:
        calls.append(kwargs)
        return _groq_completion(PARSED_JSON)

    provider = GroqProvider(settings, client=_groq_client(create))
    transaction, usage = provider.parse_transaction("Refund of Rs.349 credited", CONTEXT)
    if transaction.direction is not Direction.CREDIT or transaction.instrument is not Instrument.UPI:
        msg = f"Expected normalized enums, got {transaction}"
        raise AssertionError(msg)
    if transaction.payee != "Myntra" or transaction.flags != []:
        msg = f"Unexpected transaction {transaction}"
        raise AssertionError(msg)
    if (usage.input_tokens, usage.output_tokens, usage.model) != (120, 40, settings.groq_model):
        msg = f"Unexpected usage {usage}"
        raise AssertionError(msg)
    if calls[0]["response_format"] != {"type": "json_object"}:
        msg = "Expected JSON mode"
        raise AssertionError(msg)


def test_groq_categorize(settings: Settings) -> None:
    content = json.dumps({"category": "Food & Dining", "subcategory": "Delivery", "confidence": 0.9})
    provider = GroqProvider(settings, client=_groq_client(lambda **_: _groq_completion(content)))
    result, _ = provider.categorize("Swiggy", None, 500, Direction.DEBIT)
    if result.category is not Category.FOOD_DINING or result.subcategory != "Delivery":
        msg = f"Expected FOOD_DINING/Delivery, got {result}"
        raise AssertionError(msg)


def test_groq_rate_limit_is_retryable(settings: Settings) -> None:
    response = httpx.Response(429, headers={"retry-after": "7"}, request=httpx.Request("POST", GROQ_URL))
    error = groq.RateLimitError("rate limited", response=response, body=None)
    provider = GroqProvider(settings, client=_groq_client(_raise(error)))
    with pytest.raises(RateLimitError) as info:
        provider.parse_transaction("text", CONTEXT)
    if not info.value.retryable or info.value.retry_after != 7.0 or info.value.status_code != 429:
        msg = f"Unexpected rate limit error {vars(info.value)}"
        raise AssertionError(msg)


@pytest.mark.parametrize(("status", "retryable"), [(500, True), (503, True), (408, True), (400, False), (401, False)])
def test_groq_status_errors_are_classified(settings: Settings, status: int, retryable: bool) -> None:
    response = httpx.Response(status, request=httpx.Request("POST", GROQ_URL))
    error = groq.APIStatusError("boom", response=response, body=None)
    provider = GroqProvider(settings, client=_groq_client(_raise(error)))
    with pytest.raises(ProviderError) as info:
        provider.parse_transaction("text", CONTEXT)
    if info.value.retryable is not retryable or info.value.status_code != status:
        msg = f"Status {status}: expected retryable={retryable}, got {info.value.retryable}"
        raise AssertionError(msg)


def test_groq_timeout_is_retryable(settings: Settings) -> None:
    error = groq.APITimeoutError(request=httpx.Request("POST", GROQ_URL))
    provider = GroqProvider(settings, client=_groq_client(_raise(error)))
    with pytest.raises(ProviderError) as info:
        provider.parse_transaction("text", CONTEXT)
    if not info.value.retryable or info.value.provider != "groq":
        msg = f"Expected a retryable groq error, got {vars(info.value)}"
        raise AssertionError(msg)


def test_groq_invalid_output_is_not_retryable(settings: Settings) -> None:
    provider = GroqProvider(settings, client=_groq_client(lambda **_: _groq_completion('{"amount": 5}')))
    with pytest.raises(ProviderError) as info:
        provider.parse_transaction("text", CONTEXT)
    if info.value.retryable:
        msg = "Schema violations must not be retryable"
        raise AssertionError(msg)


def _anthropic_client(create) -> SimpleNamespace:
    return SimpleNamespace(messages=SimpleNamespace(create=create))


def test_anthropic_parse_strips_fences(settings: Settings) -> None:
    def create(**_: object) -> SimpleNamespace:
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=f"```json\n{PARSED_JSON}\n```")],
            usage=SimpleNamespace(input_tokens=200, output_tokens=60),
        )

    provider = AnthropicProvider(settings, client=_anthropic_client(create))
    transaction, usage = provider.parse_transaction("Refund of Rs.349 credited", CONTEXT)
    if transaction.amount != 349 or usage.input_tokens != 200:
        msg = f"Unexpected result {transaction} {usage}"
        raise AssertionError(msg)


def test_anthropic_rate_limit(settings: Settings) -> None:
    response = httpx.Response(429, request=httpx.Request("POST", ANTHROPIC_URL))
    error = anthropic.RateLimitError("slow down", response=response, body=None)
    provider = AnthropicProvider(settings, client=_anthropic_client(_raise(error)))
    with pytest.raises(RateLimitError) as info:
        provider.categorize("Swiggy", None, 10, Direction.DEBIT)
    if info.value.retry_after is not None or info.value.provider != "anthropic":
        msg = f"Unexpected error {vars(info.value)}"
        raise AssertionError(msg)


def test_mock_provider_is_deterministic() -> None:
    provider = MockProvider(latency_ms=0)
    text = "Rs.1,250.00 paid to Uber on 05-Jan. UPI Ref 123456789012"
    first, usage = provider.parse_transaction(text, CONTEXT)
    second, _ = provider.parse_transaction(text, CONTEXT)
    if first != second:
        msg = "Expected identical results for identical input"
        raise AssertionError(msg)
    if not first.is_transaction or first.amount != 1250.0 or first.merchant != "Uber":
        msg = f"Unexpected mock parse {first}"
        raise AssertionError(msg)
    if first.confidence != 0.7 or (usage.input_tokens, usage.output_tokens) != (50, 80):
        msg = f"Unexpected confidence or usage: {first.confidence} {usage}"
        raise AssertionError(msg)


def test_mock_provider_non_transaction_and_categorize() -> None:
    provider = MockProvider(latency_ms=0)
    transaction, usage = provider.parse_transaction("Hello there", CONTEXT)
    if transaction.is_transaction or usage.output_tokens != 30:
        msg = f"Expected a non-transaction, got {transaction}"
        raise AssertionError(msg)
    result, _ = provider.categorize("Netflix", None, 499, Direction.DEBIT)
    if result.category is not Category.ENTERTAINMENT or result.subcategory != "Streaming":
        msg = f"Expected ENTERTAINMENT/Streaming, got {result}"
        raise AssertionError(msg)
    salary, _ = provider.categorize(None, "Employer", 50000, Direction.CREDIT)
    if salary.category is not Category.SALARY:
        msg = f"Expected SALARY, got {salary}"
        raise AssertionError(msg)


def test_registry_falls_back_to_mock(settings: Settings) -> None:
    providers = build_providers(settings.model_copy(update={"llm_primary_provider": None}))
    if providers.primary_kind is not ProviderKind.MOCK or providers.available() != [ProviderKind.MOCK]:
        msg = f"Expected only the mock, got {providers.available()}"
        raise AssertionError(msg)
    with pytest.raises(KeyError):
        providers.get(ProviderKind.GROQ)


def test_registry_prefers_configured_then_groq(settings: Settings) -> None:
    keyed = settings.model_copy(update={"groq_api_key": "gsk-test", "anthropic_api_key": "sk-ant-test"})

    default = build_providers(keyed.model_copy(update={"llm_primary_provider": None}))
    if default.primary_kind is not ProviderKind.GROQ:
        msg = f"Expected groq as default primary, got {default.primary_kind}"
        raise AssertionError(msg)

    configured = build_providers(keyed.model_copy(update={"llm_primary_provider": "anthropic"}))
    if configured.primary_kind is not ProviderKind.ANTHROPIC or configured.get("mock").name != "mock":
        msg = f"Expected anthropic primary with the mock available, got {configured.available()}"
        raise AssertionError(msg)


def test_registry_ignores_unconfigured_primary(settings: Settings) -> None:
    providers = build_providers(settings.model_copy(update={"llm_primary_provider": "groq"}))
    if providers.primary_kind is not ProviderKind.MOCK:
        msg = f"Expected the mock when groq has no key, got {providers.primary_kind}"
        raise AssertionError(msg)


def test_provider_set_health(settings: Settings) -> None:
    health = build_providers(settings).health()
    if health != {"mock": True}:
        msg = f"Unexpected health {health}"
        raise AssertionError(msg)
