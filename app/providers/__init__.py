"""Providers package: provides the provider registry, base class, and language-model backends for transaction parsing."""

from .base import BaseProvider, LlmUsage, ParseContext  # noqa: F401
from .registry import ProviderKind, ProviderSet, build_providers  # noqa: F401
