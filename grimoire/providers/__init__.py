"""Suggestion providers."""

from .base import (
    ProviderRegistry,
    SuggestionAction,
    SuggestionProvider,
    build_user_message,
    get_registry,
)

__all__ = [
    "ProviderRegistry",
    "SuggestionAction",
    "SuggestionProvider",
    "build_user_message",
    "get_registry",
]
