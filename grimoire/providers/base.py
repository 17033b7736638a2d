"""
Base provider protocol for AI suggestions.

A suggestion provider turns (system prompt, user prompt) into text. The
prompts themselves come from the preset actions below, so providers stay
thin wrappers around an SDK client.

Using Protocol for structural subtyping - no explicit inheritance required.
"""

from enum import Enum
from typing import Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

class SuggestionAction(str, Enum):
    """What the user asked the model to do with the draft."""
    IMPROVE = "improve"
    CONCISE = "concise"
    EXAMPLES = "examples"
    CUSTOM = "custom"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def system_prompt(self) -> str:
        return _SYSTEM_PROMPTS[self]


_LABELS = {
    SuggestionAction.IMPROVE: "Improve this prompt",
    SuggestionAction.CONCISE: "Make it more concise",
    SuggestionAction.EXAMPLES: "Add examples",
    SuggestionAction.CUSTOM: "Custom request...",
}

_SYSTEM_PROMPTS = {
    SuggestionAction.IMPROVE: (
        "You are an expert prompt engineer. Improve the following prompt to be clearer, "
        "more effective, and better structured. Maintain the original intent while "
        "enhancing clarity and specificity. Return only the improved prompt, no explanations."
    ),
    SuggestionAction.CONCISE: (
        "You are an expert editor. Make the following prompt more concise while "
        "preserving all essential information and functionality. Remove redundancy "
        "and verbosity. Return only the revised prompt, no explanations."
    ),
    SuggestionAction.EXAMPLES: (
        "You are an expert prompt engineer. Add 2-3 concrete examples to the following "
        "prompt to better illustrate the expected behavior. The examples should be "
        "practical and relevant. Return only the enhanced prompt with examples, no explanations."
    ),
    SuggestionAction.CUSTOM: (
        "You are an expert prompt engineer. Apply the user's request to the content. "
        "Return only the revised content, no explanations."
    ),
}


def build_user_message(content: str, instruction: str | None = None) -> str:
    """User prompt for a suggestion: the optional request, then the content."""
    if instruction and instruction.strip():
        return f"Request: {instruction.strip()}\n\nContent to process:\n{content}"
    return f"Content to process:\n{content}"


# -----------------------------------------------------------------------------
# Provider protocol
# -----------------------------------------------------------------------------

@runtime_checkable
class SuggestionProvider(Protocol):
    """
    Generates replacement text with an LLM.

    Example implementation:
        class EchoSuggestion:
            def generate(self, system, user, *, max_tokens=4096):
                return user.rsplit("Content to process:\\n", 1)[-1]
    """

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 4096,
    ) -> str | None:
        """
        Send a system+user prompt to the underlying LLM and return text.

        Args:
            system: System prompt
            user: User prompt
            max_tokens: Maximum tokens in response

        Returns:
            Generated text, or None if the model returned nothing
        """
        ...


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating suggestion providers.

    Providers are registered by name so the config file can name them.

    Example:
        registry = get_registry()
        provider = registry.create("anthropic", {"model": "claude-sonnet-4-20250514"})
    """

    def __init__(self):
        self._providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Import the provider module so its classes register themselves."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        from . import llm  # noqa: F401

    def register(self, name: str, provider_class: type) -> None:
        """Register a provider class."""
        self._providers[name] = provider_class

    def create(self, name: str, params: dict | None = None) -> SuggestionProvider:
        """Create a provider instance."""
        self._ensure_providers_loaded()
        if name not in self._providers:
            available = ", ".join(self._providers.keys()) or "none"
            raise ValueError(
                f"Unknown suggestion provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return self._providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create suggestion provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e

    def list_providers(self) -> list[str]:
        """List registered provider names."""
        self._ensure_providers_loaded()
        return list(self._providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
