"""
Suggestion providers using hosted LLM APIs.
"""

import os

from .base import get_registry


class AnthropicSuggestion:
    """
    Suggestion provider using Anthropic's Claude API.

    The key comes from, in order:
    1. the api_key argument (the api_key setting on the CLI)
    2. ANTHROPIC_API_KEY
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        max_tokens: int = 4096,
    ):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise RuntimeError("AnthropicSuggestion requires 'anthropic' library")

        self.model = model or "claude-sonnet-4-20250514"
        self.max_tokens = max_tokens

        key = (api_key or "").strip() or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError(
                "Anthropic authentication required. Set ANTHROPIC_API_KEY "
                "or store a key with: grimoire settings set api_key <key>"
            )

        self.client = Anthropic(api_key=key)

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int | None = None,
    ) -> str | None:
        """One Messages API call; the first text block is the suggestion."""
        # Rate-limit retries happen inside the SDK client
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens or self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        if response.content:
            return response.content[0].text
        return None


class OpenAISuggestion:
    """
    Suggestion provider using OpenAI's chat API.

    Requires: api_key parameter, GRIMOIRE_OPENAI_API_KEY or OPENAI_API_KEY.
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        max_tokens: int = 4096,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAISuggestion requires 'openai' library")

        self.model = model or "gpt-4o"
        self.max_tokens = max_tokens

        key = (
            (api_key or "").strip()
            or os.environ.get("GRIMOIRE_OPENAI_API_KEY")
            or os.environ.get("OPENAI_API_KEY")
        )
        if not key:
            raise ValueError(
                "OpenAI API key required. Set GRIMOIRE_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key)

        # gpt-5 and the o-series reasoning models take max_completion_tokens
        # and reject a temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self, max_tokens: int) -> dict:
        """Token limit (and temperature, where allowed) for this model family."""
        if self._new_api:
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens, "temperature": 0.3}

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int | None = None,
    ) -> str | None:
        """One chat completion; the first choice is the suggestion."""
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            **self._completion_kwargs(max_tokens or self.max_tokens),
        )
        if response.choices:
            return response.choices[0].message.content
        return None


# Register providers
_registry = get_registry()
_registry.register("anthropic", AnthropicSuggestion)
_registry.register("openai", OpenAISuggestion)
