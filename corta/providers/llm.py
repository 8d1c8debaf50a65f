"""
Text generation providers using hosted LLM APIs.
"""

import os

from .base import get_registry


class AnthropicGenerator:
    """
    Text generation using Anthropic's Claude API.

    Authentication: api_key parameter, else ANTHROPIC_API_KEY.
    The SDK retries rate limits itself; remaining errors propagate so
    callers can report the failure.
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
    ):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise RuntimeError("AnthropicGenerator requires 'anthropic' library")

        self.model = model

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError("Anthropic API key required. Set ANTHROPIC_API_KEY")

        self.client = Anthropic(api_key=key)

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> str | None:
        """Send a prompt to Anthropic and return generated text."""
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        if response.content:
            return response.content[0].text
        return None


class OpenAIGenerator:
    """
    Text generation using OpenAI's chat API.

    Requires: CORTA_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAIGenerator requires 'openai' library")

        self.model = model

        key = api_key or os.environ.get("CORTA_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set CORTA_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key)

        # GPT-5+ and reasoning models take max_completion_tokens and
        # reject a temperature other than the default
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self, max_tokens: int, temperature: float) -> dict:
        """Return model-appropriate kwargs for token limit and temperature."""
        if self._new_api:
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens, "temperature": temperature}

    def generate(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> str | None:
        """Send a prompt to OpenAI and return generated text."""
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            **self._completion_kwargs(max_tokens, temperature),
        )
        if response.choices:
            return response.choices[0].message.content
        return None


_registry = get_registry()
_registry.register_generator("anthropic", AnthropicGenerator)
_registry.register_generator("openai", OpenAIGenerator)
