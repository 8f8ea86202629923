"""OpenAI chat-completions backend used by the analysis stages."""

from __future__ import annotations

import logging

from openai import OpenAI, OpenAIError

from support_inbox.core.exceptions import BackendError

logger = logging.getLogger(__name__)


class OpenAIBackend:
    """Single-prompt completion wrapper around the OpenAI SDK.

    Every SDK failure (network, auth, rate limit, timeout) surfaces as
    BackendError so callers can treat the backend uniformly as unavailable.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-3.5-turbo",
        *,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        client: OpenAI | None = None,
    ) -> None:
        self._model = model
        self._client = client
        if self._client is None and api_key:
            self._client = OpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=max_retries)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def model(self) -> str:
        return self._model

    def complete(self, prompt: str, max_tokens: int = 400, temperature: float = 0.7) -> str:
        """Send one user prompt and return the stripped completion text.

        Raises:
            BackendError: If the backend is unconfigured, fails, or returns no text.
        """
        if self._client is None:
            raise BackendError("OpenAI API key not configured")

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except OpenAIError as e:
            raise BackendError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise BackendError("OpenAI returned no choices")

        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise BackendError("OpenAI returned an empty completion")

        logger.debug("Completion received (%d chars, model=%s)", len(content), self._model)
        return content
