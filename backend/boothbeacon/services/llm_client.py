"""LLM client used by the extraction engine."""

import logging
from typing import Protocol

import anthropic

from boothbeacon.config import Settings, get_settings
from boothbeacon.errors import ConfigurationError, ExtractionError

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    async def complete(self, system: str, prompt: str) -> str:
        """Return the model's text response. Raise ExtractionError on transport failure."""
        ...


class AnthropicLLMClient:
    """Messages API client with deterministic sampling.

    SDK retries are disabled; the extraction engine owns the retry policy.
    """

    def __init__(self, settings: Settings | None = None, client: anthropic.AsyncAnthropic | None = None):
        self.settings = settings or get_settings()
        if client is None and not self.settings.anthropic_api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured", systemic=True)
        self.client = client or anthropic.AsyncAnthropic(
            api_key=self.settings.anthropic_api_key,
            timeout=self.settings.llm_timeout,
            max_retries=0,
        )
        self.model = self.settings.anthropic_model

    async def complete(self, system: str, prompt: str) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.settings.llm_max_tokens,
                temperature=0,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise ConfigurationError(f"LLM credentials rejected: {e}", systemic=True) from e
        except anthropic.APIConnectionError as e:
            # Includes APITimeoutError
            raise ExtractionError(f"LLM connection failed: {e}") from e
        except anthropic.RateLimitError as e:
            raise ExtractionError(f"LLM rate limited: {e}") from e
        except anthropic.APIStatusError as e:
            raise ExtractionError(f"LLM returned {e.status_code}: {e}", retryable=e.status_code >= 500) from e

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        if response.stop_reason == "max_tokens":
            logger.warning(f"LLM response hit max_tokens ({self.settings.llm_max_tokens}); output may be truncated")
        return text
