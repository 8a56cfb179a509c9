import logging
from typing import Any, Optional

from ..config import Settings

logger = logging.getLogger(__name__)


class LLMUnavailableError(RuntimeError):
    """No generative model client is configured."""


class LLMClient:
    """Chat-completion client for note generation and style analysis."""

    def __init__(self, settings: Settings):
        self.client: Optional[Any] = None
        self.generation_model = settings.generation_model
        self.analysis_model = settings.analysis_model
        self.setup_client(settings)

    def setup_client(self, settings: Settings):
        """Create the OpenAI-compatible client if an API key is configured."""
        from openai import AsyncOpenAI

        if not settings.openai_api_key:
            logger.warning("⚠️ No generative model configured! Set OPENAI_API_KEY")
            return

        kwargs = {
            "api_key": settings.openai_api_key,
            "timeout": 60.0,
            "max_retries": 2,
        }
        if settings.openai_base_url:
            kwargs["base_url"] = settings.openai_base_url

        self.client = AsyncOpenAI(**kwargs)
        logger.info("✅ Generative model client initialized")

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        system: str,
        user: str,
        model: Optional[str] = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        """Run one chat completion and return the stripped text of the first choice."""
        if self.client is None:
            raise LLMUnavailableError("Generative model client is not configured")

        model = model or self.generation_model
        logger.info(f"Making completion request with model {model}")

        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()
