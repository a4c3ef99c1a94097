"""
OpenAI Service for nudge generation.
Text generation and embeddings consumed through their request/response contracts only.
"""

import openai
from openai import AsyncOpenAI

from wellness_os.config import Settings
from wellness_os.errors import UpstreamServiceError
from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class OpenAIService:
    """
    Thin async wrapper over the OpenAI client.

    Every provider failure surfaces as UpstreamServiceError so the orchestrator
    can skip the user and keep the batch going.
    """

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None):
        self.settings = settings
        self.completion_model = settings.OPENAI_COMPLETION_MODEL
        self.embedding_model = settings.OPENAI_EMBEDDING_MODEL
        self.client = client or self._initialize_client()

    def _initialize_client(self) -> AsyncOpenAI:
        self.settings.require("OPENAI_API_KEY")
        client = AsyncOpenAI(
            api_key=self.settings.OPENAI_API_KEY,
            timeout=self.settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=2,
        )
        logger.info(
            "OpenAI client initialized",
            model=self.completion_model,
            embedding_model=self.embedding_model,
            timeout=self.settings.OPENAI_TIMEOUT_SECONDS,
        )
        return client

    async def generate_text(self, system_prompt: str, user_prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.completion_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.7,
                max_tokens=self.settings.OPENAI_MAX_TOKENS,
            )
        except openai.OpenAIError as e:
            logger.warning("OpenAI completion failed", error=str(e), error_type=type(e).__name__)
            raise UpstreamServiceError(
                f"Text generation failed: {e}", service="openai", operation="generate_text"
            ) from e

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            raise UpstreamServiceError(
                "Text generation returned empty content", service="openai", operation="generate_text"
            )
        return content

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self.client.embeddings.create(model=self.embedding_model, input=text)
        except openai.OpenAIError as e:
            logger.warning("OpenAI embedding failed", error=str(e), error_type=type(e).__name__)
            raise UpstreamServiceError(
                f"Embedding failed: {e}", service="openai", operation="embed"
            ) from e

        if not response.data:
            raise UpstreamServiceError("Embedding returned no vectors", service="openai", operation="embed")
        return list(response.data[0].embedding)

    async def moderate(self, text: str) -> tuple[bool, list[str]]:
        """Returns (flagged, categories)."""
        try:
            response = await self.client.moderations.create(input=text)
        except openai.OpenAIError as e:
            raise UpstreamServiceError(
                f"Moderation failed: {e}", service="openai", operation="moderate"
            ) from e

        result = response.results[0]
        categories = [name for name, hit in result.categories.model_dump().items() if hit]
        return bool(result.flagged), categories
