"""Answer synthesis over retrieved chunks."""

from __future__ import annotations

from typing import Sequence

from openai import AsyncOpenAI, OpenAIError

from docsearch.core.config import Settings
from docsearch.core.errors import BackendUnavailableError, SynthesisUnavailableError
from docsearch.core.logging import get_logger
from docsearch.models.entities import ScoredChunk

logger = get_logger(__name__)

PROMPT_TEMPLATE = """You are a helpful assistant. Use the following context from documents to answer the user's question. If the answer cannot be found in the context, say so clearly.

Context from documents:
{context}

Question: {question}

Answer:"""


def build_context(hits: Sequence[ScoredChunk]) -> str:
    """Number hits as ``[Document n]`` blocks in rank order."""
    return "\n\n".join(f"[Document {index}] {hit.chunk.content}" for index, hit in enumerate(hits, start=1))


def build_prompt(question: str, hits: Sequence[ScoredChunk]) -> str:
    return PROMPT_TEMPLATE.format(context=build_context(hits), question=question)


class AnswerSynthesizer:
    """Chat-completion client that turns a context prompt into an answer."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnswerSynthesizer | None":
        """Return a synthesizer, or ``None`` when no API key is configured."""
        if not settings.answer_enabled:
            logger.info("No answer model credentials configured; answer mode disabled")
            return None
        client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        return cls(
            client,
            model=settings.answer_model,
            temperature=settings.answer_temperature,
            max_tokens=settings.answer_max_tokens,
        )

    async def generate(self, prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as exc:
            logger.exception("Answer generation failed with model %s", self.model)
            raise BackendUnavailableError(f"Answer model request failed: {exc}") from exc
        if not response.choices:
            raise SynthesisUnavailableError("Answer model returned no choices")
        return (response.choices[0].message.content or "").strip()

    async def close(self) -> None:
        await self.client.close()


__all__ = ["AnswerSynthesizer", "PROMPT_TEMPLATE", "build_context", "build_prompt"]
