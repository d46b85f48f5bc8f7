"""
Merge content synthesis.

The LLM rewrites two overlapping memories into one. ``combine_contents`` is
the deterministic combination used when no LLM is involved.
"""

import logging

from casual_llm import LLMProvider, SystemMessage, UserMessage

from memory_keeper.errors import ValidationError
from memory_keeper.prompts import MERGE_PROMPT, MERGE_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


def combine_contents(content1: str, content2: str) -> str:
    """Join two texts, dropping one that the other already contains."""
    first = content1.strip()
    second = content2.strip()
    if second.lower() in first.lower():
        return first
    if first.lower() in second.lower():
        return second
    return f"{first}\n\n{second}"


class MergeSynthesizer:
    """
    LLM-backed merge of two memory texts.

    Raises on any failure; the consolidation engine decides whether to fall
    back to ``combine_contents`` or skip the merge.
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        model_name: str = "default",
        temperature: float = 0.2,
        max_tokens: int = 500,
    ):
        """
        Args:
            llm_provider: casual_llm provider instance (OpenAI, Ollama, etc.)
            model_name: Name of the model (for logging)
            temperature: Sampling temperature
            max_tokens: Upper bound on the merged text length
        """
        self.llm_provider = llm_provider
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.llm_call_count = 0
        self.llm_failure_count = 0

        logger.info(f"MergeSynthesizer initialized: model={model_name}")

    async def synthesize(self, content1: str, content2: str) -> str:
        """
        Merge two memory texts with the LLM.

        Args:
            content1: Older memory text
            content2: Newer memory text

        Returns:
            Merged text

        Raises:
            ValidationError: If the LLM returns nothing usable
            Exception: Transport errors from the provider
        """
        messages = [
            SystemMessage(content=MERGE_SYSTEM_PROMPT),
            UserMessage(content=MERGE_PROMPT.format(content_a=content1, content_b=content2)),
        ]

        self.llm_call_count += 1
        try:
            response = await self.llm_provider.chat(
                messages,
                response_format="text",
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception:
            self.llm_failure_count += 1
            raise

        merged = (response.content or "").strip()
        if not merged:
            self.llm_failure_count += 1
            raise ValidationError(
                "LLM returned empty merge content", context={"model": self.model_name}
            )

        logger.debug(f"Synthesized merge ({len(content1)} + {len(content2)} -> {len(merged)} chars)")
        return merged
