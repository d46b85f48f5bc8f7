"""Null-object LLM provider for deployments without an LLM configured."""

import logging
from typing import Any, List

from memory_keeper.errors import NetworkError

logger = logging.getLogger(__name__)


class NullLLMProvider:
    """
    Stand-in for a ``casual_llm.LLMProvider`` that always fails.

    Callers treat the failure like any other transport error and fall back
    (neutral quality score, deterministic merge content).
    """

    async def chat(self, messages: List[Any], **kwargs: Any) -> Any:
        raise NetworkError("No LLM provider configured")
