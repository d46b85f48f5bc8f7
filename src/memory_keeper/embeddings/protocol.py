"""
Text embedding protocol for memory-keeper.

The engine never computes embeddings itself; it calls through this interface
for query vectors (retrieval) and reference phrases (quality refinement).
Every memory in one corpus must share the same dimension.
"""

from typing import List, Protocol

from typing_extensions import runtime_checkable


@runtime_checkable
class TextEmbedding(Protocol):
    """
    Protocol for text embedding providers.

    Example:
        >>> vector = await embedder.embed_query("why does the worker deadlock?")
        >>> len(vector) == embedder.dimension
        True
    """

    @property
    def dimension(self) -> int:
        """Number of elements in each vector; must match stored memory embeddings."""
        ...

    @property
    def model_name(self) -> str:
        ...

    async def embed_document(self, text: str) -> List[float]:
        """
        Embed text that will be stored as (or compared against) a memory.

        Raises:
            ValidationError: If text is empty or too long for the model
        """
        ...

    async def embed_query(self, text: str) -> List[float]:
        """Embed a search query (models such as E5 prefix queries differently)."""
        ...

    async def embed_documents(self, texts: List[str], batch_size: int = 32) -> List[List[float]]:
        """Embed several documents, preserving input order."""
        ...
