"""Embedding collaborator interface."""

from memory_keeper.embeddings.protocol import TextEmbedding

__all__ = ["TextEmbedding"]
