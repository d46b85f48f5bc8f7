"""
Error hierarchy for memory-keeper.

Every error carries a ``code`` string and an optional ``context`` dict so
callers can discriminate failures without parsing messages.
"""

from typing import Any, Dict, Optional


class MemoryKeeperError(Exception):
    """Base error for all memory-keeper failures."""

    def __init__(
        self,
        message: str,
        code: str = "MEMORY_KEEPER_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}


class ConfigError(MemoryKeeperError):
    """Invalid configuration values or unknown config keys."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", context)


class ValidationError(MemoryKeeperError):
    """Bad input: malformed durations, unparseable LLM JSON, argument checks."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", context)


class StorageError(MemoryKeeperError):
    """Storage failures outside of a transaction boundary."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORAGE_ERROR", context)


class TransactionError(StorageError):
    """A transaction was rolled back; nothing it touched was committed."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        MemoryKeeperError.__init__(self, message, "TRANSACTION_ERROR", context)


class NotFoundError(MemoryKeeperError):
    """A memory or link that should exist does not."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", context)


class NetworkError(MemoryKeeperError):
    """Transport failure from an optional LLM or classifier collaborator."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, "NETWORK_ERROR", context)
        self.status_code = status_code


class LockError(MemoryKeeperError):
    """Another consolidation run holds the corpus lock."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LOCK_ERROR", context)


class ClassifierUnavailableError(MemoryKeeperError):
    """No zero-shot classifier is configured or it could not be loaded."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CLASSIFIER_UNAVAILABLE", context)

