from typing import Dict, Sequence

from memory_keeper.errors import ClassifierUnavailableError


class NullClassifier:
    """Classifier used when no model is configured; callers fall back to heuristics."""

    async def classify(self, text: str, labels: Sequence[str]) -> Dict[str, float]:
        raise ClassifierUnavailableError("No zero-shot classifier configured")
