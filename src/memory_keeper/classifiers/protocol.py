"""Zero-shot classifier protocol."""

from typing import Dict, Protocol, Sequence

from typing_extensions import runtime_checkable


@runtime_checkable
class ZeroShotClassifier(Protocol):
    """
    Scores a text against candidate labels.

    Returned scores are a distribution over ``labels`` (they sum to 1).
    """

    async def classify(self, text: str, labels: Sequence[str]) -> Dict[str, float]:
        ...
