"""Zero-shot classifier collaborators for local quality scoring."""

from memory_keeper.classifiers.nli import NLIZeroShotClassifier
from memory_keeper.classifiers.null import NullClassifier
from memory_keeper.classifiers.protocol import ZeroShotClassifier

__all__ = ["ZeroShotClassifier", "NLIZeroShotClassifier", "NullClassifier"]
