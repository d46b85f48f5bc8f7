"""
Zero-shot text classification with an NLI cross-encoder.

Each candidate label becomes a hypothesis ("This text is {label}.") paired
with the input text. The cross-encoder's entailment logits are softmaxed
across labels, giving a single-label distribution.
"""

import importlib.util
import logging
from typing import Dict, Optional, Sequence

import numpy as np

from memory_keeper.errors import ClassifierUnavailableError

logger = logging.getLogger(__name__)

# Logit order for the cross-encoder/nli-* family: contradiction, entailment, neutral
ENTAILMENT_INDEX = 1


class NLIZeroShotClassifier:
    """
    DeBERTa-v3 cross-encoder used as a zero-shot classifier.

    The model is lazy-loaded on first use so constructing the classifier is
    free; a missing ``sentence-transformers`` install surfaces as
    ``ClassifierUnavailableError`` and callers fall back to heuristics.
    """

    def __init__(
        self,
        model_name: str = "cross-encoder/nli-deberta-v3-xsmall",
        device: Optional[str] = None,
        hypothesis_template: str = "This text is {}.",
    ):
        """
        Args:
            model_name: Hugging Face cross-encoder name
            device: "cuda", "cpu", or None for auto-detect
            hypothesis_template: Format string turning a label into a hypothesis
        """
        self.model_name = model_name
        self.device = device
        self.hypothesis_template = hypothesis_template
        self._model = None
        self._prediction_count = 0

        logger.info(
            f"NLIZeroShotClassifier initialized (lazy-loading): "
            f"model={model_name}, device={device or 'auto'}"
        )

    def _load_model(self):
        """Lazy-load the cross-encoder model on first use."""
        if self._model is not None:
            return

        try:
            from sentence_transformers import CrossEncoder
        except ImportError as e:
            logger.error(
                "sentence-transformers library not installed. "
                "Install with: pip install memory-keeper[transformers]"
            )
            raise ClassifierUnavailableError(
                "sentence-transformers required for local quality scoring",
                context={"model": self.model_name},
            ) from e

        try:
            logger.info(f"Loading zero-shot model: {self.model_name}")
            self._model = CrossEncoder(self.model_name, device=self.device)
        except Exception as e:
            logger.error(f"Failed to load zero-shot model: {e}")
            raise ClassifierUnavailableError(
                f"Could not load {self.model_name}: {e}", context={"model": self.model_name}
            ) from e

    async def classify(self, text: str, labels: Sequence[str]) -> Dict[str, float]:
        """
        Score ``text`` against each label.

        Returns:
            Mapping of label to probability (sums to 1 over ``labels``)
        """
        if not labels:
            return {}

        self._load_model()
        self._prediction_count += 1

        pairs = [(text, self.hypothesis_template.format(label)) for label in labels]
        logits = np.asarray(self._model.predict(pairs), dtype=np.float64)
        if logits.ndim == 1:
            logits = logits.reshape(len(labels), -1)

        entailment = logits[:, ENTAILMENT_INDEX]
        exp_logits = np.exp(entailment - np.max(entailment))
        probabilities = exp_logits / exp_logits.sum()

        scores = {label: float(p) for label, p in zip(labels, probabilities)}
        logger.debug(f"Zero-shot scores: {scores}")
        return scores

    def is_available(self) -> bool:
        """Check whether the model is loaded or loadable, without loading it."""
        if self._model is not None:
            return True
        return importlib.util.find_spec("sentence_transformers") is not None

    def get_metrics(self) -> dict:
        return {
            "zero_shot_prediction_count": self._prediction_count,
            "zero_shot_model_loaded": self._model is not None,
        }
