"""
Quality scoring for memories.

Three backends produce the same ``QualityScore`` shape:
- heuristic: rule tables over the text, always available, offline
- local: zero-shot classifier gated by the heuristic
- api: an LLM rates the memory and returns JSON

The local and api backends degrade to the heuristic (or a neutral score)
when their collaborator fails; scoring never raises to the caller.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from casual_llm import LLMProvider, SystemMessage, UserMessage

from memory_keeper.classifiers.null import NullClassifier
from memory_keeper.classifiers.protocol import ZeroShotClassifier
from memory_keeper.config import QualityConfig
from memory_keeper.errors import ValidationError
from memory_keeper.llm import NullLLMProvider
from memory_keeper.models import QualityFactors, QualityMode, QualityScore
from memory_keeper.prompts import QUALITY_SCORING_PROMPT, QUALITY_SCORING_SYSTEM_PROMPT
from memory_keeper.scoring.patterns import (
    CAMEL_CASE_RE,
    CAPS_RUN_RE,
    CODE_RE,
    DEFAULT_LANGUAGE_PATTERNS,
    FILE_PATH_RE,
    LINE_REFERENCE_RE,
    NUMBER_RE,
    REPEATED_CHAR_RE,
    SENTENCE_SPLIT_RE,
    SEPARATOR_RE,
    SNAKE_CASE_RE,
    STRUCTURE_RE,
    TERMINAL_PUNCTUATION_RE,
    LanguagePatterns,
    is_preference_fact,
    matches_any,
)
from memory_keeper.scoring.reference import (
    HIGH_SPECIFICITY_SET,
    LOW_SPECIFICITY_SET,
    ReferenceEmbeddingCache,
)

logger = logging.getLogger(__name__)

# Label pairs for the zero-shot classifier; the first label is the positive one.
QUALITY_LABELS: Dict[str, Tuple[str, str]] = {
    "quality": (
        "specific technical detail with code or file references",
        "vague statement without concrete details",
    ),
    "relevance": (
        "relevant to software development",
        "not related to programming",
    ),
}

HEURISTIC_WEIGHTS = (0.3, 0.3, 0.2, 0.2)
LOCAL_WEIGHTS = (0.35, 0.15, 0.25, 0.25)
HEURISTIC_CONFIDENCE = 0.6
LOCAL_CONFIDENCE = 0.85


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _weighted(factors: QualityFactors, weights: Tuple[float, float, float, float]) -> float:
    return _clamp(
        factors.specificity * weights[0]
        + factors.clarity * weights[1]
        + factors.relevance * weights[2]
        + factors.uniqueness * weights[3]
    )


def _uniqueness(existing_similarity: Optional[float]) -> float:
    if existing_similarity is None:
        return 0.5
    return _clamp(1.0 - existing_similarity)


def neutral_quality_score(confidence: float = 0.3, mode: QualityMode = "heuristic") -> QualityScore:
    return QualityScore(score=0.5, confidence=confidence, factors=QualityFactors(), mode=mode)


def calculate_specificity(
    content: str, patterns: Tuple[LanguagePatterns, ...] = DEFAULT_LANGUAGE_PATTERNS
) -> float:
    """
    Rule-based specificity in [0, 1].

    Rewards concrete signals (numbers, code, file paths, line references,
    identifiers, technical vocabulary, actionable verbs) and penalises hedge
    words, very short text, generic praise and content that lacks substance.
    Preference facts ("user prefers X") get a reduced length penalty.
    """
    score = 0.5
    stripped = content.strip()
    word_count = len(stripped.split())
    char_count = len(content)

    has_numbers = bool(NUMBER_RE.search(content))
    has_code = bool(CODE_RE.search(content))
    has_file_path = bool(FILE_PATH_RE.search(content))

    if has_numbers:
        score += 0.1
    if has_code:
        score += 0.2
    if has_file_path:
        score += 0.15
    if LINE_REFERENCE_RE.search(content):
        score += 0.1
    if matches_any(patterns, "technical_terms", content):
        score += 0.1
    if CAMEL_CASE_RE.search(content) or SNAKE_CASE_RE.search(content):
        score += 0.05
    if matches_any(patterns, "actionable_verbs", content):
        score += 0.1

    preference = is_preference_fact(content)
    length_penalty_scale = 0.5 if preference else 1.0

    if matches_any(patterns, "vague_words", content):
        score -= 0.2

    if char_count < 15 or word_count < 3:
        score -= 0.35 * length_penalty_scale
    elif char_count < 30 or word_count < 5:
        score -= 0.2 * length_penalty_scale

    if any(p.generic_praise.search(content) and not p.praise_exceptions.search(content) for p in patterns):
        score -= 0.15
    if any(p.praise_only.search(stripped) for p in patterns):
        score -= 0.25

    lacks_substance = word_count < 8 and not has_code and not has_file_path and not has_numbers
    if lacks_substance and not preference:
        score -= 0.15

    return _clamp(score)


def calculate_clarity(content: str) -> float:
    """Rule-based clarity in [0, 1]: sentence length, structure, punctuation."""
    score = 0.5

    sentences = [s for s in SENTENCE_SPLIT_RE.split(content) if s.strip()]
    avg_sentence_length = len(content) / max(len(sentences), 1)

    if 30 <= avg_sentence_length <= 150:
        score += 0.15
    if STRUCTURE_RE.search(content):
        score += 0.1
    if SEPARATOR_RE.search(content):
        score += 0.05
    if TERMINAL_PUNCTUATION_RE.search(content.strip()):
        score += 0.1

    if len(CAPS_RUN_RE.findall(content)) > 2:
        score -= 0.1
    if len(content) > 50 and " " not in content:
        score -= 0.3
    if REPEATED_CHAR_RE.search(content):
        score -= 0.2

    return _clamp(score)


def score_with_heuristics(
    content: str,
    existing_similarity: Optional[float] = None,
    patterns: Tuple[LanguagePatterns, ...] = DEFAULT_LANGUAGE_PATTERNS,
) -> QualityScore:
    """
    Offline quality score from text rules only.

    Args:
        content: Memory text
        existing_similarity: Similarity to the closest existing memory, if known
        patterns: Language rule tables

    Returns:
        QualityScore with confidence 0.6 and mode "heuristic"
    """
    factors = QualityFactors(
        specificity=calculate_specificity(content, patterns),
        clarity=calculate_clarity(content),
        relevance=0.5,
        uniqueness=_uniqueness(existing_similarity),
    )
    return QualityScore(
        score=_weighted(factors, HEURISTIC_WEIGHTS),
        confidence=HEURISTIC_CONFIDENCE,
        factors=factors,
        mode="heuristic",
    )


def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block in ``text``, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            char = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return _clamp(float(value))


def parse_score_response(response: str, mode: QualityMode = "api") -> QualityScore:
    """
    Parse an LLM scoring reply (prose and markdown fences tolerated).

    Missing fields take defaults: score 0.5, confidence 0.8, factors 0.5.

    Raises:
        ValidationError: If no JSON object can be found or decoded
    """
    block = extract_json_object(response or "")
    if block is None:
        raise ValidationError("No JSON object found in scoring response", context={"response": response})

    try:
        parsed = json.loads(block)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed scoring JSON: {e}", context={"response": response}) from e

    if not isinstance(parsed, dict):
        raise ValidationError("Scoring response is not a JSON object", context={"response": response})

    raw_factors = parsed.get("factors")
    if not isinstance(raw_factors, dict):
        raw_factors = {}

    return QualityScore(
        score=_number(parsed.get("score"), 0.5),
        confidence=_number(parsed.get("confidence"), 0.8),
        factors=QualityFactors(
            specificity=_number(raw_factors.get("specificity"), 0.5),
            clarity=_number(raw_factors.get("clarity"), 0.5),
            relevance=_number(raw_factors.get("relevance"), 0.5),
            uniqueness=_number(raw_factors.get("uniqueness"), 0.5),
        ),
        mode=mode,
    )


def passes_quality_threshold(score: QualityScore, threshold: Optional[float] = None) -> bool:
    return score.score >= (threshold if threshold is not None else 0.0)


def format_quality_score(score: QualityScore) -> str:
    percent = round(score.score * 100)
    stars = round(score.score * 5)
    return f"{'★' * stars}{'☆' * (5 - stars)} {percent}% ({score.mode})"


class QualityScorer:
    """
    Configured quality scorer with injectable collaborators.

    Collaborators default to null objects, so an unconfigured scorer still
    works: local mode falls back to heuristics and api mode returns the
    neutral score.

    Example:
        >>> scorer = QualityScorer(QualityConfig(mode="local"), classifier=NLIZeroShotClassifier())
        >>> result = await scorer.score("Fixed deadlock in worker.py:88 by ordering locks")
        >>> result.mode
        'local'
    """

    def __init__(
        self,
        config: Optional[QualityConfig] = None,
        classifier: Optional[ZeroShotClassifier] = None,
        llm_provider: Optional[LLMProvider] = None,
        model_name: str = "default",
        reference_cache: Optional[ReferenceEmbeddingCache] = None,
        patterns: Tuple[LanguagePatterns, ...] = DEFAULT_LANGUAGE_PATTERNS,
    ):
        """
        Args:
            config: Quality config (mode, threshold, gate)
            classifier: Zero-shot classifier for local mode
            llm_provider: casual_llm provider for api mode
            model_name: Name of the LLM (for logging)
            reference_cache: Reference embeddings for specificity refinement
            patterns: Language rule tables
        """
        self.config = config or QualityConfig()
        self.classifier = classifier or NullClassifier()
        self.llm_provider = llm_provider or NullLLMProvider()
        self.model_name = model_name
        self.reference_cache = reference_cache
        self.patterns = patterns
        self.fallback_count = 0

        logger.info(
            f"QualityScorer initialized: mode={self.config.mode}, "
            f"enabled={self.config.enabled}, "
            f"refinement={'on' if reference_cache and self.config.embedding_refinement else 'off'}"
        )

    async def refine_specificity(self, content: str, specificity: float) -> float:
        """
        Raise an uncertain (< 0.5) specificity using reference embeddings.

        The ratio ``high / (high + low)`` of max similarities to the high and
        low reference sets replaces the heuristic value only when it is larger.
        """
        if (
            self.reference_cache is None
            or not self.config.embedding_refinement
            or specificity >= 0.5
        ):
            return specificity

        try:
            embedding = await self.reference_cache.embedder.embed_document(content)
            high = await self.reference_cache.max_similarity(embedding, HIGH_SPECIFICITY_SET)
            low = await self.reference_cache.max_similarity(embedding, LOW_SPECIFICITY_SET)
        except Exception as e:
            logger.warning(f"Specificity refinement failed, keeping heuristic value: {e}")
            return specificity

        if high + low <= 0:
            return specificity

        ratio = high / (high + low)
        if ratio > specificity:
            logger.debug(f"Specificity refined {specificity:.2f} -> {ratio:.2f}")
            return _clamp(ratio)
        return specificity

    async def score_with_heuristics(
        self, content: str, existing_similarity: Optional[float] = None
    ) -> QualityScore:
        result = score_with_heuristics(content, existing_similarity, self.patterns)

        refined = await self.refine_specificity(content, result.factors.specificity)
        if refined == result.factors.specificity:
            return result

        factors = result.factors.model_copy(update={"specificity": refined})
        return result.model_copy(
            update={"factors": factors, "score": _weighted(factors, HEURISTIC_WEIGHTS)}
        )

    async def score_with_local(
        self, content: str, existing_similarity: Optional[float] = None
    ) -> QualityScore:
        """
        Heuristic-gated zero-shot classification.

        Content whose heuristic specificity is under the gate skips the model
        and returns the heuristic score labelled "local". Any classifier
        failure returns the plain heuristic score.
        """
        heuristic = await self.score_with_heuristics(content, existing_similarity)

        if heuristic.factors.specificity < self.config.local_gate:
            logger.debug(
                f"Local scoring gated by heuristics "
                f"(specificity={heuristic.factors.specificity:.2f})"
            )
            return heuristic.model_copy(update={"mode": "local"})

        quality_labels = QUALITY_LABELS["quality"]
        relevance_labels = QUALITY_LABELS["relevance"]
        try:
            quality = await self.classifier.classify(content, quality_labels)
            relevance = await self.classifier.classify(content, relevance_labels)
            classifier_quality = float(quality[quality_labels[0]])
            classifier_relevance = float(relevance[relevance_labels[0]])
        except Exception as e:
            self.fallback_count += 1
            logger.warning(f"Local classifier scoring failed, falling back to heuristics: {e}")
            return heuristic

        factors = QualityFactors(
            specificity=_clamp(min(classifier_quality, heuristic.factors.specificity + 0.15)),
            clarity=heuristic.factors.clarity,
            relevance=_clamp(classifier_relevance),
            uniqueness=_uniqueness(existing_similarity),
        )
        return QualityScore(
            score=_weighted(factors, LOCAL_WEIGHTS),
            confidence=LOCAL_CONFIDENCE,
            factors=factors,
            mode="local",
        )

    async def score_with_api(self, content: str) -> QualityScore:
        """Ask the LLM for a JSON rating; neutral score on any failure."""
        messages = [
            SystemMessage(content=QUALITY_SCORING_SYSTEM_PROMPT),
            UserMessage(content=QUALITY_SCORING_PROMPT.format(content=content)),
        ]
        try:
            response = await self.llm_provider.chat(
                messages,
                response_format="text",
                temperature=self.config.api_temperature,
                max_tokens=self.config.api_max_tokens,
            )
            return parse_score_response(response.content or "", mode="api")
        except Exception as e:
            self.fallback_count += 1
            logger.warning(f"API quality scoring failed ({self.model_name}), using neutral score: {e}")
            return neutral_quality_score(mode="api")

    async def score(
        self, content: str, existing_similarity: Optional[float] = None
    ) -> QualityScore:
        """Score with the configured backend."""
        if not self.config.enabled:
            return neutral_quality_score(confidence=1.0)

        if self.config.mode == "local":
            return await self.score_with_local(content, existing_similarity)
        if self.config.mode == "api":
            return await self.score_with_api(content)
        return await self.score_with_heuristics(content, existing_similarity)

    def passes_threshold(self, score: QualityScore) -> bool:
        return passes_quality_threshold(score, self.config.threshold)
