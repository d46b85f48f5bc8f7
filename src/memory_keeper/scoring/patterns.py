"""
Rule tables for heuristic quality scoring.

Language-specific word lists live in ``LanguagePatterns`` entries so a new
language is one more table row. Code-shaped signals (numbers, file paths,
identifiers) are language-agnostic and kept as module constants.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple


@dataclass(frozen=True)
class LanguagePatterns:
    """Word-level signals for one natural language."""

    language_tag: str
    technical_terms: Pattern[str]
    actionable_verbs: Pattern[str]
    vague_words: Pattern[str]
    generic_praise: Pattern[str]
    praise_exceptions: Pattern[str]
    praise_only: Pattern[str]


def _words(*words: str) -> Pattern[str]:
    return re.compile(r"\b(" + "|".join(words) + r")\b", re.IGNORECASE)


ENGLISH = LanguagePatterns(
    language_tag="en",
    technical_terms=_words(
        "function", "class", "method", "variable", "parameter", "return", "error",
        "bug", "fix", "feature", "api", "endpoint", "database", "table", "column",
        "component", "module", "service", "handler", "controller", "config",
        "deploy", "server", "client", "request", "response", "query", "mutation",
        "schema", "model", "view", "route", "middleware", "hook", "callback",
        "promise", "async", "await",
    ),
    actionable_verbs=_words(
        "implement", "create", "add", "remove", "fix", "update", "refactor",
        "migrate", "configure", "deploy", "test", "resolve", "optimize",
        "integrate", "delete", "modify", "change", "setup", "install", "build",
        "run", "execute", "debug", "trace", "log", "handle", "process", "validate",
        "parse", "serialize", "fetch", "send", "receive", "connect", "disconnect",
    ),
    vague_words=_words(
        "maybe", "perhaps", "somehow", "something", "stuff", "things", "whatever",
        "somewhere", "anyone", "anything", "some", "kinda", "sorta",
    ),
    generic_praise=_words(
        "good", "bad", "nice", "cool", "great", "interesting", "awesome", "works",
        "fine", "ok", "okay", "perfect", "excellent",
    ),
    praise_exceptions=_words(
        "good practice", "bad pattern", "nice feature", "works well because",
        "works by", "good for",
    ),
    praise_only=re.compile(
        r"^(the )?(code|it|this|that)?\s*(is|are|was|were)?\s*"
        r"(good|nice|great|fine|ok|cool|awesome|works|working)",
        re.IGNORECASE,
    ),
)

RUSSIAN = LanguagePatterns(
    language_tag="ru",
    technical_terms=_words(
        "функция", "класс", "метод", "переменная", "параметр", "ошибка", "баг",
        "фикс", "исправлен", "фича", "апи", "эндпоинт", "база данных", "таблица",
        "колонка", "компонент", "модуль", "сервис", "хендлер", "контроллер",
        "конфиг", "деплой", "сервер", "клиент", "запрос", "ответ", "схема",
        "модель", "роут", "миддлвар", "хук", "коллбэк", "промис",
    ),
    actionable_verbs=_words(
        "реализовать", "создать", "добавить", "удалить", "исправить", "обновить",
        "рефакторить", "мигрировать", "настроить", "задеплоить", "тестировать",
        "решить", "оптимизировать", "интегрировать", "изменить", "установить",
        "собрать", "запустить", "выполнить", "дебажить", "отладить",
        "логировать", "обработать", "валидировать", "парсить", "сериализовать",
        "отправить", "получить", "подключить",
    ),
    vague_words=_words(
        "может быть", "возможно", "как-то", "что-то", "где-то", "кто-то",
        "как-нибудь", "где-нибудь", "что-нибудь", "какой-то", "некий", "вроде",
        "типа", "наверное",
    ),
    generic_praise=_words(
        "хорош[иоеая]{1,2}", "плох[оиеая]{1,2}", "отлично", "отличн[ыоеая]{1,2}",
        "круто", "крут[оыеая]{1,2}", "класс", "классн[оыеая]{1,2}", "супер", "норм",
        "нормальн[оыеая]{1,2}", "работает", "ок", "окей", "идеальн[оыеая]{1,2}",
        "прекрасн[оыеая]{1,2}",
    ),
    praise_exceptions=_words(
        "хорошая практика", "плохой паттерн", "работает потому что",
        "работает за счёт",
    ),
    praise_only=re.compile(
        r"^(код|это|оно|всё)?\s*(хорош[иоеая]{0,2}|отлично|работает|норм|класс|супер)",
        re.IGNORECASE,
    ),
)

DEFAULT_LANGUAGE_PATTERNS: Tuple[LanguagePatterns, ...] = (ENGLISH, RUSSIAN)

# Stated user/project preferences are short but still worth remembering.
PREFERENCE_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b(user|i|we|team)\s+(prefers?|likes?|wants?|uses?|avoids?)\b", re.IGNORECASE),
    re.compile(r"\b(always|never)\s+use\b", re.IGNORECASE),
    re.compile(r"\b(prefer|use)\s+\S+\s+(over|instead of)\b", re.IGNORECASE),
    re.compile(r"\b(предпочитает|предпочитаю|всегда использ|никогда не использ)", re.IGNORECASE),
)

NUMBER_RE = re.compile(r"\d+")
CODE_RE = re.compile(r"`[^`]+`|```[\s\S]*?```")
FILE_PATH_RE = re.compile(
    r"\.(ts|js|tsx|jsx|py|go|rs|java|cpp|c|h|md|json|yaml|yml|sql|sh|bash|css|scss|html)\b"
)
LINE_REFERENCE_RE = re.compile(r":\d+")
CAMEL_CASE_RE = re.compile(r"[A-Z][a-z]+(?:[A-Z][a-z]+)+")
SNAKE_CASE_RE = re.compile(r"[a-z]+_[a-z]+")

SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
STRUCTURE_RE = re.compile(r"^[-*•]|\n[-*•]|\n\d+\.")
SEPARATOR_RE = re.compile(r"\n{2,}|:\s*\n")
TERMINAL_PUNCTUATION_RE = re.compile(r"[.!?]$")
CAPS_RUN_RE = re.compile(r"[A-Z]{3,}")
REPEATED_CHAR_RE = re.compile(r"(.)\1{4,}")

# Reference phrases for the embedding-based specificity refinement.
HIGH_SPECIFICITY_REFERENCES: Tuple[str, ...] = (
    "Fixed the race condition in src/worker.py:142 by holding the lock around the queue read",
    "The API returns HTTP 429 when more than 100 requests per minute hit /v1/search",
    "Use `session.execute(text(...))` instead of raw cursor calls in the migration script",
    "Set pool_size=20 in database.yaml to stop connection exhaustion under load",
    "UserService.get_profile raises KeyError when the cache entry has expired",
)

LOW_SPECIFICITY_REFERENCES: Tuple[str, ...] = (
    "Something is wrong somewhere",
    "The code is fine",
    "Maybe look into this later",
    "It works now",
    "Things are kinda broken",
)


def matches_any(patterns: Tuple[LanguagePatterns, ...], attribute: str, content: str) -> bool:
    return any(getattr(p, attribute).search(content) for p in patterns)


def is_preference_fact(content: str, patterns: Optional[Tuple[Pattern[str], ...]] = None) -> bool:
    return any(p.search(content) for p in (patterns or PREFERENCE_PATTERNS))
