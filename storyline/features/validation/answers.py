"""
storyline/features/validation/answers.py

Answer quality heuristic for behavioral interview answers.

Pure and deterministic: the same text and question index always produce the
same ValidationResult. Validity depends only on the three per-question
thresholds; spam and repetition checks add warnings and drive the
"extreme" styling, but the user may always submit.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple
import re


@dataclass(frozen=True)
class Thresholds:
    min_word_count: int
    min_sentence_count: int
    min_unique_words: int


# Later questions in a five-question practice ask for more depth.
QUESTION_THRESHOLDS: Dict[int, Thresholds] = {
    0: Thresholds(min_word_count=50, min_sentence_count=3, min_unique_words=20),
    1: Thresholds(min_word_count=50, min_sentence_count=3, min_unique_words=20),
    2: Thresholds(min_word_count=60, min_sentence_count=3, min_unique_words=22),
    3: Thresholds(min_word_count=70, min_sentence_count=4, min_unique_words=25),
    4: Thresholds(min_word_count=80, min_sentence_count=4, min_unique_words=28),
}

EXTREME_WORD_COUNT = 20
EXTREME_REPETITION = 0.5
REPETITION_WARNING = 0.3

STOP_WORDS: FrozenSet[str] = frozenset({
    'the', 'be', 'to', 'of', 'and', 'a', 'in', 'that', 'have',
    'i', 'it', 'for', 'not', 'on', 'with', 'he', 'as', 'you',
    'do', 'at', 'this', 'but', 'his', 'by', 'from', 'they',
    'we', 'say', 'her', 'she', 'or', 'an', 'will', 'my', 'one',
    'all', 'would', 'there', 'their', 'what', 'so', 'up', 'out',
    'if', 'about', 'who', 'get', 'which', 'go', 'me', 'when',
    'make', 'can', 'like', 'time', 'no', 'just', 'him', 'know',
    'take', 'people', 'into', 'year', 'your', 'good', 'some',
    'could', 'them', 'see', 'other', 'than', 'then', 'now',
    'look', 'only', 'come', 'its', 'over', 'think', 'also',
    'back', 'after', 'use', 'two', 'how', 'our', 'work', 'first',
    'well', 'way', 'even', 'new', 'want', 'because', 'any',
    'these', 'give', 'day', 'most', 'us', 'is', 'was', 'are',
    'been', 'has', 'had', 'were', 'am', 'being', 'having',
})

_ABBREVIATIONS = re.compile(r"\b(?:Mr|Mrs|Ms|Dr|Prof|Sr|Jr)\.")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_PUNCTUATION = re.compile(r"[^\w\s]")
_LOREM_IPSUM = re.compile(r"lorem\s+ipsum", re.IGNORECASE)
_KEYBOARD_MASHING = re.compile(r"([a-z])\1{4,}", re.IGNORECASE)

MIN_SENTENCE_CHARS = 10
PHRASE_LENGTH = 3
PHRASE_REPEAT_LIMIT = 10
LONG_WORD_CHARS = 15
LONG_WORD_REPEAT_LIMIT = 5
LONG_WORD_SHARE = 0.2


class SpamPattern(str, Enum):
    REPEATED_PHRASE = "repeated_phrase"
    DOMINANT_WORD = "dominant_word"
    LOREM_IPSUM = "lorem_ipsum"
    KEYBOARD_MASHING = "keyboard_mashing"


# Patterns that switch the submit control to blocking-confirmation styling
BLOCKING_SPAM: FrozenSet[SpamPattern] = frozenset({
    SpamPattern.REPEATED_PHRASE,
    SpamPattern.LOREM_IPSUM,
    SpamPattern.KEYBOARD_MASHING,
})


@dataclass(frozen=True)
class ValidationResult:
    word_count: int
    sentence_count: int
    unique_word_count: int
    repetition_score: float
    warnings: Tuple[str, ...]
    is_valid: bool
    is_extreme: bool
    spam_patterns: FrozenSet[SpamPattern] = frozenset()
    thresholds: Optional[Thresholds] = None

    @property
    def has_blocking_spam(self) -> bool:
        return bool(self.spam_patterns & BLOCKING_SPAM)


@dataclass(frozen=True)
class ValidationMessage:
    level: str  # "error" | "warning"
    message: str


def thresholds_for(question_index: int) -> Thresholds:
    """Thresholds for a question; indices past the table reuse the last entry."""
    if question_index < 0:
        raise ValueError(f"question_index must be >= 0, got {question_index}")
    if question_index in QUESTION_THRESHOLDS:
        return QUESTION_THRESHOLDS[question_index]
    return QUESTION_THRESHOLDS[max(QUESTION_THRESHOLDS)]


def _tokens(text: str) -> List[str]:
    return _PUNCTUATION.sub("", text.lower()).split()


def count_words(text: str) -> int:
    return len(text.split())


def count_sentences(text: str) -> int:
    stripped = _ABBREVIATIONS.sub("", text)
    return sum(1 for segment in _SENTENCE_SPLIT.split(stripped) if len(segment.strip()) > MIN_SENTENCE_CHARS)


def count_unique_words(text: str) -> int:
    return len({w for w in _tokens(text) if len(w) > 2 and w not in STOP_WORDS})


def repetition_score(text: str) -> float:
    """Share of distinct (3+ letter) words that occur more than once; 1.0 for empty text."""
    counts = Counter(w for w in _tokens(text) if len(w) > 2)
    if not counts:
        return 1.0
    repeated = sum(1 for c in counts.values() if c > 1)
    return repeated / len(counts)


def detect_spam_patterns(text: str) -> Tuple[FrozenSet[SpamPattern], List[str]]:
    patterns = set()
    warnings: List[str] = []
    words = text.lower().split()

    phrases = Counter(
        " ".join(words[i:i + PHRASE_LENGTH]) for i in range(len(words) - PHRASE_LENGTH + 1)
    )
    for phrase, occurrences in phrases.items():
        if occurrences > PHRASE_REPEAT_LIMIT:
            patterns.add(SpamPattern.REPEATED_PHRASE)
            warnings.append(f'Repeated phrase detected: "{phrase}"')
            break

    long_words = Counter(w for w in words if len(w) > LONG_WORD_CHARS)
    for word, count in long_words.items():
        if count > LONG_WORD_REPEAT_LIMIT and count / len(words) > LONG_WORD_SHARE:
            patterns.add(SpamPattern.DOMINANT_WORD)
            warnings.append(f'Word "{word}" appears too frequently ({count} times)')

    if _LOREM_IPSUM.search(text):
        patterns.add(SpamPattern.LOREM_IPSUM)
        warnings.append("Lorem Ipsum placeholder text detected")

    if _KEYBOARD_MASHING.search(text):
        patterns.add(SpamPattern.KEYBOARD_MASHING)
        warnings.append("Keyboard mashing pattern detected")

    return frozenset(patterns), warnings


def validate_answer(text: str, question_index: int) -> ValidationResult:
    thresholds = thresholds_for(question_index)
    words = count_words(text)
    sentences = count_sentences(text)
    unique = count_unique_words(text)
    repetition = repetition_score(text)
    spam, warnings = detect_spam_patterns(text)

    if words < thresholds.min_word_count:
        warnings.append(f"Answer should be at least {thresholds.min_word_count} words (currently {words})")
    if sentences < thresholds.min_sentence_count:
        warnings.append(
            f"Answer should have at least {thresholds.min_sentence_count} complete sentences (currently {sentences})"
        )
    if unique < thresholds.min_unique_words:
        warnings.append(
            f"Answer needs more variety - use at least {thresholds.min_unique_words} different words (currently {unique})"
        )
    if repetition > REPETITION_WARNING:
        warnings.append("Answer contains too much repetition")

    return ValidationResult(
        word_count=words,
        sentence_count=sentences,
        unique_word_count=unique,
        repetition_score=repetition,
        warnings=tuple(warnings),
        is_valid=(
            words >= thresholds.min_word_count
            and sentences >= thresholds.min_sentence_count
            and unique >= thresholds.min_unique_words
        ),
        is_extreme=words < EXTREME_WORD_COUNT or repetition > EXTREME_REPETITION,
        spam_patterns=spam,
        thresholds=thresholds,
    )


def should_block_submission(result: ValidationResult, allow_override: bool = False) -> bool:
    """Whether the submit control asks for explicit confirmation first.

    Never a hard block: allow_override (the user confirmed) always lets it through.
    """
    if allow_override:
        return False
    return result.is_extreme or result.has_blocking_spam


def validation_message(result: ValidationResult) -> Optional[ValidationMessage]:
    if result.is_valid:
        return None
    if result.is_extreme or result.has_blocking_spam:
        return ValidationMessage(
            level="error",
            message="Your answer is too brief or contains repetitive content. Please provide a meaningful response.",
        )
    return ValidationMessage(
        level="warning",
        message=(
            "Your answer could benefit from more detail. Include specific examples using "
            "the STAR method (Situation, Task, Action, Result)."
        ),
    )
