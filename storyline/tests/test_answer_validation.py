"""
Answer quality heuristic: thresholds, spam detection, determinism.
"""
import pytest

from storyline.features.validation.answers import (
    SpamPattern,
    count_sentences,
    detect_spam_patterns,
    repetition_score,
    should_block_submission,
    thresholds_for,
    validate_answer,
    validation_message,
)


STAR_ANSWER = (
    "Last spring our payment service started failing during peak traffic. "
    "I volunteered to lead the investigation with two backend engineers. "
    "We traced the outages to connection pool exhaustion caused by slow database queries. "
    "I rewrote the worst queries, added caching for merchant lookups, and introduced load shedding. "
    "Within three weeks checkout errors dropped ninety percent and revenue recovered. "
    "The experience taught me to measure before optimizing and to communicate progress daily with stakeholders."
)


def test_short_answer_counts_and_warnings():
    result = validate_answer("I fixed a bug.", 0)

    assert result.word_count == 4
    assert result.sentence_count == 1
    assert result.unique_word_count == 2
    assert result.is_valid is False
    assert result.is_extreme is True
    assert any("at least 50 words" in w for w in result.warnings)
    assert any("complete sentences" in w for w in result.warnings)


def test_validation_is_deterministic():
    assert validate_answer(STAR_ANSWER, 2) == validate_answer(STAR_ANSWER, 2)


def test_star_answer_meets_early_thresholds():
    result = validate_answer(STAR_ANSWER, 0)

    assert result.word_count == 73
    assert result.sentence_count == 6
    assert result.is_valid is True
    assert result.is_extreme is False
    assert result.warnings == ()
    assert validation_message(result) is None


def test_later_questions_demand_more_words():
    assert validate_answer(STAR_ANSWER, 3).is_valid is True
    result = validate_answer(STAR_ANSWER, 4)
    assert result.is_valid is False
    assert result.warnings == ("Answer should be at least 80 words (currently 73)",)


def test_appending_text_never_invalidates():
    extended = STAR_ANSWER + " Afterwards I documented the incident for the wider organization."
    assert validate_answer(extended, 0).is_valid is True


def test_validity_ignores_spam_warnings():
    text = STAR_ANSWER + " Lorem ipsum dolor sit amet."
    result = validate_answer(text, 0)

    assert SpamPattern.LOREM_IPSUM in result.spam_patterns
    assert result.is_valid is True
    assert result.has_blocking_spam is True
    assert should_block_submission(result) is True
    assert should_block_submission(result, allow_override=True) is False


def test_thresholds_past_table_reuse_last_entry():
    assert thresholds_for(7) == thresholds_for(4)
    with pytest.raises(ValueError):
        thresholds_for(-1)


def test_empty_text_is_extreme():
    result = validate_answer("", 0)

    assert result.word_count == 0
    assert result.repetition_score == 1.0
    assert result.is_extreme is True
    assert validation_message(result).level == "error"


def test_moderate_answer_gets_warning_message():
    text = (
        "Last spring our payment service started failing during peak traffic. "
        "I volunteered to lead the investigation with two backend engineers."
    )
    result = validate_answer(text, 0)

    assert result.word_count == 20
    assert result.is_valid is False
    assert result.is_extreme is False
    message = validation_message(result)
    assert message.level == "warning"
    assert "STAR" in message.message


def test_abbreviations_do_not_split_sentences():
    assert count_sentences("I reported to Dr. Smith about the migration plan.") == 1


def test_repetition_score_counts_repeated_distinct_words():
    assert repetition_score("alpha beta alpha gamma") == pytest.approx(1 / 3)


class TestSpamPatterns:
    def test_repeated_phrase(self):
        patterns, warnings = detect_spam_patterns("this is great " * 12)
        assert SpamPattern.REPEATED_PHRASE in patterns
        assert warnings[0].startswith("Repeated phrase detected")

    def test_keyboard_mashing(self):
        patterns, _ = detect_spam_patterns("I handled it aaaaaaa well")
        assert patterns == frozenset({SpamPattern.KEYBOARD_MASHING})

    def test_dominant_long_word_is_warning_only(self):
        text = " ".join(["internationalization"] * 6 + ["matters"] * 10)
        patterns, _ = detect_spam_patterns(text)
        assert SpamPattern.DOMINANT_WORD in patterns
        result = validate_answer(text, 0)
        assert result.has_blocking_spam is False

    def test_clean_answer_has_no_patterns(self):
        patterns, warnings = detect_spam_patterns(STAR_ANSWER)
        assert patterns == frozenset()
        assert warnings == []
