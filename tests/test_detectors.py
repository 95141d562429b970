"""
Tests for the text detectors and wake phrase matcher.
"""

import pytest

from medinterp.realtime.detectors import (
    DEFAULT_DETECTOR_CONFIG,
    Language,
    TextDetectors,
    detect_language,
    is_conversation_ending,
    is_primary_speaker,
    is_repeat_request,
    is_secondary_language,
    looks_like_summary,
)
from medinterp.realtime.wake_phrase import levenshtein_distance, matches_wake_phrase


class TestLanguageDetection:
    """Tests for primary/secondary language routing."""

    def test_inverted_question_mark_is_secondary(self):
        assert is_secondary_language("¿Dónde le duele?") is True

    def test_accented_word_is_secondary(self):
        assert is_secondary_language("Tengo cuarenta año") is True

    def test_english_question_is_primary(self):
        assert is_secondary_language("What time is it?") is False
        assert detect_language("What time is it?") == Language.PRIMARY

    def test_spanish_articles(self):
        assert detect_language("tomo la pastilla") == Language.SECONDARY

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_input_is_never_secondary(self, text):
        assert is_secondary_language(text) is False
        assert detect_language(text) == Language.PRIMARY


class TestRepeatRequest:
    """Tests for "please repeat" detection."""

    @pytest.mark.parametrize("text", [
        "Repite eso, por favor",
        "¿Puede repetir?",
        "No entendí lo que dijo",
        "Dilo otra vez",
    ])
    def test_repeat_phrases(self, text):
        assert is_repeat_request(text) is True

    def test_regular_sentence(self):
        assert is_repeat_request("Me duele el estómago") is False

    def test_empty(self):
        assert is_repeat_request("") is False


class TestSpeakerRole:
    """Tests for the primary/secondary speaker vote."""

    def test_english_clinician_sentence(self):
        assert is_primary_speaker("You should take this medication with a meal") is True

    def test_spanish_patient_sentence(self):
        assert is_primary_speaker("Yo tengo dolor aquí, en el pecho") is False

    def test_no_indicators_is_not_primary(self):
        assert is_primary_speaker("ok") is False

    def test_empty(self):
        assert is_primary_speaker(None) is False


class TestEndingAndSummary:
    """Tests for conversation-ending and summary detection."""

    def test_ending_phrase(self):
        assert is_conversation_ending("Thank you for your time, have a great day") is True

    def test_spanish_ending(self):
        assert is_conversation_ending("Eso es todo por hoy") is True

    def test_regular_sentence_does_not_end(self):
        assert is_conversation_ending("Please take a deep breath") is False

    def test_summary_prefix(self):
        assert looks_like_summary("SUMMARY: patient reports headaches") is True
        assert looks_like_summary("Here is a summary of the visit") is True
        assert looks_like_summary("Resumen de la consulta") is True

    def test_not_summary(self):
        assert looks_like_summary("How long have you had the cough?") is False
        assert looks_like_summary("") is False


class TestDetectorConfig:
    """Tests for configurable pattern lists."""

    def test_extend_appends_patterns(self):
        config = DEFAULT_DETECTOR_CONFIG.extend(repeat_request_patterns=[r"otra vez por favor"])
        assert config.repeat_request_patterns[-1] == r"otra vez por favor"
        assert len(DEFAULT_DETECTOR_CONFIG.repeat_request_patterns) == len(config.repeat_request_patterns) - 1

    def test_extended_detectors_are_independent(self):
        custom = TextDetectors(DEFAULT_DETECTOR_CONFIG.extend(ending_patterns=[r"nos vemos"]))
        assert custom.is_conversation_ending("Nos vemos la próxima semana") is True
        assert is_conversation_ending("Nos vemos la próxima semana") is False

    def test_extend_unknown_list(self):
        with pytest.raises(ValueError):
            DEFAULT_DETECTOR_CONFIG.extend(nonexistent_patterns=["x"])


class TestWakePhrase:
    """Tests for wake phrase matching."""

    def test_levenshtein(self):
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("hey sully", "hey sully") == 0

    def test_exact_phrase(self):
        assert matches_wake_phrase("Hey Sully") is True

    def test_known_misrecognition(self):
        assert matches_wake_phrase("hey sally can you help") is True

    def test_split_across_transcripts(self):
        assert matches_wake_phrase("sully", previous="hey") is True

    def test_greeting_with_near_name(self):
        assert matches_wake_phrase("hey sulky") is True

    def test_edit_distance_match(self):
        assert matches_wake_phrase("he sulli") is True

    def test_unrelated_text(self):
        assert matches_wake_phrase("the patient needs water") is False

    def test_empty(self):
        assert matches_wake_phrase("") is False

    def test_only_recent_words_count(self):
        long_text = "hey sully " + " ".join(["word"] * 10)
        assert matches_wake_phrase(long_text) is False
