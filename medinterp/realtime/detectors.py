"""
Text Detectors Module

Rule-based classifiers that run on a single transcript snippet:
- Language: primary (English clinician) vs. secondary (Spanish patient)
- "Please repeat" requests in the secondary language
- Speaker role: primary vs. secondary party, by majority vote
- Conversation ending and summary-like utterances

Simple pattern-based detection without LLM overhead. The pattern lists are
plain configuration data (`DetectorConfig`); extending them never touches the
control flow here.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence


class Language(str, Enum):
    """Language lane a transcript belongs to."""
    PRIMARY = "english"
    SECONDARY = "spanish"


# Pre-defined pattern lists
SECONDARY_LANGUAGE_PATTERNS = [
    r"[áéíóúüñ¿¡]",
    r"\b(el|la|los|las|un|una|unos|unas)\b",
    r"\b(es|está|son|están)\b",
    r"\b(y|o|pero|porque|como|cuando|donde|qué|quién|cómo|por qué)\b",
]

REPEAT_REQUEST_PATTERNS = [
    r"repite eso",
    r"repítelo",
    r"dilo otra vez",
    r"puedes repetir",
    r"no entendí",
    r"no entiendo",
    r"repita",
    r"repetir",
]

PRIMARY_SPEAKER_PATTERNS = [
    r"\b(the|a|an|is|are|have|has|was|were|will|would|can|could|should|may|might)\b",
    r"\b(I|you|he|she|it|we|they|my|your|his|her|its|our|their)\b",
    r"\b(this|that|these|those|here|there|now|then|today|tomorrow|yesterday)\b",
]

SECONDARY_SPEAKER_PATTERNS = [
    r"\b(el|la|los|las|un|una|unos|unas|es|son|estar|tener|fue|fueron|será|sería)\b",
    r"\b(yo|tú|él|ella|eso|nosotros|ellos|mi|tu|su|nuestro|sus)\b",
    r"\b(este|esta|estos|estas|aquí|allí|ahora|entonces|hoy|mañana|ayer)\b",
]

ENDING_PATTERNS = [
    r"thank you for (the|your) time",
    r"have a (good|great|nice) day",
    r"that('s| is) all for today",
    r"appointment (is|has been) scheduled",
    r"we('| a)re done",
    r"conversation (is|has) ended",
    r"end of (the|our) (session|appointment|visit)",
    r"gracias por (su|tu) tiempo",
    r"que (tenga|tengas) un buen día",
    r"eso es todo por hoy",
    r"hemos terminado",
    r"(here is|here's|I have prepared) (a|the) summary",
    r"summary of (our|the|today's) (conversation|visit|appointment)",
]

SUMMARY_PATTERNS = [
    r"SUMMARY:",
    r"RESUMEN:",
    r"summary",
    r"resumen",
    r"^(here is |here's )?a summary",
]


@dataclass(frozen=True)
class DetectorConfig:
    """Pattern lists (regex sources) used by the detectors."""
    secondary_language_patterns: List[str] = field(default_factory=lambda: list(SECONDARY_LANGUAGE_PATTERNS))
    repeat_request_patterns: List[str] = field(default_factory=lambda: list(REPEAT_REQUEST_PATTERNS))
    primary_speaker_patterns: List[str] = field(default_factory=lambda: list(PRIMARY_SPEAKER_PATTERNS))
    secondary_speaker_patterns: List[str] = field(default_factory=lambda: list(SECONDARY_SPEAKER_PATTERNS))
    ending_patterns: List[str] = field(default_factory=lambda: list(ENDING_PATTERNS))
    summary_patterns: List[str] = field(default_factory=lambda: list(SUMMARY_PATTERNS))

    def extend(self, **extra: Sequence[str]) -> "DetectorConfig":
        """
        Return a copy with extra patterns appended to the named lists.

        Example:
            config = DEFAULT_DETECTOR_CONFIG.extend(repeat_request_patterns=[r"otra vez"])
        """
        changes = {}
        for name, patterns in extra.items():
            if not hasattr(self, name):
                raise ValueError(f"Unknown pattern list: {name}")
            changes[name] = list(getattr(self, name)) + list(patterns)
        return replace(self, **changes)


DEFAULT_DETECTOR_CONFIG = DetectorConfig()


def _compile(patterns: Sequence[str]) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


class TextDetectors:
    """
    Compiled detectors for one pattern configuration.

    All methods are total: empty or missing text is never an error and
    always classifies as False.

    Usage:
        detectors = TextDetectors()
        detectors.detect_language("¿Cómo está?")  # Language.SECONDARY
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        self._config = config or DEFAULT_DETECTOR_CONFIG

        # Compile regex patterns
        self._secondary_language = _compile(self._config.secondary_language_patterns)
        self._repeat_request = _compile(self._config.repeat_request_patterns)
        self._primary_speaker = _compile(self._config.primary_speaker_patterns)
        self._secondary_speaker = _compile(self._config.secondary_speaker_patterns)
        self._ending = _compile(self._config.ending_patterns)
        self._summary = _compile(self._config.summary_patterns)

    @property
    def config(self) -> DetectorConfig:
        return self._config

    @staticmethod
    def _any(patterns: List[re.Pattern], text: Optional[str]) -> bool:
        if not text:
            return False
        return any(p.search(text) for p in patterns)

    @staticmethod
    def _count(patterns: List[re.Pattern], text: str) -> int:
        return sum(1 for p in patterns if p.search(text))

    def is_secondary_language(self, text: Optional[str]) -> bool:
        """True if the text carries any secondary-language marker."""
        return self._any(self._secondary_language, text)

    def detect_language(self, text: Optional[str]) -> Language:
        """Route a transcript to its language lane."""
        if self.is_secondary_language(text):
            return Language.SECONDARY
        return Language.PRIMARY

    def is_repeat_request(self, text: Optional[str]) -> bool:
        """True if the text asks for the previous message again."""
        return self._any(self._repeat_request, text)

    def is_primary_speaker(self, text: Optional[str]) -> bool:
        """
        Majority vote between primary and secondary indicator sets.

        Ties go to the secondary party.
        """
        if not text:
            return False
        primary = self._count(self._primary_speaker, text)
        secondary = self._count(self._secondary_speaker, text)
        return primary > secondary

    def is_conversation_ending(self, text: Optional[str]) -> bool:
        """True if the text reads like a closing or summary announcement."""
        return self._any(self._ending, text)

    def looks_like_summary(self, text: Optional[str]) -> bool:
        """True if the text appears to be a conversation summary."""
        return self._any(self._summary, text)


_default_detectors = TextDetectors()


def is_secondary_language(text: Optional[str]) -> bool:
    return _default_detectors.is_secondary_language(text)


def detect_language(text: Optional[str]) -> Language:
    return _default_detectors.detect_language(text)


def is_repeat_request(text: Optional[str]) -> bool:
    return _default_detectors.is_repeat_request(text)


def is_primary_speaker(text: Optional[str]) -> bool:
    return _default_detectors.is_primary_speaker(text)


def is_conversation_ending(text: Optional[str]) -> bool:
    return _default_detectors.is_conversation_ending(text)


def looks_like_summary(text: Optional[str]) -> bool:
    return _default_detectors.looks_like_summary(text)
