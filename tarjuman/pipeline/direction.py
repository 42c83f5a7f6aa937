"""Script-based language detection and per-utterance translation direction."""

import re
from typing import NamedTuple

from tarjuman.models.languages import MIDDLE_EASTERN_LANGUAGES

# Arabic script blocks: Arabic, Arabic Supplement, Arabic Extended-A,
# Presentation Forms-A and -B
_ARABIC_SCRIPT = re.compile(
    "[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]"
)
_HEBREW = re.compile("[\u0590-\u05FF]")
# Sorani letters absent from Arabic and Persian
_KURDISH_ONLY = re.compile("[\u0695\u06A4\u06B5\u06C6\u06CE\u06D5]")
# Persian letters absent from Arabic, plus Persian digits
_PERSIAN_ONLY = re.compile("[\u067E\u0686\u0698\u06A9\u06AF\u06CC\u06F0-\u06F9]")
_TURKISH = re.compile("[\u00e7\u011f\u0131\u00f6\u015f\u00fc\u00c7\u011e\u0130\u00d6\u015e\u00dc]")
# Text the overlay would already show as English
_ENGLISH_ONLY = re.compile(r"^[a-zA-Z\s.,!?;:'\"()-]+$")


class Direction(NamedTuple):
    source: str
    target: str


def detect_language(text: str) -> str:
    """Guess the language of a transcript from the scripts it uses.

    Checks run most-specific first: Kurdish letters, then Persian letters,
    then any Arabic-script character. Hebrew and Turkish are recognised by
    their own block or diacritics; anything else is treated as English.
    """
    if not text:
        return "en"
    if _HEBREW.search(text):
        return "he"
    if _ARABIC_SCRIPT.search(text):
        if _KURDISH_ONLY.search(text):
            return "ku"
        if _PERSIAN_ONLY.search(text):
            return "fa"
        return "ar"
    if _TURKISH.search(text):
        return "tr"
    return "en"


def resolve_direction(detected: str, configured_source: str, configured_target: str) -> Direction:
    """Pick source/target for one utterance in bidirectional mode.

    A Middle-Eastern language is always translated into English. English is
    translated into the user's own language (the configured source); if that
    is English as well, the configured target is used. Anything else keeps the
    configured pair.
    """
    if detected in MIDDLE_EASTERN_LANGUAGES:
        return Direction(detected, "en")
    if detected == "en":
        native = configured_source if configured_source != "en" else configured_target
        return Direction("en", native)
    return Direction(configured_source, configured_target)


def needs_translation(text: str, target_language: str) -> bool:
    """False when the text is empty or already reads as the target language."""
    if not text or not text.strip():
        return False
    if target_language == "en":
        return not _ENGLISH_ONLY.match(text)
    return True
