"""Supported languages and the canned responses of the simulated backend."""

SUPPORTED_LANGUAGES = {
    "ar": {"name": "Arabic", "display_name": "العربية"},
    "fa": {"name": "Persian", "display_name": "فارسی"},
    "tr": {"name": "Turkish", "display_name": "Türkçe"},
    "he": {"name": "Hebrew", "display_name": "עברית"},
    "ku": {"name": "Kurdish", "display_name": "کوردی"},
    "en": {"name": "English", "display_name": "English"},
}

MIDDLE_EASTERN_LANGUAGES = ("ar", "fa", "tr", "he", "ku")

# Transcription hint asking the backend to detect the spoken language itself
AUTO_LANGUAGE = "auto"

SIMULATED_TRANSCRIPTIONS = {
    "ar": "مرحبا، كيف حالك؟",
    "fa": "سلام، چطور هستید؟",
    "tr": "Merhaba, nasılsın?",
    "he": "שלום, איך אתה?",
    "ku": "سڵاو، چۆنیت؟",
    "en": "Hello, how are you?",
}

SIMULATED_ENGLISH_TRANSLATION = "Hello, how are you?"

