from __future__ import annotations
from typing import Any

from localized import LANGUAGES, localize
from storage import KeyValueStorage

RTL_LANGUAGES = {"ar"}


class LanguageStore:
    def __init__(self, storage: KeyValueStorage, key: str = "language-storage", default: str = "fr"):
        self.storage = storage
        self.key = key
        saved = storage.get(key) or {}
        language = saved.get("language", default)
        self.language = language if language in LANGUAGES else default

    def set_language(self, language: str) -> None:
        if language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {language}")
        self.language = language
        self.storage.set(self.key, {"language": language})

    @property
    def direction(self) -> str:
        return "rtl" if self.language in RTL_LANGUAGES else "ltr"

    def text(self, value: Any) -> str:
        return localize(value, self.language)
