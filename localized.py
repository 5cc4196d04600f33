from __future__ import annotations
from typing import Any, Iterable, Mapping

from config import settings

LANGUAGES = ("fr", "ar")


def localize(text: Any, language: str | None = None, fallback: Iterable[str] = LANGUAGES) -> str:
    """Resolve a plain string or a ``{fr, ar}`` mapping to a single string.

    The requested language wins; otherwise the first non-empty entry in
    ``fallback`` order is used. Pydantic translation models are accepted too.
    """
    if not text:
        return ""
    if isinstance(text, str):
        return text
    if hasattr(text, "model_dump"):
        text = text.model_dump()
    if not isinstance(text, Mapping):
        return ""
    order = [language or settings.DEFAULT_LANGUAGE, *fallback]
    for lang in order:
        value = text.get(lang)
        if value:
            return str(value)
    return ""


def plain_name(text: Any, default: str = "") -> str:
    return localize(text) or default


def normalize(text: Any) -> Any:
    """Store translations as a dict and plain names as stripped strings."""
    if hasattr(text, "model_dump"):
        return text.model_dump()
    if isinstance(text, str):
        return text.strip()
    return text
