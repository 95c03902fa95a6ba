############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# moderation.py: Dangerous-pattern scan and per-tool content rules
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Input moderation for tool requests.

Two layers, both hard rejections:

1. A static dangerous-pattern scan (script injection, ``eval``, the
   ``Function`` constructor, iframes, ``document.write``, ``javascript:``
   URLs, inline event handlers) over every string in the input.
2. Content rules over the text of the input: length bounds, whitelist, word
   blacklist by sensitivity, language restriction and a custom validator.
   Tools without a ``SafetyConfig`` get the defaults (global blacklist,
   medium sensitivity, configured length bounds).
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Tuple

from backend.app.errors import ContentRejected
from backend.app.settings import get_settings

DANGEROUS_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"<\s*script\b", re.IGNORECASE), "Script tags are not allowed"),
    (re.compile(r"\beval\s*\(", re.IGNORECASE), "eval() is not allowed"),
    (re.compile(r"\bFunction\s*\("), "Function constructor is not allowed"),
    (re.compile(r"<\s*iframe\b", re.IGNORECASE), "Iframes are not allowed"),
    (re.compile(r"document\s*\.\s*write", re.IGNORECASE), "document.write() is not allowed"),
    (re.compile(r"javascript\s*:", re.IGNORECASE), "javascript: URLs are not allowed"),
    (
        re.compile(r"<[^>]*\son[a-z]+\s*=", re.IGNORECASE),
        "Inline event handlers are not allowed",
    ),
]

GLOBAL_BLACKLIST = [
    "rape", "murder", "kill", "suicide", "bomb", "terrorist",
    "abuse", "pedophile", "nazi", "genocide", "violence", "weapon",
]

SENSITIVITY_BLACKLIST = {
    "low": [],
    "medium": ["fuck", "shit", "damn"],
    "high": ["fuck", "shit", "damn", "hell", "ass", "bitch", "crap"],
}


@dataclass
class SafetyConfig:
    """Per-tool content rules layered on top of the dangerous-pattern scan."""

    blacklist: List[str] = field(default_factory=list)
    whitelist: List[str] = field(default_factory=list)
    ignore_global_blacklist: bool = False
    sensitivity: str = "medium"  # low | medium | high
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    allowed_languages: List[str] = field(default_factory=list)
    custom_validator: Optional[Callable[[str], Tuple[bool, Optional[str]]]] = None


def _iter_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_strings(item)


def scan_dangerous(value: Any) -> Optional[str]:
    """Reason for the first dangerous pattern found anywhere in ``value``."""
    for text in _iter_strings(value):
        for pattern, message in DANGEROUS_PATTERNS:
            if pattern.search(text):
                return message
    return None


def detect_language(text: str) -> str:
    """Rough script-based detection: zh, ja, ko, else en."""
    if not text:
        return "en"
    length = len(text)
    chinese = len(re.findall(r"[\u4e00-\u9fa5]", text)) / length
    japanese = len(re.findall(r"[\u3040-\u309f\u30a0-\u30ff]", text)) / length
    korean = len(re.findall(r"[\uac00-\ud7af]", text)) / length
    if chinese > 0.3:
        return "zh"
    if japanese > 0.3:
        return "ja"
    if korean > 0.3:
        return "ko"
    return "en"


def _contains_word(lower: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word.lower())}\b", lower) is not None


def moderate_text(text: str, config: SafetyConfig) -> Optional[str]:
    """Reason the text violates ``config``, or None."""
    settings = get_settings()
    min_length = config.min_length if config.min_length is not None else settings.moderation_min_length
    max_length = config.max_length if config.max_length is not None else settings.moderation_max_length

    if len(text) < min_length:
        return f"Input too short (minimum {min_length} characters)"
    if len(text) > max_length:
        return f"Input too long (maximum {max_length} characters)"

    lower = text.lower()

    if config.whitelist and not any(w.lower() in lower for w in config.whitelist):
        return "Content does not contain required keywords"

    words = [] if config.ignore_global_blacklist else list(GLOBAL_BLACKLIST)
    words += SENSITIVITY_BLACKLIST.get(config.sensitivity, SENSITIVITY_BLACKLIST["medium"])
    words += config.blacklist
    if any(_contains_word(lower, w) for w in words):
        return "Content contains prohibited words"

    if config.allowed_languages and detect_language(text) not in config.allowed_languages:
        return f"Only {', '.join(config.allowed_languages)} languages are allowed"

    if config.custom_validator:
        allowed, reason = config.custom_validator(text)
        if not allowed:
            return reason or "Content rejected"

    return None


def moderate_input(value: Any, config: Optional[SafetyConfig] = None) -> None:
    """
    Apply both moderation layers.

    Raises:
        ContentRejected: on the first violation
    """
    reason = scan_dangerous(value)
    if reason:
        raise ContentRejected(reason)

    texts = list(_iter_strings(value))
    if not texts:
        return
    # Structured inputs are judged as one block of text
    reason = moderate_text("\n".join(texts), config or SafetyConfig())
    if reason:
        raise ContentRejected(reason)
