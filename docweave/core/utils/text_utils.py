"""Small text helpers shared by the analysis phases."""

import re
from datetime import datetime, timezone
from typing import List

_SENTENCE_SPLIT = ". "


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every persisted time column."""
    return datetime.now(timezone.utc).isoformat()


def first_sentences(text: str, count: int = 3, max_chars: int = 300) -> str:
    """First ``count`` sentences of text, capped at max_chars with '...'."""
    sentences = [s for s in text.split(_SENTENCE_SPLIT) if s.strip()]
    summary = _SENTENCE_SPLIT.join(sentences[:count]).strip()
    if len(summary) > max_chars:
        summary = summary[: max_chars - 3].rstrip() + "..."
    return summary


def word_count(text: str) -> int:
    return len(text.split())


def sanitize_name(name: str) -> str:
    """Lowercase, hyphen-separated identifier ("Auth & Users" -> "auth-users")."""
    cleaned = re.sub(r"[^a-z0-9-]", "-", name.lower())
    return "-".join(part for part in cleaned.split("-") if part)


def dedupe(items: List[str]) -> List[str]:
    """Drop duplicates, keep first-seen order."""
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
