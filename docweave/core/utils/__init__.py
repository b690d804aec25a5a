"""Shared utilities: token counting and text helpers."""

from .token_counter import TokenCounter, estimate_tokens, get_token_counter
from .text_utils import dedupe, first_sentences, sanitize_name, utc_now, word_count

__all__ = [
    "TokenCounter",
    "estimate_tokens",
    "get_token_counter",
    "dedupe",
    "first_sentences",
    "sanitize_name",
    "utc_now",
    "word_count",
]
