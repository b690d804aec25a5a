"""Token counting via tiktoken.

Uses cl100k_base encoding. ``estimate_tokens`` is the cheap chars/4
approximation used for context budgets where an exact count is not
worth the encode call.
"""

from functools import lru_cache

import tiktoken

from ..constants import TRUNCATION_MARKER


class TokenCounter:
    """Count tokens using tiktoken encoding."""

    def __init__(self, encoding_name: str = "cl100k_base"):
        self._encoder = tiktoken.get_encoding(encoding_name)

    def count(self, text: str) -> int:
        """Return the number of tokens in text."""
        return len(self._encoder.encode(text))

    def truncate(self, text: str, max_tokens: int) -> str:
        """Cut text to max_tokens, appending an explicit truncation marker.

        Text already within budget is returned unchanged.
        """
        tokens = self._encoder.encode(text)
        if len(tokens) <= max_tokens:
            return text
        marker_tokens = len(self._encoder.encode(TRUNCATION_MARKER))
        keep = max(max_tokens - marker_tokens, 0)
        head = self._encoder.decode(tokens[:keep]).rstrip()
        return head + TRUNCATION_MARKER


@lru_cache(maxsize=1)
def get_token_counter() -> TokenCounter:
    return TokenCounter()


def estimate_tokens(text: str) -> int:
    return len(text) // 4
