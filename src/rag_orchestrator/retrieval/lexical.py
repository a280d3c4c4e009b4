"""Query normalization for lexical plans."""

from __future__ import annotations

import re

_PUNCT = re.compile(r"[^\w\s]", flags=re.UNICODE)

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "do", "does", "for",
        "from", "how", "in", "is", "it", "of", "on", "or", "that", "the",
        "this", "to", "was", "what", "when", "where", "which", "who", "why",
        "with",
    }
)


def tokenize(text: str, *, drop_stop_words: bool = True) -> list[str]:
    """Lowercase, strip punctuation, split on whitespace.

    Order is preserved and duplicates are removed. Stop words are dropped
    unless that would leave nothing.
    """

    words = _PUNCT.sub(" ", text.lower()).split()
    seen: set[str] = set()
    tokens: list[str] = []
    for word in words:
        if word not in seen:
            seen.add(word)
            tokens.append(word)
    if not drop_stop_words:
        return tokens
    filtered = [token for token in tokens if token not in STOP_WORDS]
    return filtered or tokens
