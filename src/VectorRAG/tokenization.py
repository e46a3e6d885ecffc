"""Tokenization utilities shared by lexical scoring and the hash embedder."""
from __future__ import annotations

import string
from typing import FrozenSet, List

_STRIP_CHARS = string.punctuation + "‘’“”–—…"


def tokenize(text: str) -> List[str]:
    """Split ``text`` on whitespace into lower-cased tokens.

    Punctuation surrounding a token is stripped (``"password?"`` becomes
    ``"password"``); tokens made only of punctuation are dropped.

    Examples:
        >>> tokenize("Reset your password via Settings -> Security.")
        ['reset', 'your', 'password', 'via', 'settings', 'security']
    """

    tokens: List[str] = []
    for raw in text.split():
        token = raw.strip(_STRIP_CHARS).lower()
        if token:
            tokens.append(token)
    return tokens


def token_set(text: str) -> FrozenSet[str]:
    """Return the distinct tokens of ``text``."""

    return frozenset(tokenize(text))
