from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, Iterator

MIN_TOKEN_LENGTH = 3

STOPWORDS = frozenset(
    {
        "a", "about", "above", "after", "again", "all", "am", "an", "and", "any", "are", "as", "at",
        "be", "because", "been", "before", "being", "below", "between", "both", "but", "by",
        "can", "could", "did", "do", "does", "doing", "down", "during",
        "each", "few", "for", "from", "further",
        "had", "has", "have", "having", "he", "her", "here", "hers", "herself", "him", "himself",
        "his", "how",
        "i", "if", "in", "into", "is", "it", "its", "itself",
        "just",
        "me", "might", "more", "most", "must", "my", "myself",
        "no", "nor", "not", "now",
        "of", "off", "on", "once", "only", "or", "other", "our", "ours", "ourselves", "out", "over", "own",
        "s", "same", "she", "should", "so", "some", "such",
        "t", "than", "that", "the", "their", "theirs", "them", "themselves", "then", "there", "these",
        "they", "this", "those", "through", "to", "too",
        "under", "until", "up",
        "very",
        "was", "we", "were", "what", "when", "where", "which", "while", "who", "whom", "why", "will", "with",
        "would",
        "you", "your", "yours", "yourself", "yourselves",
    }
)

_WORD_RE = re.compile(r"[a-z]+")


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    words = _WORD_RE.findall(text.lower())
    return [word for word in words if len(word) >= MIN_TOKEN_LENGTH and word not in STOPWORDS]


def iter_tokens(texts: Iterable[str]) -> Iterator[str]:
    for text in texts:
        yield from tokenize(text)


def rank_words(tokens: Iterable[str], limit: int = 20) -> list[tuple[str, int]]:
    if limit <= 0:
        return []
    # Counter keeps first-seen order, and sorted() is stable, so ties stay in that order.
    counts = Counter(tokens)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked[:limit]


def top_words(texts: Iterable[str], limit: int = 20) -> list[tuple[str, int]]:
    return rank_words(iter_tokens(texts), limit=limit)
