"""Text matching used by the catalog search operations."""

import re
from difflib import SequenceMatcher
from typing import Any, Dict, Iterable, List, TypeVar

T = TypeVar("T")

# Minimum similarity for a fuzzy (non-substring) token match.
FUZZY_THRESHOLD = 0.6

_TOKEN_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")


def operation_haystack(operation: Dict[str, Any]) -> str:
    """Lower-cased text an operation is searched by."""
    tags = operation.get("tags") or []
    parts = [
        operation.get("operationId"),
        operation.get("summary"),
        operation.get("description"),
        *[str(tag) for tag in tags],
    ]
    return " ".join(str(part) for part in parts if part).lower()


def tokenize(text: str) -> List[str]:
    """Split identifiers and prose into lower-case words (camelCase aware)."""
    return [token.lower() for token in _TOKEN_RE.findall(text or "")]


def _similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()


def fuzzy_score(query: str, name: str, description: str = "") -> float:
    """Score how well ``query`` matches a named item; 0 means no match."""
    query = query.strip().lower()
    if not query:
        return 0.0

    name_lower = (name or "").lower()
    description_lower = (description or "").lower()
    score = 0.0

    # Name matches are most important
    if query == name_lower:
        score += 10
    elif query in name_lower:
        score += 6

    # Description matches
    if query in description_lower:
        score += 3

    # Fuzzy word scoring
    name_tokens = tokenize(name) + [name_lower]
    description_tokens = tokenize(description)
    for word in tokenize(query) or [query]:
        best_name = max((_similarity(word, t) for t in name_tokens), default=0.0)
        if best_name >= FUZZY_THRESHOLD:
            score += 2 * best_name
        best_description = max(
            (_similarity(word, t) for t in description_tokens), default=0.0
        )
        if best_description >= FUZZY_THRESHOLD:
            score += best_description

    return score


def rank(
    query: str,
    items: Iterable[T],
    name_attr: str = "name",
    description_attr: str = "description",
) -> List[T]:
    """Return items with a positive score, best first (stable for ties)."""
    scored = []
    for item in items:
        score = fuzzy_score(
            query,
            getattr(item, name_attr, "") or "",
            getattr(item, description_attr, "") or "",
        )
        if score > 0:
            scored.append((score, item))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in scored]
