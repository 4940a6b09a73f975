"""lodestar.retrieval.snippet

Query-aware snippet extraction for search results.

Functions
---------
extract_snippet
    Return the most relevant window of lines of a document plus the query
    terms worth highlighting.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "was", "are", "were", "been", "be",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "this", "that", "these", "those",
    "it", "its", "they", "them", "their", "we", "our", "you", "your", "what",
    "which", "who", "how", "when", "where", "why", "all", "each", "every",
    "both", "few", "more", "most", "other", "some", "such", "no", "not", "only",
})

MAX_HIGHLIGHTS = 5
BM25_K1 = 1.2
BM25_B = 0.75
AVERAGE_DOC_LENGTH = 500


@dataclass(frozen=True)
class SnippetResult:
    """A snippet and the query terms to highlight in it."""
    snippet: str
    highlights: List[str] = field(default_factory=list)


def _query_terms(query: str) -> List[str]:
    terms: List[str] = []
    for word in re.split(r"\s+", query.lower()):
        if len(word) > 2 and word not in terms:
            terms.append(word)
    return terms


def _score_terms(terms: List[str], content: str) -> List[Tuple[str, float]]:
    """Score terms that occur in ``content``, best first.

    Each term gets a BM25-style saturated term frequency, damped for
    stopwords and boosted for longer (more specific) terms.
    """
    lowered = content.lower()
    length_norm = 1 - BM25_B + BM25_B * (len(content) / AVERAGE_DOC_LENGTH)

    scored: List[Tuple[str, float]] = []
    for term in terms:
        tf = lowered.count(term)
        if tf == 0:
            continue
        tf_norm = (tf * (BM25_K1 + 1)) / (tf + BM25_K1 * length_norm)
        penalty = 0.1 if term in STOPWORDS else 1.0
        boost = min(len(term) / 5, 1.5)
        scored.append((term, tf_norm * penalty * boost))

    scored.sort(key=lambda item: item[1], reverse=True)
    return scored


def extract_snippet(content: str, query: str, context_lines: int = 2) -> SnippetResult:
    """Extract the window of ``content`` that best matches ``query``.

    Parameters
    ----------
    content : str
        Full document text.
    query : str
        Search query. Words of two characters or fewer are ignored.
    context_lines : int, optional
        Lines kept on each side of the best line. Defaults to ``2``.

    Returns
    -------
    SnippetResult
        The snippet and up to five highlight terms. Content with at most
        ``2 * context_lines + 1`` lines is returned whole; content without any
        matching line yields its first ``2 * context_lines + 1`` lines.
    """
    lines = content.split("\n")
    window = 2 * context_lines + 1
    terms = _query_terms(query)
    scored = _score_terms(terms, content)
    highlights = [term for term, _ in scored[:MAX_HIGHLIGHTS]]

    if len(lines) <= window:
        return SnippetResult(snippet=content, highlights=highlights)

    term_scores: Dict[str, float] = dict(scored)
    best_index, best_score = 0, 0.0
    for i, line in enumerate(lines):
        lowered = line.lower()
        score = sum(term_scores.get(term) or 1.0 for term in terms if term in lowered)
        if score > best_score:
            best_index, best_score = i, score

    if best_score == 0:
        return SnippetResult(snippet="\n".join(lines[:window]), highlights=highlights)

    start = max(0, best_index - context_lines)
    end = min(len(lines), best_index + context_lines + 1)
    return SnippetResult(snippet="\n".join(lines[start:end]), highlights=highlights)


__all__ = ["SnippetResult", "STOPWORDS", "extract_snippet"]
