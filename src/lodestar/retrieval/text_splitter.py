"""lodestar.retrieval.text_splitter

Recursive, separator-priority text splitting.

Text is split on the most specific separator present (Markdown headings, then
fenced code boundaries, horizontal rules, paragraphs, lines, words and finally
single characters). Pieces that are still too long are split again with the
remaining, more granular separators. The resulting units are greedily merged
into chunks of at most ``chunk_size`` characters, each carrying exact
half-open character offsets into the original text so chunks stay
position-addressable.

Functions
---------
split_text
    Split text into overlapping, offset-tracked :class:`~lodestar.common.schemas.SplitChunk` objects.

Classes
-------
TextSplitter
    Chunker callable wrapping :func:`split_text`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from lodestar.common.schemas import Chunk, SplitChunk, Span

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200

SEPARATORS = (
    "\n# ",
    "\n## ",
    "\n### ",
    "\n#### ",
    "\n##### ",
    "\n###### ",
    "```\n\n",
    "\n\n***\n\n",
    "\n\n---\n\n",
    "\n\n___\n\n",
    "\n\n",
    "\n",
    " ",
    "",
)


def _validate_sizes(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise ValueError(f"'chunk_size' must be positive, got {chunk_size}.")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError(
            f"'chunk_overlap' must be in [0, chunk_size), got {chunk_overlap} "
            f"for chunk_size={chunk_size}."
        )


def _split_on(text: str, start: int, end: int, separator: str) -> List[Span]:
    """Split ``text[start:end]`` on ``separator``, keeping it at the start of each following piece."""
    spans: List[Span] = []
    piece_start = start
    pos = text.find(separator, start, end)
    while pos != -1:
        if pos > piece_start:
            spans.append((piece_start, pos))
        piece_start = pos
        pos = text.find(separator, pos + len(separator), end)
    if end > piece_start:
        spans.append((piece_start, end))
    return spans


def _split_units(
        text: str,
        start: int,
        end: int,
        separators: Sequence[str],
        chunk_size: int,
    ) -> List[Span]:
    """Recursively cut ``text[start:end]`` into contiguous units no longer than ``chunk_size``."""
    for i, separator in enumerate(separators):
        if separator == "":
            return [(s, min(s + chunk_size, end)) for s in range(start, end, chunk_size)]
        if text.find(separator, start, end) == -1:
            continue

        units: List[Span] = []
        for piece_start, piece_end in _split_on(text, start, end, separator):
            if piece_end - piece_start <= chunk_size:
                units.append((piece_start, piece_end))
            else:
                units.extend(
                    _split_units(text, piece_start, piece_end, separators[i + 1:], chunk_size)
                )
        return units

    return [(start, end)]


def _overlap_start(text: str, prev_start: int, prev_end: int, chunk_overlap: int) -> int:
    """Return where the next chunk starts so it repeats the tail of the previous one."""
    if chunk_overlap == 0 or prev_end - prev_start <= chunk_overlap:
        return prev_end
    start = prev_end - chunk_overlap
    for pos in range(start, prev_end):
        if text[pos].isspace():
            return pos + 1 if pos + 1 < prev_end else start
    return start


def _merge_units(text: str, units: List[Span], chunk_size: int, chunk_overlap: int) -> List[Span]:
    chunks: List[Span] = []
    current_start, current_end = units[0]

    for unit_start, unit_end in units[1:]:
        if unit_end - current_start <= chunk_size:
            current_end = unit_end
            continue

        chunks.append((current_start, current_end))
        next_start = _overlap_start(text, current_start, current_end, chunk_overlap)
        current_start = max(next_start, unit_end - chunk_size)
        current_end = unit_end

    chunks.append((current_start, current_end))
    return chunks


def split_text(
        text: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> List[SplitChunk]:
    """Split text into overlapping, offset-tracked chunks.

    Parameters
    ----------
    text : str
        Text to split.
    chunk_size : int, optional
        Maximum chunk length in characters. Defaults to ``1000``.
    chunk_overlap : int, optional
        Number of trailing characters of a chunk repeated at the start of the
        next one. Defaults to ``200``; must be smaller than ``chunk_size``.

    Returns
    -------
    list[SplitChunk]
        Chunks indexed ``0, 1, 2, ...`` whose ``range`` is the half-open
        ``[start, end)`` offset of ``text`` they hold. Empty text yields no
        chunks; text no longer than ``chunk_size`` yields exactly one.

    Raises
    ------
    ValueError
        If ``chunk_size`` is not positive or ``chunk_overlap`` is outside
        ``[0, chunk_size)``.
    """
    _validate_sizes(chunk_size, chunk_overlap)
    if not text:
        return []
    if len(text) <= chunk_size:
        return [SplitChunk(text=text, index=0, range=(0, len(text)))]

    units = _split_units(text, 0, len(text), SEPARATORS, chunk_size)
    spans = _merge_units(text, units, chunk_size, chunk_overlap)
    return [
        SplitChunk(text=text[start:end], index=i, range=(start, end))
        for i, (start, end) in enumerate(spans)
    ]


class TextSplitter:
    """Chunker callable splitting Markdown or plain text with :func:`split_text`.

    Parameters
    ----------
    chunk_size : int, optional
        Maximum chunk length in characters. Defaults to ``1000``.
    chunk_overlap : int, optional
        Characters of overlap between consecutive chunks. Defaults to ``200``.
    """

    def __init__(
            self,
            chunk_size: int = DEFAULT_CHUNK_SIZE,
            chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        ):
        _validate_sizes(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def __call__(
            self,
            content: str,
            *,
            id: Optional[str] = None,
            metadata: Optional[Dict[str, Any]] = None,
        ) -> List[Chunk]:
        return [
            Chunk(text=piece.text, char_range=piece.range)
            for piece in split_text(content, self.chunk_size, self.chunk_overlap)
        ]


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_CHUNK_OVERLAP",
    "SEPARATORS",
    "split_text",
    "TextSplitter",
]
