"""lodestar.retrieval.auto_chunker

Content-type routing chunker.

:class:`AutoChunker` inspects a document's id (treated as a path) and sends
source code to the :class:`~lodestar.retrieval.code_chunker.CodeChunker` and
everything else to the :class:`~lodestar.retrieval.text_splitter.TextSplitter`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from lodestar.common.exceptions import SyntaxFacilityUnavailableError
from lodestar.common.schemas import Chunk
from lodestar.retrieval.code_chunker import LANGUAGE_BY_EXTENSION, CodeChunker, file_extension
from lodestar.retrieval.text_splitter import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, TextSplitter

logger = logging.getLogger(__name__)

# extensions a bundled syntax facility can parse
CODE_EXTENSIONS = frozenset(LANGUAGE_BY_EXTENSION)


def detect_content_type(path: Optional[str]) -> str:
    """Return ``"code"`` when ``path`` has a known source-code extension, else ``"text"``."""
    if path and file_extension(path) in CODE_EXTENSIONS:
        return "code"
    return "text"


class AutoChunker:
    """Chunker routing code to the code chunker and prose to the text splitter.

    The code chunker is constructed on first use. If construction fails the
    instance logs a warning once and sends every later code document to the
    text splitter; :attr:`code_chunking_available` reports the outcome
    (``None`` until the first code document, then ``True`` or ``False``).

    Parameters
    ----------
    chunk_size : int, optional
        Text splitter chunk size in characters.
    chunk_overlap : int, optional
        Text splitter overlap in characters.
    code_options : Mapping[str, Any] or None, optional
        Keyword arguments for the code chunker (``max_chunk_size``,
        ``max_tokens``, ``overlap_lines``, ``facility``).
    code_chunker_factory : Callable[..., CodeChunker] or None, optional
        Builds the code chunker from ``code_options``. Defaults to
        :class:`CodeChunker`.
    """

    def __init__(
            self,
            chunk_size: int = DEFAULT_CHUNK_SIZE,
            chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
            code_options: Optional[Mapping[str, Any]] = None,
            code_chunker_factory: Optional[Callable[..., CodeChunker]] = None,
        ):
        self.text_splitter = TextSplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        self.code_options = dict(code_options or {})
        self.code_chunker_factory = code_chunker_factory or CodeChunker
        self._code_chunker: Optional[CodeChunker] = None
        self._code_chunking_available: Optional[bool] = None

    @property
    def code_chunking_available(self) -> Optional[bool]:
        return self._code_chunking_available

    def _get_code_chunker(self) -> Optional[CodeChunker]:
        if self._code_chunking_available is None:
            try:
                self._code_chunker = self.code_chunker_factory(**self.code_options)
                self._code_chunking_available = True
            except (SyntaxFacilityUnavailableError, ImportError) as exc:
                logger.warning("Code chunking unavailable, falling back to text splitting: %s", exc)
                self._code_chunking_available = False
        return self._code_chunker

    def __call__(
            self,
            content: str,
            *,
            id: Optional[str] = None,
            metadata: Optional[Dict[str, Any]] = None,
        ) -> List[Chunk]:
        if detect_content_type(id) == "code":
            code_chunker = self._get_code_chunker()
            if code_chunker is not None:
                try:
                    return code_chunker(content, id=id, metadata=metadata)
                except (SyntaxFacilityUnavailableError, SyntaxError, ValueError) as exc:
                    logger.warning("Code chunking failed for %r, using text splitter: %s", id, exc)

        return self.text_splitter(content, id=id, metadata=metadata)


__all__ = ["CODE_EXTENSIONS", "detect_content_type", "AutoChunker"]
