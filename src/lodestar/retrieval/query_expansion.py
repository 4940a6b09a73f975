"""lodestar.retrieval.query_expansion

Code-identifier aware query expansion for lexical search.

Identifiers such as ``getUserName``, ``get_user_name`` or ``React.useState``
are expanded into their parts followed by the original token, so a keyword
index that tokenises on word boundaries can match either form. Natural
language passes through unchanged.
"""

from __future__ import annotations

import re
from typing import List

_LOWER_UPPER = re.compile(r"([a-z])([A-Z])")
_ACRONYM_WORD = re.compile(r"([A-Z]+)([A-Z][a-z])")


def is_code_identifier(token: str) -> bool:
    """Return whether ``token`` looks like a compound code identifier."""
    return (
        re.search(r"[a-z][A-Z]", token) is not None
        or re.search(r"[A-Z][A-Z][a-z]", token) is not None
        or "_" in token
        or "." in token
    )


def split_identifier(token: str) -> List[str]:
    """Split a compound identifier into its parts.

    Examples
    --------
    >>> split_identifier("getUserName")
    ['get', 'User', 'Name']
    >>> split_identifier("MAX_RETRY_COUNT")
    ['MAX', 'RETRY', 'COUNT']
    >>> split_identifier("React.useState")
    ['React', 'use', 'State']
    """
    if "." in token:
        return [part for piece in token.split(".") for part in split_identifier(piece)]
    if "_" in token:
        return [part for part in token.split("_") if part]

    spaced = _ACRONYM_WORD.sub(r"\1 \2", _LOWER_UPPER.sub(r"\1 \2", token))
    parts = spaced.split()
    return parts if len(parts) > 1 else [token]


def tokenize_code_query(query: str) -> str:
    """Expand code identifiers in ``query`` into ``parts + [token]``.

    Parameters
    ----------
    query : str
        Raw search query.

    Returns
    -------
    str
        Whitespace-joined expanded tokens, e.g. ``"get User Name getUserName"``
        for ``"getUserName"``. A query with nothing to expand is returned
        unchanged, whitespace included.
    """
    expanded: List[str] = []
    changed = False
    for token in query.split():
        if is_code_identifier(token):
            parts = split_identifier(token)
            if len(parts) > 1:
                expanded.extend(parts)
                changed = True
        expanded.append(token)
    return " ".join(expanded) if changed else query


__all__ = ["is_code_identifier", "split_identifier", "tokenize_code_query"]
