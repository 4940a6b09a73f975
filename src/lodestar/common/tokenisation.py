"""lodestar.common.tokenisation

Token counting utilities.

This module provides a small abstraction used to size embedding batches and
code chunks by *token count* without coupling those components to any
particular model provider or tokenizer library.

Classes
-------
TokenCounter
    Minimal protocol defining the token-counting interface.
HeuristicTokenCounter
    Lightweight, dependency-free approximate token counter.
TiktokenTokenCounter
    Exact token counter backed by the ``tiktoken`` library.
HuggingFaceTokenCounter
    Token counter backed by a Hugging Face tokenizer instance.

Functions
---------
create_token_counter
    Build a token counter from a short configuration string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from lodestar.common.exceptions import ConfigurationError


class TokenCounter(Protocol):
    """A minimal interface for token-based sizing."""

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""


@dataclass(frozen=True)
class HeuristicTokenCounter:
    """Dependency-free, approximate token counter.

    Estimates token counts as ``ceil(len(text) / chars_per_token)``. While not
    exact, it is sufficient for batch sizing and avoids heavyweight tokenizer
    dependencies.

    Attributes
    ----------
    chars_per_token : int
        Approximate number of characters per token. Defaults to ``4``.
    """

    chars_per_token: int = 4

    def count(self, text: str) -> int:
        if not text:
            return 0
        cpt = max(1, int(self.chars_per_token))
        return -(-len(text) // cpt)


@dataclass(frozen=True)
class TiktokenTokenCounter:
    """Token counter backed by the ``tiktoken`` library.

    Attributes
    ----------
    encoding_name : str
        Name of the ``tiktoken`` encoding.
    _enc : Any
        Internal ``tiktoken`` encoding object.
    """

    encoding_name: str
    _enc: Any

    @classmethod
    def from_encoding_name(cls, encoding_name: str) -> "TiktokenTokenCounter":
        """Construct a token counter from an encoding name.

        Parameters
        ----------
        encoding_name : str
            Name of the ``tiktoken`` encoding to load (e.g., ``"cl100k_base"``).

        Returns
        -------
        TiktokenTokenCounter
            A token counter initialised with the requested encoding.
        """
        import tiktoken # type: ignore

        enc = tiktoken.get_encoding(encoding_name)
        return cls(encoding_name=encoding_name, _enc=enc)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._enc.encode(text))


@dataclass(frozen=True)
class HuggingFaceTokenCounter:
    """Token counter backed by a Hugging Face tokenizer.

    The tokenizer is constructed externally (e.g., with
    ``transformers.AutoTokenizer.from_pretrained``); ``transformers`` is not
    imported by this module.

    Attributes
    ----------
    tokenizer : Any
        Tokenizer instance exposing ``encode(text)``.
    """

    tokenizer: Any

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self.tokenizer.encode(text))


def create_token_counter(name: Optional[str] = None) -> TokenCounter:
    """Build a token counter from a configuration string.

    Parameters
    ----------
    name : str or None, optional
        ``None`` or ``"heuristic"`` for :class:`HeuristicTokenCounter`,
        ``"tiktoken:<encoding>"`` (e.g. ``"tiktoken:cl100k_base"``) or
        ``"huggingface:<model id>"``. The tokenizer libraries are imported
        on demand.

    Raises
    ------
    ConfigurationError
        If the counter kind is unknown or its argument is missing.
    """
    if not name or name.strip().lower() == "heuristic":
        return HeuristicTokenCounter()

    kind, _, arg = name.partition(":")
    kind = kind.strip().lower()
    arg = arg.strip()
    if kind not in ("tiktoken", "huggingface", "hf"):
        raise ConfigurationError(
            f"Unknown token counter {name!r}. Expected 'heuristic', 'tiktoken:<encoding>' "
            f"or 'huggingface:<model id>'."
        )
    if not arg:
        raise ConfigurationError(f"Token counter {kind!r} requires an argument, e.g. '{kind}:<name>'.")

    if kind == "tiktoken":
        return TiktokenTokenCounter.from_encoding_name(arg)

    from transformers import AutoTokenizer

    return HuggingFaceTokenCounter(AutoTokenizer.from_pretrained(arg))


__all__ = [
    "TokenCounter",
    "HeuristicTokenCounter",
    "TiktokenTokenCounter",
    "HuggingFaceTokenCounter",
    "create_token_counter",
]
