"""lodestar.common.exceptions

Exception hierarchy shared across the Lodestar retrieval stack.

Classes
-------
LodestarError
    Base exception for all errors raised by this package.
ConfigurationError
    Raised when a component is constructed from invalid or incomplete
    configuration (e.g., a composed driver with no members).
EmbeddingCountMismatchError
    Raised when an embedding call returns a different number of vectors than
    texts submitted.
SyntaxFacilityUnavailableError
    Raised when the syntax-tree facility required by the code chunker cannot
    be used.
FilterError
    Raised when a search filter expression is malformed.
"""


class LodestarError(Exception):
    """Base exception for the Lodestar package."""

    pass


class ConfigurationError(LodestarError):
    """Raised when configuration is invalid or missing.

    Configuration errors are detected at construction/resolution time and are
    never retried.
    """

    pass


class EmbeddingCountMismatchError(LodestarError):
    """Raised when an embedder returns the wrong number of vectors."""

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Embedding provider returned {received} vectors for {expected} texts."
        )
        self.expected = expected
        self.received = received


class SyntaxFacilityUnavailableError(LodestarError):
    """Raised when the code chunker's syntax-tree facility cannot be used."""

    pass


class FilterError(LodestarError, ValueError):
    """Raised when a search filter expression is malformed."""

    pass


__all__ = [
    "LodestarError",
    "ConfigurationError",
    "EmbeddingCountMismatchError",
    "SyntaxFacilityUnavailableError",
    "FilterError",
]
