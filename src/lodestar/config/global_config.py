"""lodestar.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw YAML configuration
dictionary, providing validated, cached access to the configuration sections
used to assemble the retrieval stack (chunking, retriever, reranker and
embedder).

Environment variables of the form ``${VAR}`` are expanded recursively in all
string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.
"""

import os
import yaml
from pathlib import Path
from functools import cached_property

from lodestar.common.exceptions import ConfigurationError

CHUNKING_TYPES = ("auto", "text", "code", "none")


def _expand_env(obj):
    """Recursively expand environment variables in a nested structure.

    This function walks nested dictionaries and lists and applies
    :func:`os.path.expandvars` to any string values, expanding patterns of the
    form ``${VAR}`` using the current process environment.

    Parameters
    ----------
    obj : Any
        Object to expand. Supported types are dictionaries, lists, and strings.
        Other types are returned unchanged.

    Returns
    -------
    Any
        A structure of the same shape as ``obj`` with environment variables
        expanded in all string values.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise TypeError(f"'{name}' must be a mapping, got {type(section).__name__}.")
    return section


def _positive_int(section: dict, key: str, default: int, path: str) -> int:
    value = section.get(key, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{path}.{key}' must be an integer, got {value!r}.") from None
    if value <= 0:
        raise ConfigurationError(f"'{path}.{key}' must be positive, got {value}.")
    return value


class GlobalConfig:
    """Loader and accessor for global project configuration.

    This class wraps a raw configuration dictionary (typically loaded from YAML)
    and exposes validated, cached accessors for the sections consumed by
    :mod:`lodestar.retrieval.retriever_factory`.

    Parameters
    ----------
    raw : dict
        Raw configuration data as loaded from a YAML file.
    config_path : Path or None, optional
        Absolute path of the loaded file, when known.
    """

    def __init__(
            self,
            raw: dict,
            config_path: Path | None = None,
        ):
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise TypeError(f"Configuration root must be a mapping, got {type(raw).__name__}.")
        self.raw = raw
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        GlobalConfig
            An instance initialised with the loaded and environment-expanded data.

        Notes
        -----
        All string values in the loaded YAML are processed with recursive
        environment-variable expansion (``${VAR}``) via :func:`os.path.expandvars`.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r") as f:
            data = yaml.safe_load(f)
        data = _expand_env(data)
        return cls(data, config_path=cfg_path)

    @classmethod
    def from_dict(cls, data: dict) -> "GlobalConfig":
        """Build a configuration from an in-memory mapping, expanding ``${VAR}``."""
        return cls(_expand_env(dict(data or {})))

    @cached_property
    def chunking(self) -> dict:
        """Return the chunking configuration section.

        Returns
        -------
        dict
            Normalised section with ``type`` (``auto``, ``text``, ``code`` or
            ``none``), ``chunk_size``, ``chunk_overlap`` and a ``code`` mapping.

        Raises
        ------
        TypeError
            If the section or its ``code`` entry is not a mapping.
        ConfigurationError
            If ``type`` is unknown or a size is not a positive integer.
        """
        section = _section(self.raw, "chunking")
        kind = str(section.get("type", "auto")).lower().strip()
        if kind not in CHUNKING_TYPES:
            raise ConfigurationError(
                f"Unknown chunking type {kind!r}. Supported types: {list(CHUNKING_TYPES)}."
            )

        code = section.get("code") or {}
        if not isinstance(code, dict):
            raise TypeError(f"'chunking.code' must be a mapping, got {type(code).__name__}.")

        overlap = section.get("chunk_overlap", 200)
        try:
            overlap = int(overlap)
        except (TypeError, ValueError):
            raise ConfigurationError(f"'chunking.chunk_overlap' must be an integer, got {overlap!r}.") from None

        return {
            "type": kind,
            "chunk_size": _positive_int(section, "chunk_size", 1000, "chunking"),
            "chunk_overlap": overlap,
            "code": dict(code),
        }

    @cached_property
    def retriever(self) -> dict:
        """Return the retriever configuration section.

        Returns
        -------
        dict
            Section with ``rrf_k`` (default ``60``) and ``over_fetch_factor``
            (default ``3``).
        """
        section = _section(self.raw, "retriever")
        rrf_k = section.get("rrf_k", 60)
        try:
            rrf_k = int(rrf_k)
        except (TypeError, ValueError):
            raise ConfigurationError(f"'retriever.rrf_k' must be an integer, got {rrf_k!r}.") from None
        if rrf_k < 0:
            raise ConfigurationError(f"'retriever.rrf_k' must be non-negative, got {rrf_k}.")
        return {
            **section,
            "rrf_k": rrf_k,
            "over_fetch_factor": _positive_int(section, "over_fetch_factor", 3, "retriever"),
        }

    @cached_property
    def reranker(self) -> dict:
        """Return the reranker configuration section, or an empty dict if not present."""
        return _section(self.raw, "reranker")

    @cached_property
    def embedder(self) -> dict:
        """Return the embedder configuration section.

        Returns
        -------
        dict
            The ``embedder`` section of the configuration.

        Raises
        ------
        KeyError
            If ``embedder`` is missing from the configuration.
        """
        if "embedder" not in self.raw:
            raise KeyError("Missing 'embedder' in configuration.")
        return _section(self.raw, "embedder")
