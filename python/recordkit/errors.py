"""Exception types raised by recordkit.

Driver errors raised while executing SQL are never wrapped; they propagate
to the caller unchanged.
"""

from __future__ import annotations


class RecordkitError(Exception):
    """Base class for all recordkit errors."""


class ConfigurationError(RecordkitError, ValueError):
    """A model, relation, dialect or builder is used in a way that cannot work."""


class UnsupportedOperationError(ConfigurationError):
    """The active dialect cannot render the requested statement."""


class AmbiguousColumnAliasError(ConfigurationError):
    """A join would select a table or column alias that is already in use."""


class MalformedQueryError(RecordkitError, ValueError):
    """WHERE input that would produce invalid SQL."""


class RecordNotFoundError(RecordkitError, LookupError):
    """A lookup by primary key matched no row."""
