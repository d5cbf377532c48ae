"""Exceptions raised by ebsmon."""


class EbsmonError(Exception):
    """Base exception for ebsmon errors."""


class PatternStoreError(EbsmonError):
    """The pattern file exists but could not be read or parsed."""


class UnknownPatternError(EbsmonError, KeyError):
    """A run was recorded for a pattern that is not tracked."""


class SearchError(EbsmonError):
    """A ripgrep invocation failed."""


class CatalogError(EbsmonError):
    """The catalog query failed or timed out."""
