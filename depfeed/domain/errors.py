from __future__ import annotations


class FeedError(Exception):
    """Base error for everything that reads or serves update feeds."""


class FeedParseError(FeedError, ValueError):
    """Raised when a feed document is not well-formed or does not match the schema."""


class VersionError(FeedError, ValueError):
    """Raised when a version string is not a valid MAJOR.MINOR.PATCH version."""


class TemplateError(FeedError):
    """Raised when an @{...} placeholder cannot be resolved."""

    def __init__(self, message: str, path: str = "", placeholder: str = ""):
        super().__init__(message)
        self.path = path
        self.placeholder = placeholder


class FeedFetchError(FeedError):
    """Raised when a feed or file cannot be downloaded."""


class FeedNotFoundError(FeedError, LookupError):
    """Raised when a feed, macro or module is not known."""
