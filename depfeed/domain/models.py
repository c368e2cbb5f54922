"""
Pydantic models for DependencyControl update feeds.

This module defines all data models used throughout the application, including:
- The feed document itself (feed, macro/module records, channels, files)
- Repository configuration and settings
- Validation, checksum and dependency reports

Feed models use the camelCase keys of the JSON document as aliases and keep
unknown keys, so a parsed feed never loses information. The raw bytes of a
feed remain the source of truth; these models are a typed view on top.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from depfeed.domain.errors import FeedParseError


# ---------------------------------------------------------------------------
# Feed Document Models
# ---------------------------------------------------------------------------


class FeedModel(BaseModel):
    """Common configuration for every feed model."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class FileEntry(FeedModel):
    """
    A single downloadable file of a channel.

    `name` is either a full file name or a suffix (".moon", ".lua") that the
    updater appends to the script namespace.
    """

    name: Optional[str] = Field(default=None, description="File name or namespace suffix.")
    url: Optional[str] = Field(default=None, description="Download URL template.")
    sha1: Optional[str] = Field(default=None, description="SHA-1 of the published artifact.")
    platform: Optional[str] = Field(
        default=None,
        description="Restrict this file to one platform (e.g. 'Windows-x64').",
    )
    delete: bool = Field(
        default=False,
        description="If True, the updater removes this file instead of downloading it.",
    )


class RequiredModule(FeedModel):
    """A module a channel depends on."""

    module_name: Optional[str] = Field(default=None, alias="moduleName")
    name: Optional[str] = None
    url: Optional[str] = None
    version: Optional[str] = None
    feed: Optional[str] = Field(
        default=None,
        description="URL (or @{feed:...} template) of the feed that publishes the module.",
    )
    optional: bool = False


class Channel(FeedModel):
    """Release track metadata (e.g. the 'release' channel)."""

    version: Optional[str] = None
    released: Optional[str] = Field(default=None, description="Release date, YYYY-MM-DD.")
    default: bool = False
    platforms: Optional[List[str]] = None
    files: List[FileEntry] = Field(default_factory=list)
    required_modules: List[RequiredModule] = Field(default_factory=list, alias="requiredModules")


class ScriptRecord(FeedModel):
    """A macro or module published by the feed."""

    file_base_url: Optional[str] = Field(default=None, alias="fileBaseUrl")
    url: Optional[str] = None
    author: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    channels: Dict[str, Channel] = Field(default_factory=dict)
    changelog: Dict[str, Any] = Field(
        default_factory=dict,
        description="Version -> list of change descriptions.",
    )

    def default_channel(self) -> Optional[Tuple[str, Channel]]:
        """
        Return the channel flagged as default, or the only channel if there is
        exactly one and none is flagged.
        """
        for channel_name, channel in self.channels.items():
            if channel.default:
                return channel_name, channel
        if len(self.channels) == 1:
            return next(iter(self.channels.items()))
        return None


class Feed(FeedModel):
    """Top-level DependencyControl feed document."""

    format_version: Optional[str] = Field(default=None, alias="dependencyControlFeedFormatVersion")
    name: Optional[str] = None
    description: Optional[str] = None
    maintainer: Optional[str] = None
    known_feeds: Dict[str, str] = Field(default_factory=dict, alias="knownFeeds")
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    url: Optional[str] = None
    file_base_url: Optional[str] = Field(default=None, alias="fileBaseUrl")
    macros: Dict[str, ScriptRecord] = Field(default_factory=dict)
    modules: Dict[str, ScriptRecord] = Field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Union[bytes, str]) -> "Feed":
        return cls.from_document(load_document(raw))

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Feed":
        try:
            return cls.model_validate(document)
        except ValidationError as e:
            first = e.errors()[0]
            location = "/" + "/".join(str(part) for part in first["loc"])
            raise FeedParseError(
                f"Feed does not match the schema at {location}: {first['msg']}"
            ) from e

    def iter_records(self) -> Iterator[Tuple[str, str, ScriptRecord]]:
        """Yield (section, namespace, record) for all macros, then all modules."""
        for namespace, record in self.macros.items():
            yield "macros", namespace, record
        for namespace, record in self.modules.items():
            yield "modules", namespace, record

    def find_record(self, namespace: str) -> Optional[Tuple[str, ScriptRecord]]:
        if namespace in self.macros:
            return "macros", self.macros[namespace]
        if namespace in self.modules:
            return "modules", self.modules[namespace]
        return None


def _reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise FeedParseError(f"Duplicate key {key!r} in JSON object")
        result[key] = value
    return result


def load_document(raw: Union[bytes, str]) -> Dict[str, Any]:
    """
    Parse raw feed text into a plain dictionary.

    Object key order is preserved. Duplicate keys, non-object roots and
    undecodable bytes raise FeedParseError.
    """
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FeedParseError(f"Feed is not valid UTF-8: {e}") from e
    else:
        text = raw

    try:
        document = json.loads(text, object_pairs_hook=_reject_duplicate_keys)
    except json.JSONDecodeError as e:
        raise FeedParseError(f"Malformed JSON at line {e.lineno}, column {e.colno}: {e.msg}") from e

    if not isinstance(document, dict):
        raise FeedParseError(f"Feed root must be a JSON object, got {type(document).__name__}")
    return document


# ---------------------------------------------------------------------------
# Repository Configuration Models
# ---------------------------------------------------------------------------


class RepositoryConfig(BaseModel):
    """
    Top-level configuration for the feed repository.

    Persisted at: <DATA_DIR>/repository.json
    """

    display_name: str = Field(
        default="DependencyControl feed repository",
        description="Human-friendly name displayed to users.",
    )
    refresh_interval_seconds: int = Field(
        default=3600,
        ge=60,
        description="How often (in seconds) the in-memory index is rebuilt from disk. Minimum: 60 seconds.",
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Timestamp when this repository configuration was first created.",
    )

    # Network settings used for imports, checksum and dependency checks
    fetch_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single HTTP request.",
    )
    fetch_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per download before giving up.",
    )
    max_concurrent_downloads: int = Field(
        default=4,
        ge=1,
        description="Upper bound on parallel artifact downloads during checksum verification.",
    )

    # Validation settings
    supported_format_version: str = Field(
        default="0.3.0",
        description="Newest dependencyControlFeedFormatVersion understood without warnings.",
    )
    max_template_depth: int = Field(
        default=8,
        ge=1,
        description="Maximum nesting of @{...} substitutions before a template is reported as cyclic.",
    )
    host_modules: List[str] = Field(
        default_factory=lambda: [
            "aegisub.re",
            "aegisub.unicode",
            "aegisub.util",
            "aegisub.clipboard",
            "karaskel",
            "lfs",
            "ffi",
            "bit",
        ],
        description="Modules shipped with the host application; required modules in this list need no feed.",
    )


# ---------------------------------------------------------------------------
# Report Models
# ---------------------------------------------------------------------------


Severity = Literal["error", "warning"]


class ValidationIssue(BaseModel):
    severity: Severity
    code: str
    path: str = Field(default="/", description="JSON-pointer-like location of the problem.")
    message: str


class ValidationReport(BaseModel):
    """Result of validating a feed document."""

    feed_name: Optional[str] = None
    issues: List[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def valid(self) -> bool:
        return not self.errors

    def add(self, severity: Severity, code: str, path: str, message: str) -> None:
        self.issues.append(ValidationIssue(severity=severity, code=code, path=path, message=message))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "feed_name": self.feed_name,
            "valid": self.valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "issues": [i.model_dump() for i in self.issues],
        }


class ChecksumResult(BaseModel):
    """Outcome of downloading one advertised file and hashing it."""

    namespace: str
    channel: str
    file_name: Optional[str] = None
    url: str
    expected_sha1: Optional[str] = None
    actual_sha1: Optional[str] = None
    status: Literal["ok", "mismatch", "error"]
    detail: Optional[str] = None


class DependencyResult(BaseModel):
    """Outcome of resolving one required module."""

    namespace: str
    channel: str
    module_name: str
    required_version: Optional[str] = None
    available_version: Optional[str] = None
    feed_url: Optional[str] = None
    status: Literal["ok", "local", "host", "missing", "outdated", "unreachable", "invalid"]
    detail: Optional[str] = None
