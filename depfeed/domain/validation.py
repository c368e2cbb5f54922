"""
Static well-formedness checks for DependencyControl feeds.

Nothing here touches the network: the validator looks at the document, its
resolved templates and the version strings it advertises. Download-based
checks live in depfeed.services.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from depfeed.domain.errors import FeedParseError, VersionError
from depfeed.domain.models import (
    Channel,
    Feed,
    RepositoryConfig,
    ScriptRecord,
    ValidationReport,
    load_document,
)
from depfeed.domain.templates import contains_placeholder, find_unresolved, join_path, resolve_feed
from depfeed.domain.versions import is_strictly_increasing, parse_version

logger = logging.getLogger(__name__)

SHA1_RE = re.compile(r"^[0-9a-fA-F]{40}$")
RELEASED_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
NAMESPACE_RE = re.compile(r"^[^.\s]+(\.[^.\s]+)+$")


def is_absolute_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class FeedValidator:
    """
    Validates a feed document and collects every problem into a report.

    Errors make a feed unusable for the updater; warnings flag conventions
    that are not upheld (missing release dates, unordered changelogs, ...).
    """

    def __init__(self, config: Optional[RepositoryConfig] = None):
        self.config = config or RepositoryConfig()

    def validate(self, raw: Union[bytes, str, Dict[str, Any]]) -> ValidationReport:
        report = ValidationReport()

        try:
            document = raw if isinstance(raw, dict) else load_document(raw)
            feed = Feed.from_document(document)
        except FeedParseError as e:
            report.add("error", "parse", "/", str(e))
            return report

        report.feed_name = feed.name
        self._check_format_version(feed, report)
        self._check_known_feeds(feed, report)

        for problem in find_unresolved(document, max_depth=self.config.max_template_depth):
            if problem.reason == "cyclic":
                message = f"Placeholder @{{{problem.placeholder}}} expands cyclically"
            else:
                message = f"Placeholder @{{{problem.placeholder}}} is not defined in any enclosing scope"
            report.add("error", "placeholder", problem.path, message)

        resolved = resolve_feed(document, strict=False, max_depth=self.config.max_template_depth)

        for section, namespace, record in feed.iter_records():
            path = join_path(join_path("/", section), namespace)
            resolved_record = resolved[section][namespace]
            self._check_namespace(namespace, path, report)
            self._check_channels(record, path, report)
            self._check_changelog(record, path, report)

            for channel_name, channel in record.channels.items():
                channel_path = join_path(join_path(path, "channels"), channel_name)
                resolved_channel = resolved_record["channels"][channel_name]
                self._check_files(channel, resolved_channel, channel_path, report)
                self._check_required_modules(feed, channel, resolved_channel, channel_path, report)

        logger.debug(
            f"Validated feed {feed.name!r}: {len(report.errors)} errors, {len(report.warnings)} warnings"
        )
        return report

    # ------------------------------------------------------------------
    # Feed level
    # ------------------------------------------------------------------

    def _check_format_version(self, feed: Feed, report: ValidationReport) -> None:
        path = "/dependencyControlFeedFormatVersion"
        if not feed.format_version:
            report.add("error", "format-version", path, "Feed format version is missing")
            return
        try:
            version = parse_version(feed.format_version)
        except VersionError as e:
            report.add("error", "format-version", path, str(e))
            return
        if version > parse_version(self.config.supported_format_version):
            report.add(
                "warning",
                "format-version",
                path,
                f"Feed format {feed.format_version} is newer than the supported {self.config.supported_format_version}",
            )

    def _check_known_feeds(self, feed: Feed, report: ValidationReport) -> None:
        for name, url in feed.known_feeds.items():
            if not is_absolute_url(url):
                report.add(
                    "error",
                    "known-feed",
                    join_path("/knownFeeds", name),
                    f"Known feed {name!r} is not an absolute http(s) URL: {url!r}",
                )

    def _check_namespace(self, namespace: str, path: str, report: ValidationReport) -> None:
        if not NAMESPACE_RE.match(namespace):
            report.add(
                "warning",
                "namespace",
                path,
                f"Namespace {namespace!r} should be dotted (e.g. 'author.ScriptName') and contain no whitespace",
            )

    # ------------------------------------------------------------------
    # Record level
    # ------------------------------------------------------------------

    def _check_channels(self, record: ScriptRecord, path: str, report: ValidationReport) -> None:
        channels_path = join_path(path, "channels")
        if not record.channels:
            report.add("warning", "channels", channels_path, "Record publishes no channels")
            return

        defaults = [name for name, channel in record.channels.items() if channel.default]
        if len(defaults) > 1:
            report.add(
                "error",
                "default-channel",
                channels_path,
                f"More than one default channel: {', '.join(defaults)}",
            )
        elif not defaults:
            report.add("warning", "default-channel", channels_path, "No channel is marked as default")

        for name, channel in record.channels.items():
            channel_path = join_path(channels_path, name)
            if not channel.version:
                report.add("error", "channel-version", join_path(channel_path, "version"), "Channel version is missing")
            else:
                try:
                    parse_version(channel.version)
                except VersionError as e:
                    report.add("error", "channel-version", join_path(channel_path, "version"), str(e))

            released_path = join_path(channel_path, "released")
            if channel.released is None:
                report.add("warning", "released", released_path, "Release date is missing")
            elif not self._is_iso_date(channel.released):
                report.add(
                    "warning",
                    "released",
                    released_path,
                    f"Release date {channel.released!r} is not in YYYY-MM-DD format",
                )

    @staticmethod
    def _is_iso_date(value: str) -> bool:
        if not RELEASED_RE.match(value):
            return False
        try:
            datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            return False
        return True

    def _check_changelog(self, record: ScriptRecord, path: str, report: ValidationReport) -> None:
        changelog_path = join_path(path, "changelog")
        parsed = []
        for key, entries in record.changelog.items():
            entry_path = join_path(changelog_path, key)
            try:
                parsed.append((parse_version(key), key))
            except VersionError as e:
                report.add("error", "changelog-version", entry_path, str(e))

            if not isinstance(entries, list) or not all(isinstance(e, str) for e in entries):
                report.add("error", "changelog-entry", entry_path, "Changelog entries must be a list of strings")

        if not parsed:
            return

        ordered = sorted(parsed)
        if not is_strictly_increasing(version for version, _ in ordered):
            for (previous, previous_key), (current, current_key) in zip(ordered, ordered[1:]):
                if current != previous:
                    continue
                report.add(
                    "error",
                    "changelog-order",
                    changelog_path,
                    f"Changelog versions {previous_key!r} and {current_key!r} are the same version",
                )

        in_file_order = [version for version, _ in parsed]
        ascending = all(a <= b for a, b in zip(in_file_order, in_file_order[1:]))
        descending = all(a >= b for a, b in zip(in_file_order, in_file_order[1:]))
        if not ascending and not descending:
            report.add("warning", "changelog-order", changelog_path, "Changelog versions are not listed in order")

        default = record.default_channel()
        if default is None or not default[1].version:
            return
        try:
            released = parse_version(default[1].version)
        except VersionError:
            return
        newest_version, newest_key = ordered[-1]
        if newest_version > released:
            report.add(
                "warning",
                "changelog-ahead",
                join_path(changelog_path, newest_key),
                f"Changelog mentions {newest_key} but channel {default[0]!r} releases {default[1].version}",
            )

    # ------------------------------------------------------------------
    # Channel level
    # ------------------------------------------------------------------

    def _check_files(
        self,
        channel: Channel,
        resolved_channel: Dict[str, Any],
        path: str,
        report: ValidationReport,
    ) -> None:
        files_path = join_path(path, "files")
        resolved_files: List[Dict[str, Any]] = resolved_channel.get("files") or []
        checksums: Dict[str, str] = {}

        for i, entry in enumerate(channel.files):
            entry_path = join_path(files_path, i)
            resolved_url = resolved_files[i].get("url") if i < len(resolved_files) else None

            if not entry.name or not entry.name.strip():
                report.add("error", "file-name", join_path(entry_path, "name"), "File name is empty")

            if not entry.url:
                report.add("error", "file-url", join_path(entry_path, "url"), "File URL is missing")
            elif not contains_placeholder(resolved_url):
                if not is_absolute_url(resolved_url):
                    report.add(
                        "error",
                        "file-url",
                        join_path(entry_path, "url"),
                        f"File URL does not resolve to an absolute http(s) URL: {resolved_url!r}",
                    )
                elif entry.name and "@{fileName}" not in entry.url and entry.name not in resolved_url:
                    report.add(
                        "warning",
                        "file-url",
                        join_path(entry_path, "url"),
                        f"File URL does not reference the file name {entry.name!r}",
                    )

            if entry.delete:
                continue

            sha_path = join_path(entry_path, "sha1")
            if not entry.sha1:
                report.add("error", "checksum", sha_path, "File has no sha1 checksum")
            elif not SHA1_RE.match(entry.sha1):
                report.add("error", "checksum", sha_path, f"sha1 {entry.sha1!r} is not 40 hexadecimal digits")
            elif isinstance(resolved_url, str):
                digest = entry.sha1.lower()
                other_url = checksums.setdefault(digest, resolved_url)
                if other_url != resolved_url:
                    report.add(
                        "warning",
                        "duplicate-checksum",
                        sha_path,
                        f"Checksum is also advertised for {other_url}",
                    )

    def _check_required_modules(
        self,
        feed: Feed,
        channel: Channel,
        resolved_channel: Dict[str, Any],
        path: str,
        report: ValidationReport,
    ) -> None:
        modules_path = join_path(path, "requiredModules")
        resolved_entries: List[Dict[str, Any]] = resolved_channel.get("requiredModules") or []

        for i, entry in enumerate(channel.required_modules):
            entry_path = join_path(modules_path, i)
            resolvability = "warning" if entry.optional else "error"

            if not entry.module_name:
                report.add("error", "required-module", entry_path, "Required module has no moduleName")
                continue

            required = None
            if entry.version is not None:
                try:
                    required = parse_version(entry.version)
                except VersionError as e:
                    report.add("error", "required-module", join_path(entry_path, "version"), str(e))

            local = feed.modules.get(entry.module_name)
            if local is not None:
                default = local.default_channel()
                if required is None or default is None or not default[1].version:
                    continue
                try:
                    available = parse_version(default[1].version)
                except VersionError:
                    continue
                if available < required:
                    report.add(
                        resolvability,
                        "required-module",
                        entry_path,
                        f"{entry.module_name} {entry.version} is required but this feed publishes {default[1].version}",
                    )
                continue

            if entry.feed:
                resolved_feed_url = resolved_entries[i].get("feed") if i < len(resolved_entries) else None
                if not contains_placeholder(resolved_feed_url) and not is_absolute_url(resolved_feed_url):
                    report.add(
                        resolvability,
                        "required-module",
                        join_path(entry_path, "feed"),
                        f"Feed of {entry.module_name} is not an absolute http(s) URL: {resolved_feed_url!r}",
                    )
                continue

            if entry.module_name in self.config.host_modules:
                continue

            report.add(
                resolvability,
                "required-module",
                entry_path,
                f"{entry.module_name} is not published by this feed and no feed is given",
            )


def validate_feed(raw: Union[bytes, str, Dict[str, Any]], config: Optional[RepositoryConfig] = None) -> ValidationReport:
    return FeedValidator(config).validate(raw)
