from typing import Any, Dict, List, Optional, Tuple
import logging

from depfeed.domain.errors import FeedNotFoundError
from depfeed.domain.feed_utils import match_text, strip_nulls
from depfeed.domain.models import Feed, RepositoryConfig, ValidationReport, load_document
from depfeed.domain.templates import resolve_feed, resolve_record
from depfeed.domain.validation import FeedValidator
from depfeed.domain.versions import parse_version, version_key

logger = logging.getLogger(__name__)


class FeedDocument:
    """
    A stored feed: the exact bytes it was published with plus a parsed view.

    The raw bytes are what gets served; the parsed and resolved forms are
    derived from them on demand.
    """

    def __init__(self, feed_id: str, raw: bytes, config: Optional[RepositoryConfig] = None):
        self.feed_id = feed_id
        self.raw = raw
        self.config = config or RepositoryConfig()
        self.document: Dict[str, Any] = load_document(raw)
        self.feed = Feed.from_document(self.document)
        self._resolved: Optional[Dict[str, Any]] = None

    @property
    def name(self) -> Optional[str]:
        return self.feed.name

    def resolved(self) -> Dict[str, Any]:
        """
        Fully expanded copy of the document. Placeholders that cannot be
        resolved are left in place; the validation report lists them.
        """
        if self._resolved is None:
            self._resolved = resolve_feed(
                self.document, strict=False, max_depth=self.config.max_template_depth
            )
        return self._resolved

    def validate(self) -> ValidationReport:
        return FeedValidator(self.config).validate(self.document)

    def summary(self) -> Dict[str, Any]:
        return strip_nulls({
            "feed_id": self.feed_id,
            "name": self.feed.name,
            "description": self.feed.description,
            "maintainer": self.feed.maintainer,
            "format_version": self.feed.format_version,
            "macro_count": len(self.feed.macros),
            "module_count": len(self.feed.modules),
        })

    def get_record(self, namespace: str, channel: Optional[str] = None) -> Dict[str, Any]:
        """
        Resolved macro or module record, optionally reduced to a single channel.
        """
        section, record = resolve_record(
            self.document, namespace, strict=False, max_depth=self.config.max_template_depth
        )
        result = dict(record)
        result["namespace"] = namespace
        result["type"] = "macro" if section == "macros" else "module"

        if channel is not None:
            channels = record.get("channels") or {}
            if channel not in channels:
                raise FeedNotFoundError(f"{namespace} has no channel named {channel!r}")
            result["channels"] = {channel: channels[channel]}
        return result

    def changelog(self, namespace: str, since: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Changelog of a record, newest first.

        With `since`, only versions strictly newer than it are returned, which
        is what an updater shows after upgrading from `since`.
        """
        found = self.feed.find_record(namespace)
        if found is None:
            raise FeedNotFoundError(f"No macro or module named {namespace!r}")
        _, record = found

        lower = parse_version(since) if since is not None else None
        entries: List[Dict[str, Any]] = []
        for version_str in sorted(record.changelog, key=version_key, reverse=True):
            if lower is not None:
                key = version_key(version_str)
                if key[0] == 0 or key[1] <= lower:
                    continue
            changes = record.changelog[version_str]
            entries.append({
                "version": version_str,
                "changes": changes if isinstance(changes, list) else [changes],
            })
        return entries

    def required_modules(self) -> List[Tuple[str, str, Dict[str, Any]]]:
        """(namespace, channel, resolved requiredModules entry) for every channel."""
        resolved = self.resolved()
        result = []
        for section, namespace, _ in self.feed.iter_records():
            record = resolved[section][namespace]
            for channel_name, channel in (record.get("channels") or {}).items():
                for entry in channel.get("requiredModules") or []:
                    result.append((namespace, channel_name, entry))
        return result


class FeedRepository:
    def __init__(self, db):
        self.db = db

    def get_feed(self, feed_id: str) -> Optional[FeedDocument]:
        return self.db.get_feed(feed_id)

    def get_all_feeds(self) -> List[FeedDocument]:
        return self.db.get_all_feeds()

    def search(self, query: str, match_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Find macros and modules across all stored feeds.

        Matches namespace, display name, author and description.
        """
        results: List[Dict[str, Any]] = []
        for doc in self.get_all_feeds():
            for section, namespace, record in doc.feed.iter_records():
                candidates = [
                    namespace,
                    record.name or "",
                    record.author or "",
                    record.description or "",
                ]
                if not any(match_text(value, query, match_type) for value in candidates):
                    continue

                default = record.default_channel()
                results.append(strip_nulls({
                    "feed_id": doc.feed_id,
                    "namespace": namespace,
                    "type": "macro" if section == "macros" else "module",
                    "name": record.name,
                    "author": record.author,
                    "version": default[1].version if default else None,
                }))

        results.sort(key=lambda r: (r["namespace"].casefold(), r["feed_id"]))
        return results

    def find_module(self, module_name: str) -> List[Tuple[FeedDocument, Optional[str]]]:
        """Stored feeds that publish `module_name`, with the default channel version."""
        found = []
        for doc in self.get_all_feeds():
            record = doc.feed.modules.get(module_name) or doc.feed.macros.get(module_name)
            if record is None:
                continue
            default = record.default_channel()
            found.append((doc, default[1].version if default else None))
        return found
