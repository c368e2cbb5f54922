"""
Expansion of @{...} placeholders in feed documents.

Variables are collected on the way from the feed root down to each string:

    feed root        feedName, baseUrl, feed:<knownFeed>, fileBaseUrl
    macro/module     namespace, namespacePath, scriptName, fileBaseUrl
    channel          channel, version, fileBaseUrl
    file entry       fileName, platform, fileBaseUrl
    required module  platform

`fileBaseUrl` is rolling: a deeper declaration shadows the outer one and may
itself reference the outer value through @{fileBaseUrl}. Changelog text is
prose and is never expanded.
"""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from depfeed.domain.errors import FeedNotFoundError, TemplateError


PLACEHOLDER_RE = re.compile(r"@\{([^{}]*)\}")
FEED_PREFIX = "feed:"
DEFAULT_MAX_DEPTH = 8

SCRIPT_SECTIONS = ("macros", "modules")

# Keys handled explicitly by the walker at each level.
_ROOT_NESTED = {"macros", "modules"}
_RECORD_NESTED = {"channels", "changelog"}
_CHANNEL_NESTED = {"files", "requiredModules"}


@dataclass
class Unresolved:
    path: str
    placeholder: str
    reason: str = "undefined"


@dataclass
class TemplateScope:
    """One level of template variables, chained to its parent."""

    variables: Dict[str, str] = field(default_factory=dict)
    known_feeds: Dict[str, str] = field(default_factory=dict)
    parent: Optional["TemplateScope"] = None

    def child(self, **variables: Optional[str]) -> "TemplateScope":
        values = {k: v for k, v in variables.items() if isinstance(v, str)}
        file_base_url = values.get("fileBaseUrl")
        if file_base_url is not None:
            outer = self.lookup("fileBaseUrl")
            if outer is not None:
                values["fileBaseUrl"] = file_base_url.replace("@{fileBaseUrl}", outer)
        return TemplateScope(variables=values, known_feeds=self.known_feeds, parent=self)

    def lookup(self, name: str) -> Optional[str]:
        if name.startswith(FEED_PREFIX):
            value = self.known_feeds.get(name[len(FEED_PREFIX):])
            return value if isinstance(value, str) else None
        scope: Optional[TemplateScope] = self
        while scope is not None:
            if name in scope.variables:
                return scope.variables[name]
            scope = scope.parent
        return None


def join_path(path: str, key: Any) -> str:
    key = str(key).replace("~", "~0").replace("/", "~1")
    return f"{path.rstrip('/')}/{key}"


class TemplateResolver:
    """
    Resolves every placeholder of a feed document.

    With strict=True the first dangling or cyclic placeholder raises
    TemplateError. Otherwise placeholders that cannot be resolved are left
    in place and recorded in `unresolved`.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, strict: bool = True):
        self.max_depth = max_depth
        self.strict = strict
        self.unresolved: List[Unresolved] = []

    # ------------------------------------------------------------------
    # String expansion
    # ------------------------------------------------------------------

    def expand(self, text: str, scope: TemplateScope, path: str = "/", report: bool = True) -> str:
        result = text
        for _ in range(self.max_depth):
            changed = False

            def substitute(match: "re.Match[str]") -> str:
                nonlocal changed
                value = scope.lookup(match.group(1))
                if value is None:
                    return match.group(0)
                changed = True
                return value

            result = PLACEHOLDER_RE.sub(substitute, result)
            if not changed:
                break
        else:
            for name in PLACEHOLDER_RE.findall(result):
                if scope.lookup(name) is not None:
                    self._problem(report, path, name, "cyclic")
                    return result

        for name in PLACEHOLDER_RE.findall(result):
            self._problem(report, path, name, "undefined")
        return result

    def _problem(self, report: bool, path: str, name: str, reason: str) -> None:
        if not report:
            return
        if self.strict:
            if reason == "cyclic":
                message = f"Placeholder @{{{name}}} at {path} does not terminate within {self.max_depth} expansions"
            else:
                message = f"Placeholder @{{{name}}} at {path} is not defined in any enclosing scope"
            raise TemplateError(message, path=path, placeholder=name)
        self.unresolved.append(Unresolved(path=path, placeholder=name, reason=reason))

    def _expand_any(self, value: Any, scope: TemplateScope, path: str) -> Any:
        if isinstance(value, str):
            return self.expand(value, scope, path)
        if isinstance(value, dict):
            return {k: self._expand_any(v, scope, join_path(path, k)) for k, v in value.items()}
        if isinstance(value, list):
            return [self._expand_any(v, scope, join_path(path, i)) for i, v in enumerate(value)]
        return value

    def _expand_fields(self, node: Dict[str, Any], scope: TemplateScope, path: str, nested: set) -> Dict[str, Any]:
        """Expand all keys of a mapping except the nested ones and fileBaseUrl."""
        out: Dict[str, Any] = {}
        for key, value in node.items():
            if key in nested:
                out[key] = copy.deepcopy(value)
            elif key == "fileBaseUrl" and isinstance(value, str):
                # Source of a rolling template; dangling names are reported where it is consumed.
                out[key] = self.expand(value, scope, join_path(path, key), report=False)
            else:
                out[key] = self._expand_any(value, scope, join_path(path, key))
        return out

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    @staticmethod
    def root_scope(document: Dict[str, Any]) -> TemplateScope:
        known_feeds = document.get("knownFeeds")
        scope = TemplateScope(known_feeds=known_feeds if isinstance(known_feeds, dict) else {})
        return scope.child(
            feedName=document.get("name"),
            baseUrl=document.get("baseUrl"),
            fileBaseUrl=document.get("fileBaseUrl"),
        )

    @staticmethod
    def record_scope(parent: TemplateScope, namespace: str, record: Dict[str, Any]) -> TemplateScope:
        return parent.child(
            namespace=namespace,
            namespacePath=namespace.replace(".", "/"),
            scriptName=record.get("name"),
            fileBaseUrl=record.get("fileBaseUrl"),
        )

    @staticmethod
    def channel_scope(parent: TemplateScope, channel_name: str, channel: Dict[str, Any]) -> TemplateScope:
        return parent.child(
            channel=channel_name,
            version=channel.get("version"),
            fileBaseUrl=channel.get("fileBaseUrl"),
        )

    @staticmethod
    def file_scope(parent: TemplateScope, entry: Dict[str, Any]) -> TemplateScope:
        return parent.child(
            fileName=entry.get("name"),
            platform=entry.get("platform"),
            fileBaseUrl=entry.get("fileBaseUrl"),
        )

    @staticmethod
    def required_module_scope(parent: TemplateScope, entry: Dict[str, Any]) -> TemplateScope:
        return parent.child(platform=entry.get("platform"))

    # ------------------------------------------------------------------
    # Document walk
    # ------------------------------------------------------------------

    def resolve_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        root = self.root_scope(document)
        out = self._expand_fields(document, root, "/", _ROOT_NESTED)

        for section in SCRIPT_SECTIONS:
            records = document.get(section)
            if not isinstance(records, dict):
                continue
            section_path = join_path("/", section)
            out[section] = {
                namespace: self.resolve_record_node(root, namespace, record, join_path(section_path, namespace))
                for namespace, record in records.items()
            }
        return out

    def resolve_record_node(self, root: TemplateScope, namespace: str, record: Any, path: str) -> Any:
        if not isinstance(record, dict):
            return copy.deepcopy(record)

        scope = self.record_scope(root, namespace, record)
        out = self._expand_fields(record, scope, path, _RECORD_NESTED)

        channels = record.get("channels")
        if isinstance(channels, dict):
            channels_path = join_path(path, "channels")
            out["channels"] = {
                name: self._resolve_channel(scope, name, channel, join_path(channels_path, name))
                for name, channel in channels.items()
            }
        return out

    def _resolve_channel(self, parent: TemplateScope, channel_name: str, channel: Any, path: str) -> Any:
        if not isinstance(channel, dict):
            return copy.deepcopy(channel)

        scope = self.channel_scope(parent, channel_name, channel)
        out = self._expand_fields(channel, scope, path, _CHANNEL_NESTED)

        scope_builders: Dict[str, Callable[[TemplateScope, Dict[str, Any]], TemplateScope]] = {
            "files": self.file_scope,
            "requiredModules": self.required_module_scope,
        }
        for key, make_scope in scope_builders.items():
            entries = channel.get(key)
            if key not in channel:
                continue
            if not isinstance(entries, list):
                out[key] = copy.deepcopy(entries)
                continue
            list_path = join_path(path, key)
            resolved = []
            for i, entry in enumerate(entries):
                entry_path = join_path(list_path, i)
                if isinstance(entry, dict):
                    resolved.append(self._expand_fields(entry, make_scope(scope, entry), entry_path, set()))
                else:
                    resolved.append(self._expand_any(entry, scope, entry_path))
            out[key] = resolved
        return out


def resolve_feed(
    document: Dict[str, Any],
    strict: bool = True,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Dict[str, Any]:
    """Return a copy of `document` with all placeholders expanded."""
    return TemplateResolver(max_depth=max_depth, strict=strict).resolve_document(document)


def find_unresolved(document: Dict[str, Any], max_depth: int = DEFAULT_MAX_DEPTH) -> List[Unresolved]:
    """List every dangling or cyclic placeholder of `document` without raising."""
    resolver = TemplateResolver(max_depth=max_depth, strict=False)
    resolver.resolve_document(document)
    return resolver.unresolved


def resolve_record(
    document: Dict[str, Any],
    namespace: str,
    strict: bool = True,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Tuple[str, Dict[str, Any]]:
    """
    Resolve a single macro or module record.

    Returns (section, resolved_record). Raises FeedNotFoundError if neither
    `macros` nor `modules` contains `namespace`.
    """
    for section in SCRIPT_SECTIONS:
        records = document.get(section)
        if isinstance(records, dict) and namespace in records:
            resolver = TemplateResolver(max_depth=max_depth, strict=strict)
            root = resolver.root_scope(document)
            path = join_path(join_path("/", section), namespace)
            return section, resolver.resolve_record_node(root, namespace, records[namespace], path)
    raise FeedNotFoundError(f"No macro or module named {namespace!r}")


def contains_placeholder(text: Any) -> bool:
    return isinstance(text, str) and PLACEHOLDER_RE.search(text) is not None
