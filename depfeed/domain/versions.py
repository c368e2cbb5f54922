"""
Version strings as used by DependencyControl.

Versions are `MAJOR[.MINOR[.PATCH]]` with decimal parts. DependencyControl
packs each part into 8 bits, so parts above 255 are rejected.
"""
from __future__ import annotations

import re
from typing import Iterable, NamedTuple

from depfeed.domain.errors import VersionError

MAX_PART = 255

_VERSION_RE = re.compile(r"^([0-9]+)(?:\.([0-9]+))?(?:\.([0-9]+))?$")


class Version(NamedTuple):
    major: int
    minor: int = 0
    patch: int = 0

    def __str__(self) -> str:
        return format_version(self)


def parse_version(text: str) -> Version:
    if not isinstance(text, str):
        raise VersionError(f"Version must be a string, got {type(text).__name__}")

    match = _VERSION_RE.match(text.strip())
    if not match or text != text.strip():
        raise VersionError(f"Invalid version {text!r}: expected MAJOR.MINOR.PATCH")

    parts = [int(p) if p is not None else 0 for p in match.groups()]
    for part in parts:
        if part > MAX_PART:
            raise VersionError(f"Invalid version {text!r}: part {part} exceeds {MAX_PART}")
    return Version(*parts)


def is_valid_version(text: str) -> bool:
    try:
        parse_version(text)
    except VersionError:
        return False
    return True


def format_version(version: Version) -> str:
    return f"{version.major}.{version.minor}.{version.patch}"


def version_key(text: str) -> tuple:
    """
    Sort key that never raises: valid versions sort by value, anything else
    sorts before them by its text.
    """
    try:
        return (1, parse_version(text), "")
    except VersionError:
        return (0, Version(0), str(text))


def is_strictly_increasing(versions: Iterable[Version]) -> bool:
    previous = None
    for version in versions:
        if previous is not None and version <= previous:
            return False
        previous = version
    return True


def satisfies(available: str, required: str) -> bool:
    """True if `available` is the same as or newer than `required`."""
    return parse_version(available) >= parse_version(required)
