import re
from typing import Any, Optional


def strip_nulls(value: Any) -> Any:
    """
    Recursively remove keys with value None from dictionaries.

    Lists are preserved, but their elements are also cleaned.
    """
    if isinstance(value, dict):
        return {k: strip_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [strip_nulls(v) for v in value]
    return value


def match_text(value: str, keyword: Optional[str], match_type: Optional[str] = None) -> bool:
    """
    Match a single value against a search keyword.

    Supported match types: Exact (case-sensitive), CaseInsensitive,
    StartsWith, Substring (default) and Wildcard (* and ?).
    """
    if keyword is None:
        return False
    match = (match_type or "Substring").strip() or "Substring"

    if match == "Exact":
        return value == keyword

    v = value.casefold()
    k = keyword.casefold()

    if match == "CaseInsensitive":
        return v == k
    if match == "StartsWith":
        return v.startswith(k)
    if match == "Wildcard":
        pattern = "^" + re.escape(keyword).replace(r"\*", ".*").replace(r"\?", ".") + "$"
        return re.search(pattern, value, flags=re.IGNORECASE) is not None

    return k in v
