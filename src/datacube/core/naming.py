"""
Naming and validation helpers shared by dimensions, measures and data sources.

Names are stable identifiers that end up in URLs and persisted state, so they
are restricted to ``[A-Za-z0-9_]``.
"""

import re
from collections.abc import Iterable

from datacube.core.errors import NamingError

_ILLEGAL_RUN = re.compile(r"(?:_*[^A-Za-z0-9_]+)+_*")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_TOKEN_SPLIT = re.compile(r"[^A-Za-z0-9]+")


def sanitize_name(raw: str) -> str:
    """
    Make a name URL safe.

    Every run of characters outside ``[A-Za-z0-9_]`` becomes one underscore.
    Runs separated or bordered only by underscores are absorbed together, so no
    doubled underscores are introduced. Existing underscores are kept as-is.

    Args:
        raw: Arbitrary column or data source name

    Returns:
        URL safe name (idempotent: sanitize_name(sanitize_name(x)) == sanitize_name(x))
    """
    return _ILLEGAL_RUN.sub("_", raw)


def is_url_safe(name: str) -> bool:
    return bool(name) and sanitize_name(name) == name


def assert_url_safe(name: str, context: str = "") -> None:
    """
    Raise NamingError if name is not URL safe.

    Args:
        name: Name to check
        context: Optional description of where the name came from (logged in the message tail)

    Raises:
        NamingError: If name contains characters outside [A-Za-z0-9_]
    """
    if not name:
        raise NamingError(f"missing name{' in ' + context if context else ''}")
    if sanitize_name(name) != name:
        raise NamingError(f"'{name}' is not a URL safe name. Try '{sanitize_name(name)}' instead?")


def assert_no_duplicates(
    dimension_names: Iterable[str],
    measure_names: Iterable[str],
    data_source_name: str,
) -> None:
    """
    Enforce the shared dimension/measure namespace.

    The cross-namespace check runs first over the whole set; within-namespace
    duplicates are checked afterwards, dimensions before measures. The first
    offending name in a left-to-right scan is reported.

    Raises:
        NamingError: On the first violation found
    """
    dimension_names = list(dimension_names)
    measure_names = list(measure_names)

    dimension_set = set(dimension_names)
    for name in measure_names:
        if name in dimension_set:
            raise NamingError(
                f"name '{name}' found in both dimensions and measures in data source: '{data_source_name}'"
            )

    for kind, names in (("dimension", dimension_names), ("measure", measure_names)):
        seen: set[str] = set()
        for name in names:
            if name in seen:
                raise NamingError(f"duplicate {kind} name '{name}' found in data source: '{data_source_name}'")
            seen.add(name)


def name_tokens(name: str) -> list[str]:
    """Split a name into lower-cased tokens on camelCase and separator boundaries."""
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", name)
    return [token.lower() for token in _TOKEN_SPLIT.split(spaced) if token]


def make_title(name: str) -> str:
    """
    Generate a display title from a name.

    Examples:
        >>> make_title("added_love_")
        'Added Love'
        >>> make_title("__time")
        'Time'
        >>> make_title("articleName")
        'Article Name'
    """
    spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", name)
    tokens = [token for token in _TOKEN_SPLIT.split(spaced) if token]
    return " ".join(token[0].upper() + token[1:] for token in tokens)


def disambiguate_name(base: str, taken: Iterable[str], max_suffix: int = 10) -> str | None:
    """
    Find a free variant of ``base``.

    Tries ``base`` itself, then ``base_2`` up to ``base_<max_suffix>``.

    Returns:
        First free candidate, or None when every candidate collides
    """
    taken = set(taken)
    if base not in taken:
        return base
    for suffix in range(2, max_suffix + 1):
        candidate = f"{base.rstrip('_')}_{suffix}"
        if candidate not in taken:
            return candidate
    return None
