"""
Slug and URL building for wiki reference pages.
"""

import re

DEFAULT_WIKI_BASE = "http://dnd2024.wikidot.com"

# Page prefixes the wiki uses for each reference kind
WIKI_KINDS = ("spell", "magic-item", "feat")

_APOSTROPHES = re.compile(r"['’]")
_NON_SLUG = re.compile(r"[^\w\s-]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")


def slugify(name: str) -> str:
    """Turn a reference name into its wiki slug.

    >>> slugify("Pass Without Trace")
    'pass-without-trace'
    """
    slug = name.lower().strip()
    slug = _APOSTROPHES.sub("", slug)
    slug = _NON_SLUG.sub("", slug)
    slug = _WHITESPACE.sub("-", slug)
    return _HYPHENS.sub("-", slug)


def url_for(kind: str, name: str, base: str = DEFAULT_WIKI_BASE) -> str:
    """Canonical wiki URL for a reference entity.

    Args:
        kind: One of ``spell``, ``magic-item`` or ``feat``.
        name: Display name of the entity.
        base: Wiki base URL, without trailing slash.

    Raises:
        ValueError: If ``kind`` is not a known page prefix.
    """
    if kind not in WIKI_KINDS:
        raise ValueError(f"Unknown wiki page kind: {kind!r}")
    return f"{base.rstrip('/')}/{kind}:{slugify(name)}"
