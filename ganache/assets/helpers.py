import os
from datetime import datetime, timezone
from typing import Sequence


def normalize_tag(tag: str) -> str:
    """Trim, collapse internal whitespace runs and lowercase a single tag.

    Whitespace-only input yields an empty string; callers drop empties.
    """
    return " ".join(tag.split()).lower()


def normalize_tags(tags: Sequence[str] | None) -> list[str]:
    """
    Canonical tag set: normalized, without empties, deduplicated, sorted.
    """
    if not tags:
        return []
    return sorted({n for n in (normalize_tag(t) for t in tags) if n})


def tag_text(tags: Sequence[str] | None) -> str:
    """Space-joined canonical tag set, as stored in the full-text column."""
    return " ".join(normalize_tags(tags))


def escape_like_prefix(s: str, escape: str = "!") -> tuple[str, str]:
    """Escapes %, _ and the escape char itself in a LIKE prefix.
    Returns (escaped_prefix, escape_char). Caller should append '%' and pass escape=escape_char to .like().
    """
    s = s.replace(escape, escape + escape)  # escape the escape char first
    s = s.replace("%", escape + "%").replace("_", escape + "_")  # escape LIKE wildcards
    return s, escape


def get_utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in every datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def file_extension(filename: str | None, max_len: int = 16) -> str:
    """Lowercased extension of a client filename including the dot, or ''."""
    base = os.path.basename((filename or "").strip())
    ext = os.path.splitext(base)[1].lower()
    return ext if 1 < len(ext) <= max_len else ""
