from __future__ import annotations

import re

# Leading slash, one path segment of ASCII word characters, then "/" or end.
# This matches the first segment of *any* path (e.g. "/i/flow/login" -> "@i");
# spurious identities stay harmless because nothing is shown without a record.
_HANDLE_PATH_RE = re.compile(r"^/([A-Za-z0-9_]+)(?:/|\Z)")


def extract_handle(href: str | None) -> str | None:
    """
    Map an anchor's href path to an identity handle.

    Returns the handle in its original case (for display), or None when the
    path does not encode an identity. Callers skip such locations silently.
    """
    if not href:
        return None
    m = _HANDLE_PATH_RE.match(href)
    if not m:
        return None
    return f"@{m.group(1)}"


def normalize_handle(handle: str) -> str:
    return handle.strip().lower()


def coerce_handle(text: str) -> str:
    """Turn user-typed input ("alice", " @Alice ") into a handle ("@Alice")."""
    text = text.strip()
    if not text.startswith("@"):
        text = f"@{text}"
    return text
