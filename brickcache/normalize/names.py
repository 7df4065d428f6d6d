from __future__ import annotations

import re

_HYPHEN_RE = re.compile(r"\s*-\s*")
_NOISE_RE = re.compile(r"[^a-z0-9\-\s]")
_SPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Canonical comparable form of a catalog name.

    Trim, lowercase, collapse ``" - "`` variants into ``-``, drop anything
    outside ``[a-z0-9-\\s]`` and squeeze whitespace. Idempotent.
    """
    if not text:
        return ""
    s = text.strip().lower()
    s = _HYPHEN_RE.sub("-", s)
    s = _NOISE_RE.sub("", s)
    s = _SPACE_RE.sub(" ", s)
    # stripping noise can expose new edges or hyphen spacing
    s = _HYPHEN_RE.sub("-", s.strip())
    return _SPACE_RE.sub(" ", s)
