"""Utilities for turning reply text into speakable text.

Replies are requested without formatting, but models still emit the odd
markdown marker. The synthesis engine must never read out:
- markdown emphasis / headings / bullets
- code fences or JSON blobs
- raw URLs of markdown links
"""

from __future__ import annotations

import json
import re

_CODE_FENCE_RE = re.compile(r"```.*?(```|$)", re.DOTALL)
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_EMPHASIS_RE = re.compile(r"(\*{1,3}|_{2,3}|~~|`)")
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+", re.MULTILINE)
_WS_RE = re.compile(r"\s+")


def _looks_like_json(text: str) -> bool:
    t = (text or "").strip()
    if not (t.startswith("{") or t.startswith("[")):
        return False
    try:
        json.loads(t)
    except ValueError:
        # Starts like JSON but invalid: still not something to read aloud.
        return True
    return True


def to_speakable(text: str) -> str:
    """
    Clean reply text for speech synthesis.

    Args:
        text: Text as produced by the model.

    Returns:
        Plain text, or an empty string when nothing should be spoken.
    """
    t = (text or "").strip()
    if not t or _looks_like_json(t):
        return ""

    t = _CODE_FENCE_RE.sub(" ", t)
    t = _LINK_RE.sub(r"\1", t)
    t = _HEADING_RE.sub("", t)
    t = _BULLET_RE.sub("", t)
    t = _EMPHASIS_RE.sub("", t)
    return _WS_RE.sub(" ", t).strip()
