"""
Shared utility functions for the campaign-consistency engine.

JSON file helpers used by the CLI (campaign documents in, reports out) and
the small text helpers shared by the scanner and the semantic checker.

All JSON writes use atomic temp-file-then-os.replace() so a crashed run
never leaves a half-written report behind.
"""

import json
import logging
import os
import re
import tempfile

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?|\n?```[ \t]*$")


# ---------------------------------------------------------------------------
# JSON I/O (atomic writes)
# ---------------------------------------------------------------------------

def safe_read_json(path, default=None):
    """Load a campaign document or proposal list from *path*.

    A missing, unreadable or malformed file is logged and *default* is
    returned instead; the CLI turns that into a usage error.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Could not read JSON from %s", path)
        return default


def safe_write_json(path, data, *, indent=2):
    """Write a report to *path* via a sibling temp file and ``os.replace``."""
    path = os.path.abspath(str(path))
    parent = os.path.dirname(path)
    os.makedirs(parent, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=indent, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def context_snippet(text: str, start: int, end: int, radius: int) -> str:
    """Return ``text[start - radius : end + radius]`` clamped to the text.

    The result is always a contiguous substring of *text*.
    """
    if radius < 0:
        raise ValueError("radius must be non-negative")
    lo = max(0, min(start, len(text)) - radius)
    hi = min(len(text), max(end, 0) + radius)
    if hi < lo:
        return ""
    return text[lo:hi]


def truncate(text: str, max_len: int, suffix: str = "...") -> str:
    """Cut *text* to *max_len* characters, appending *suffix* when cut."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + suffix


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```), if any."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = _CODE_FENCE_RE.sub("", stripped)
    return stripped.strip()
