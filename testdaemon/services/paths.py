from __future__ import annotations

from typing import List, Sequence


def normalize_path(value: str) -> str:
    """Return ``value`` with ``/`` separators and no leading or trailing slashes."""
    return value.replace("\\", "/").strip("/")


def path_segments(value: str) -> List[str]:
    normalized = normalize_path(value)
    if not normalized:
        return []
    return normalized.split("/")


def segments_match(file_segments: Sequence[str], pattern_segments: Sequence[str]) -> bool:
    """Check whether ``pattern_segments`` occurs as a contiguous run of whole segments."""
    width = len(pattern_segments)
    if width == 0 or width > len(file_segments):
        return False
    for offset in range(len(file_segments) - width + 1):
        if all(file_segments[offset + index] == segment for index, segment in enumerate(pattern_segments)):
            return True
    return False


def path_matches(file_path: str, pattern: str) -> bool:
    """Segment-wise match of a path pattern against a file path.

    ``"abc/def"`` matches ``"x/abc/def/file.py"`` but neither ``"x/abc/defg/file.py"``
    nor ``"x/abcd/def/file.py"``: partial directory or file names never match.
    """
    return segments_match(path_segments(file_path), path_segments(pattern))
