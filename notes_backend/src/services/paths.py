"""Destination path validation helpers."""

from __future__ import annotations

from typing import List, Optional, Tuple

INVALID_SEGMENT_CHARS = {"<", ">", ":", '"', "|", "?", "*", "\\"}
MAX_SEGMENT_LENGTH = 100
MAX_PATH_DEPTH = 16


def split_path(path: str) -> List[str]:
    """
    Split a destination path into trimmed title segments.

    Raises ValueError when the path is empty or contains an invalid segment.
    """
    if path is None or not path.strip():
        raise ValueError("Path must not be empty")
    segments = [segment.strip() for segment in path.split("/")]
    segments = [segment for segment in segments if segment]
    if not segments:
        raise ValueError("Path must contain at least one segment")
    if len(segments) > MAX_PATH_DEPTH:
        raise ValueError(f"Path is deeper than {MAX_PATH_DEPTH} segments")
    for segment in segments:
        if segment in {".", ".."}:
            raise ValueError("Path must not contain relative references")
        if len(segment) > MAX_SEGMENT_LENGTH:
            raise ValueError(f"Path segment too long: {segment[:20]}...")
        if any(char in INVALID_SEGMENT_CHARS for char in segment):
            raise ValueError(f"Invalid characters in path segment: {segment}")
    return segments


def normalize_path(path: str) -> str:
    """Return the canonical ``/A/B/C`` form of a destination path."""
    return "/" + "/".join(split_path(path))


def validate_destination_path(path: str) -> Tuple[bool, str]:
    """
    Validate a destination path.

    Returns (is_valid, message). Message is empty when valid.
    """
    try:
        split_path(path)
    except ValueError as exc:
        return False, str(exc)
    return True, ""


def parent_path(path: str) -> Optional[str]:
    """Parent folder path, or None for a root-level entry."""
    segments = split_path(path)
    if len(segments) <= 1:
        return None
    return "/" + "/".join(segments[:-1])


__all__ = [
    "split_path",
    "normalize_path",
    "validate_destination_path",
    "parent_path",
    "MAX_SEGMENT_LENGTH",
]
