"""Helpers for the slash-separated paths used by the storage interface."""

from __future__ import annotations


def normalize_path(path: str) -> str:
    """Return ``path`` without empty segments or leading/trailing slashes.

    The storage root is the empty string.
    """
    return "/".join(segment for segment in path.split("/") if segment and segment != ".")


def join_path(parent: str, name: str) -> str:
    parent = normalize_path(parent)
    name = normalize_path(name)
    if not parent:
        return name
    if not name:
        return parent
    return f"{parent}/{name}"


def split_path(path: str) -> tuple[str, str]:
    """Split a path into (parent path, final segment)."""
    path = normalize_path(path)
    parent, _, name = path.rpartition("/")
    return parent, name


def is_descendant(path: str, ancestor: str) -> bool:
    """True when ``path`` equals ``ancestor`` or lies beneath it."""
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + "/")
