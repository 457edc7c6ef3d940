"""Helpers for entry names and filesystem paths."""

from __future__ import annotations

import os
import re

from .errors import ErrorCode, ZipError

__all__ = [
    "MAX_ARCHIVE_FILENAME_SIZE",
    "basename",
    "normalize_name",
    "make_path",
    "to_archive_name",
]

MAX_ARCHIVE_FILENAME_SIZE = 512

_SLASHES = "/\\"
_WINDOWS = os.name == "nt"
_SPLIT = re.compile(r"([/\\])")


def _has_device(path: str) -> bool:
    return (
        _WINDOWS
        and len(path) >= 2
        and path[1] == ":"
        and path[0].isascii()
        and path[0].isalpha()
    )


def basename(name: str) -> str:
    """Return the last path component of name; a name of only slashes gives its last slash."""
    if _has_device(name):
        name = name[2:]
    head, _, tail = name.rpartition("/") if "/" in name else ("", "", name)
    last = max(name.rfind("/"), name.rfind("\\"))
    tail = name[last + 1:]
    if not tail and name and all(ch in _SLASHES for ch in name):
        return name[-1]
    return tail


def _all_dots(component: str) -> bool:
    return all(ch == "." for ch in component)


def normalize_name(name: str) -> str:
    """Drop leading slashes and empty or dot-only components from an entry name."""
    if not name:
        raise ZipError(ErrorCode.EINVENTNAME)
    pieces = _SPLIT.split(name.lstrip(_SLASHES))
    components = pieces[0::2]
    separators = pieces[1::2]
    out = [
        component + separator
        for component, separator in zip(components, separators)
        if not _all_dots(component)
    ]
    last = components[-1]
    if not _all_dots(last):
        out.append(last)
    return "".join(out)


def make_path(path: str) -> str:
    """Create every parent directory of path and return the path as used.

    Outside Windows, backslashes are taken as separators and turned into '/'.
    """
    path = path[:MAX_ARCHIVE_FILENAME_SIZE]
    has_device = _has_device(path)
    start = 2 if has_device else 0
    if not _WINDOWS:
        path = path.replace("\\", "/")
    for position, ch in enumerate(path):
        if position < start or ch not in _SLASHES:
            continue
        if (not has_device and position > 0) or (has_device and position > 2):
            try:
                os.mkdir(path[:position], 0o755)
            except FileExistsError:
                pass
            except OSError as exc:
                raise ZipError(ErrorCode.EMKDIR, f"cannot create {path[:position]!r}: {exc}") from exc
    return path


def to_archive_name(name: str) -> str:
    """Return name as stored in an archive: forward slashes only."""
    if not name:
        raise ZipError(ErrorCode.EINVENTNAME)
    return name.replace("\\", "/")