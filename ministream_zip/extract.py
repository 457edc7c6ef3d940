"""Whole-archive operations: extracting into a directory and creating from files."""

from __future__ import annotations

import io
import os
import stat
from typing import BinaryIO, Callable, Iterable, Optional, Union

from .archive import DEFAULT_COMPRESSION_LEVEL, open_zip
from .errors import ErrorCode, ZipError
from .format import Directory, EntryInfo, iter_entry_chunks, read_directory, read_entry_data
from .paths import MAX_ARCHIVE_FILENAME_SIZE, basename, make_path, normalize_name

__all__ = ["extract", "stream_extract", "create"]

OnExtract = Callable[[str], Optional[int]]
PathLike = Union[str, "os.PathLike[str]"]

_WINDOWS = os.name == "nt"
_SEP = "\\" if _WINDOWS else "/"
_SLASHES = "/\\"
_UNIX_HOSTS = (3, 19)
_SYMLINK_ATTR = 0x20 << 24


def _open_directory(fileobj: BinaryIO) -> Directory:
    try:
        return read_directory(fileobj)
    except (ZipError, OSError) as exc:
        raise ZipError(ErrorCode.ENOINIT, f"cannot initialize reader: {exc}") from exc


def _is_symlink(info: EntryInfo) -> bool:
    return (info.version_made_by >> 8) in _UNIX_HOSTS and bool(info.external_attr & _SYMLINK_ATTR)


def _make_symlink(fileobj: BinaryIO, info: EntryInfo, start: int, path: str) -> None:
    if info.uncomp_size > MAX_ARCHIVE_FILENAME_SIZE:
        raise ZipError(ErrorCode.EMEMNOALLOC, "symbolic link target too long")
    try:
        target = read_entry_data(fileobj, info, start)
    except (ZipError, OSError) as exc:
        raise ZipError(ErrorCode.EMEMNOALLOC, str(exc)) from exc
    try:
        os.symlink(os.fsdecode(target), path)
    except OSError as exc:
        raise ZipError(ErrorCode.ESYMLINK, str(exc)) from exc


def _write_file(fileobj: BinaryIO, info: EntryInfo, start: int, path: str) -> None:
    try:
        with open(path, "wb") as out:
            for chunk in iter_entry_chunks(fileobj, info, start):
                out.write(chunk)
        mtime = info.mtime
        os.utime(path, (mtime, mtime))
    except (ZipError, OSError, ValueError, OverflowError) as exc:
        raise ZipError(ErrorCode.ENOFILE, f"cannot extract {info.name!r}: {exc}") from exc


def _apply_mode(info: EntryInfo, path: str) -> None:
    if _WINDOWS:
        return
    xattr = (info.external_attr >> 16) & 0xFFFF
    if xattr:
        try:
            os.chmod(path, stat.S_IMODE(xattr))
        except OSError as exc:
            raise ZipError(ErrorCode.ENOPERM, str(exc)) from exc


def _extract_all(
    fileobj: BinaryIO, archive: Directory, directory: str, on_extract: Optional[OnExtract]
) -> None:
    if len(directory) + 1 > MAX_ARCHIVE_FILENAME_SIZE:
        raise ZipError(ErrorCode.EINVENTNAME, "output directory name too long")
    prefix = directory
    if prefix and prefix[-1] not in _SLASHES:
        prefix += _SEP
    room = MAX_ARCHIVE_FILENAME_SIZE - len(prefix)

    for info in archive:
        name = normalize_name(info.name)
        path = make_path(prefix + name[:room])
        if _is_symlink(info):
            if not _WINDOWS:
                _make_symlink(fileobj, info, archive.start_offset, path)
        else:
            if not info.is_dir():
                _write_file(fileobj, info, archive.start_offset, path)
            _apply_mode(info, path)
        if on_extract is not None:
            result = on_extract(path)
            if result is not None and result < 0:
                break


def extract(zipname: PathLike, directory: PathLike, on_extract: Optional[OnExtract] = None) -> None:
    """Extract every entry of the archive file zipname into directory.

    on_extract(path) is called after each entry; a negative result stops extraction.
    """
    if not zipname or directory is None:
        raise ZipError(ErrorCode.EINVZIPNAME)
    try:
        fileobj = open(zipname, "rb")
    except OSError as exc:
        raise ZipError(ErrorCode.ENOINIT, str(exc)) from exc
    with fileobj:
        archive = _open_directory(fileobj)
        _extract_all(fileobj, archive, os.fspath(directory), on_extract)


def stream_extract(
    stream: Optional[bytes], directory: PathLike, on_extract: Optional[OnExtract] = None
) -> None:
    """Extract every entry of an archive held in memory into directory."""
    if stream is None or directory is None:
        raise ZipError(ErrorCode.ENOINIT)
    fileobj = io.BytesIO(bytes(stream))
    archive = _open_directory(fileobj)
    _extract_all(fileobj, archive, os.fspath(directory), on_extract)


def create(zipname: PathLike, filenames: Iterable[Optional[PathLike]]) -> None:
    """Create the archive zipname holding each file under its base name."""
    if not zipname:
        raise ZipError(ErrorCode.EINVZIPNAME)
    try:
        archive = open_zip(os.fspath(zipname), DEFAULT_COMPRESSION_LEVEL, "w")
    except ZipError as exc:
        raise ZipError(ErrorCode.ENOINIT, exc.message) from exc
    with archive:
        for filename in filenames:
            if filename is None:
                raise ZipError(ErrorCode.EINVENTNAME)
            name = os.fspath(filename)
            try:
                os.stat(name)
            except OSError as exc:
                raise ZipError(ErrorCode.ENOFILE, str(exc)) from exc
            try:
                archive.entry_open(basename(name))
                archive.entry_fwrite(name)
                archive.entry_close()
            except ZipError as exc:
                raise ZipError(ErrorCode.ENOFILE, exc.message) from exc