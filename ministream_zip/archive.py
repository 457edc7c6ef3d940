"""Zip archives opened from a path, a byte string or an open binary file."""

from __future__ import annotations

import io
import os
import stat
import time
import zlib
from dataclasses import dataclass, replace
from typing import Any, BinaryIO, Callable, Iterable, Optional

from .delete import Mark, compact, plan_deletion
from .errors import ErrorCode, ZipError
from .format import (
    DOS_DIR_ATTRIBUTE,
    METHOD_DEFLATED,
    METHOD_STORED,
    UINT16_MAX,
    UINT32_MAX,
    VERSION_MADE_BY,
    Directory,
    EntryInfo,
    build_central_record,
    build_data_descriptor,
    build_end_records,
    build_local_header,
    build_zip64_extra,
    iter_entry_chunks,
    read_directory,
    read_entry_data,
    to_dos_datetime,
)
from .paths import to_archive_name

__all__ = [
    "DEFAULT_COMPRESSION_LEVEL",
    "Zip",
    "open_zip",
    "open_stream",
    "open_cstream",
]

DEFAULT_COMPRESSION_LEVEL = 6
_UBER_COMPRESSION = 10
_FLAG_COMPRESSED_DATA = 0x400
_IO_BUF_SIZE = 64 * 1024
_POSIX = os.name != "nt"

_MODES = {}
for _letter, _kind in (("r", "r"), ("w", "w"), ("a", "a"), ("d", "a")):
    _MODES[_letter] = _kind
    _MODES[chr(ord(_letter) - 64)] = _kind


@dataclass
class _Entry:
    name: Optional[str] = None
    index: int = -1
    uncomp_size: int = 0
    comp_size: int = 0
    crc32: int = 0
    dir_offset: int = 0
    header_offset: int = 0
    method: int = 0
    external_attr: int = 0
    mtime: float = 0
    compressor: Any = None


def _check_level(level: int) -> int:
    if level < 0:
        level = DEFAULT_COMPRESSION_LEVEL
    if (level & 0xF) > _UBER_COMPRESSION:
        raise ZipError(ErrorCode.EINVLVL)
    return level


def _mode_of(mode: str) -> str:
    try:
        return _MODES[mode]
    except (KeyError, TypeError):
        raise ZipError(ErrorCode.EINVMODE, f"invalid zip mode {mode!r}") from None


def _read_dir(fileobj: BinaryIO) -> Directory:
    try:
        return read_directory(fileobj)
    except (ZipError, OSError) as exc:
        raise ZipError(ErrorCode.ERINIT, f"cannot initialize reader: {exc}") from exc


class Zip:
    """An open archive with at most one open entry at a time."""

    def __init__(
        self,
        fileobj: BinaryIO,
        mode: str,
        level: int,
        *,
        directory: Optional[Directory] = None,
        start_offset: int = 0,
        owns_file: bool = False,
        memory: bool = False,
    ) -> None:
        self._fp = fileobj
        self._level = level
        self._owns = owns_file
        self._memory = memory
        self._reading = mode == "r"
        self._closed = False
        self._finalized = False
        self._final_size = 0
        self._entry = _Entry()
        if directory is not None:
            self._directory = directory
            self._entries = list(directory.entries)
            self._start = directory.start_offset
            self._zip64 = directory.zip64
            self._size = directory.archive_size if self._reading else directory.cd_offset
        else:
            self._directory = Directory()
            self._entries = []
            self._start = start_offset
            self._zip64 = True
            self._size = 0

    # -- lifecycle -------------------------------------------------------

    def close(self) -> None:
        """Finalize a written archive and release the file."""
        if self._closed:
            return
        try:
            if not self._reading:
                self._finalize()
                self._fp.truncate(self._start + self._final_size)
                self._fp.flush()
        finally:
            if self._owns:
                self._fp.close()
            self._closed = True

    def __enter__(self) -> "Zip":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> None:
        if self._closed:
            raise ZipError(ErrorCode.ENOINIT)

    def _write_at(self, offset: int, data: bytes, code: ErrorCode) -> None:
        try:
            self._fp.seek(self._start + offset)
            written = self._fp.write(data)
        except OSError as exc:
            raise ZipError(code, str(exc)) from exc
        if written is not None and written != len(data):
            raise ZipError(code)

    def _finalize(self) -> None:
        if self._finalized:
            return
        cd = b"".join(build_central_record(info) for info in self._entries)
        zip64 = (
            self._zip64
            or self._size + len(cd) >= UINT32_MAX
            or len(self._entries) >= UINT16_MAX
        )
        end = build_end_records(len(self._entries), len(cd), self._size, zip64)
        self._write_at(self._size, cd + end, ErrorCode.EWRTDIR)
        self._zip64 = zip64
        self._final_size = self._size + len(cd) + len(end)
        self._finalized = True

    # -- archive properties ---------------------------------------------

    def is64(self) -> bool:
        """True if the archive has zip64 end of central directory records."""
        self._require_open()
        return bool(self._zip64)

    def offset(self) -> int:
        """Offset in the file where the archive begins."""
        self._require_open()
        return self._start

    def entries_total(self) -> int:
        """Number of entries, files and directories alike."""
        self._require_open()
        return len(self._entries)

    # -- opening and closing entries ------------------------------------

    def _load(self, info: EntryInfo) -> None:
        self._entry = _Entry(
            name=info.name,
            index=info.index,
            uncomp_size=info.uncomp_size,
            comp_size=info.comp_size,
            crc32=info.crc32,
            dir_offset=info.central_dir_offset,
            header_offset=info.header_offset,
            method=info.method,
            external_attr=info.external_attr,
            mtime=info.mtime,
        )

    def _open(self, entryname: str, case_sensitive: bool) -> None:
        self._require_open()
        if not entryname:
            raise ZipError(ErrorCode.EINVENTNAME)
        entry = self._entry
        entry.name = None
        if self._reading:
            entry.index = -1
            index = self._directory.locate(entryname, case_sensitive)
            self._load(self._entries[index])
            return

        name = to_archive_name(entryname)
        compression = self._level & 0xF
        if self._finalized:
            raise ZipError(ErrorCode.EINVMODE)
        if self._level & _FLAG_COMPRESSED_DATA:
            raise ZipError(ErrorCode.EINVLVL)
        header_offset = self._size
        mtime = time.time()
        dos_time, dos_date = to_dos_datetime(mtime)
        method = METHOD_DEFLATED if compression else METHOD_STORED
        extra = build_zip64_extra(None, None, header_offset if header_offset >= UINT32_MAX else None)
        header = build_local_header(name, method, dos_time, dos_date, extra)
        self._write_at(header_offset, header, ErrorCode.EMEMSET)
        compressor = None
        if compression:
            compressor = zlib.compressobj(min(compression, 9), zlib.DEFLATED, -15)
        self._entry = _Entry(
            name=name,
            index=len(self._entries),
            dir_offset=header_offset + len(header),
            header_offset=header_offset,
            method=method,
            external_attr=(0o100644 << 16) if _POSIX else 0,
            mtime=mtime,
            compressor=compressor,
        )

    def entry_open(self, entryname: str) -> None:
        """Open an entry: locate it when reading, start a new one when writing."""
        self._open(entryname, False)

    def entry_open_case_sensitive(self, entryname: str) -> None:
        """Like entry_open, but names are matched case-sensitively."""
        self._open(entryname, True)

    def entry_open_by_index(self, index: int) -> None:
        """Open the entry at index; only valid when reading."""
        self._require_open()
        if not self._reading:
            raise ZipError(ErrorCode.EINVMODE)
        if index < 0 or index >= len(self._entries):
            raise ZipError(ErrorCode.EINVIDX)
        self._load(self._entries[index])

    def entry_close(self) -> None:
        """Close the current entry, writing its trailer and directory record."""
        self._require_open()
        entry = self._entry
        try:
            if self._reading:
                return
            if entry.name is None:
                raise ZipError(ErrorCode.EINVENTNAME, "no entry is open")
            if entry.compressor is not None:
                tail = entry.compressor.flush()
                self._write_at(entry.dir_offset, tail, ErrorCode.ETDEFLBUF)
                entry.dir_offset += len(tail)
                entry.comp_size += len(tail)
                entry.method = METHOD_DEFLATED
            descriptor = build_data_descriptor(entry.crc32, entry.comp_size, entry.uncomp_size)
            self._write_at(entry.dir_offset, descriptor, ErrorCode.EWRTHDR)
            entry.dir_offset += len(descriptor)
            big = [
                entry.uncomp_size if entry.uncomp_size >= UINT32_MAX else None,
                entry.comp_size if entry.comp_size >= UINT32_MAX else None,
                entry.header_offset if entry.header_offset >= UINT32_MAX else None,
            ]
            extra = build_zip64_extra(*big)
            if entry.name.endswith(("/", "\\")) and not entry.uncomp_size:
                entry.external_attr |= DOS_DIR_ATTRIBUTE
            dos_time, dos_date = to_dos_datetime(entry.mtime)
            info = EntryInfo(
                name=entry.name,
                index=len(self._entries),
                version_made_by=VERSION_MADE_BY,
                version_needed=45 if any(v is not None for v in big) else 20,
                method=entry.method,
                dos_time=dos_time,
                dos_date=dos_date,
                crc32=entry.crc32,
                comp_size=entry.comp_size,
                uncomp_size=entry.uncomp_size,
                external_attr=entry.external_attr,
                header_offset=entry.header_offset,
                extra=extra,
            )
            self._entries.append(info)
            self._reindex()
            self._size = entry.dir_offset
        finally:
            entry.mtime = 0
            entry.index = -1
            entry.name = None
            entry.compressor = None

    # -- current entry properties ---------------------------------------

    def entry_name(self) -> Optional[str]:
        """Name of the current entry as stored, or None if none is open."""
        return self._entry.name

    def entry_index(self) -> int:
        """Index of the current entry, -1 if none is open."""
        return self._entry.index

    def entry_isdir(self) -> bool:
        """True if the current entry is a directory."""
        if self._entry.index < 0 or self._entry.name is None:
            raise ZipError(ErrorCode.EINVIDX)
        return self._entry.name.endswith(("/", "\\"))

    def entry_size(self) -> int:
        """Uncompressed size of the current entry."""
        return self.entry_uncomp_size()

    def entry_uncomp_size(self) -> int:
        """Uncompressed size of the current entry."""
        return self._entry.uncomp_size

    def entry_comp_size(self) -> int:
        """Compressed size of the current entry."""
        return self._entry.comp_size

    def entry_crc32(self) -> int:
        """CRC-32 of the current entry's data."""
        return self._entry.crc32

    def entry_dir_offset(self) -> int:
        """Offset of the current entry's record in the central directory."""
        return self._entry.dir_offset

    def entry_header_offset(self) -> int:
        """Offset of the current entry's local header."""
        return self._entry.header_offset

    # -- writing ---------------------------------------------------------

    def entry_write(self, data: bytes) -> None:
        """Append data to the current entry."""
        self._require_open()
        entry = self._entry
        if self._reading or entry.name is None or self._finalized:
            raise ZipError(ErrorCode.EWRTENT)
        data = bytes(data)
        if not data:
            return
        entry.uncomp_size += len(data)
        entry.crc32 = zlib.crc32(data, entry.crc32)
        if entry.compressor is None:
            out = data
            code = ErrorCode.EWRTENT
        else:
            out = entry.compressor.compress(data)
            code = ErrorCode.ETDEFLBUF
        if out:
            self._write_at(entry.dir_offset, out, code)
            entry.dir_offset += len(out)
            entry.comp_size += len(out)

    def entry_fwrite(self, filename: str) -> None:
        """Append the contents of a file to the current entry, taking its mode and mtime."""
        self._require_open()
        try:
            st = os.stat(filename)
        except OSError as exc:
            raise ZipError(ErrorCode.ENOENT, str(exc)) from exc
        if _POSIX:
            modes = (st.st_mode & 0o7777) | stat.S_IFMT(st.st_mode)
            attr = (modes << 16) | (0 if st.st_mode & stat.S_IWUSR else 1)
            if stat.S_ISDIR(st.st_mode):
                attr |= DOS_DIR_ATTRIBUTE
            self._entry.external_attr = attr
        self._entry.mtime = st.st_mtime
        try:
            stream = open(filename, "rb")
        except OSError as exc:
            raise ZipError(ErrorCode.EOPNFILE, str(exc)) from exc
        with stream:
            for chunk in iter(lambda: stream.read(_IO_BUF_SIZE), b""):
                try:
                    self.entry_write(chunk)
                except ZipError as exc:
                    raise ZipError(ErrorCode.EWRTENT, exc.message) from exc

    # -- reading ---------------------------------------------------------

    def _current_info(self) -> EntryInfo:
        self._require_open()
        if not self._reading or self._entry.index < 0:
            raise ZipError(ErrorCode.ENOENT)
        return self._entries[self._entry.index]

    def entry_read(self) -> bytes:
        """Return the whole uncompressed data of the current entry."""
        info = self._current_info()
        if info.is_dir():
            raise ZipError(ErrorCode.EINVENTTYPE)
        return read_entry_data(self._fp, info, self._start)

    def entry_read_into(self, buffer: bytearray) -> int:
        """Decompress the current entry into buffer; return the entry size."""
        info = self._current_info()
        try:
            data = read_entry_data(self._fp, info, self._start)
        except ZipError as exc:
            raise ZipError(ErrorCode.EMEMNOALLOC, exc.message) from exc
        if len(buffer) < len(data):
            raise ZipError(ErrorCode.EMEMNOALLOC, "buffer too small")
        buffer[: len(data)] = data
        return self._entry.uncomp_size

    def entry_read_with_offset(self, offset: int, size: int) -> bytes:
        """Return up to size bytes of the current entry starting at offset."""
        total = self._entry.uncomp_size
        if offset < 0 or offset >= total:
            raise ZipError(ErrorCode.EINVAL)
        size = min(size, total - offset)
        info = self._current_info()
        out = bytearray()
        position = 0
        for chunk in iter_entry_chunks(self._fp, info, self._start):
            end = position + len(chunk)
            if end > offset:
                out += chunk[max(offset - position, 0):]
            position = end
            if len(out) >= size:
                break
        return bytes(out[:size])

    def entry_fread(self, filename: str) -> None:
        """Write the current entry to a file and apply its stored permissions."""
        info = self._current_info()
        if info.is_dir():
            raise ZipError(ErrorCode.EINVENTTYPE)
        try:
            with open(filename, "wb") as out:
                for chunk in iter_entry_chunks(self._fp, info, self._start):
                    out.write(chunk)
        except (OSError, ZipError) as exc:
            raise ZipError(ErrorCode.ENOFILE, str(exc)) from exc
        if _POSIX:
            xattr = (info.external_attr >> 16) & 0xFFFF
            if xattr:
                try:
                    os.chmod(filename, stat.S_IMODE(xattr))
                except OSError as exc:
                    raise ZipError(ErrorCode.ENOPERM, str(exc)) from exc

    def entry_extract(self, on_extract: Callable[[int, bytes], Optional[int]]) -> None:
        """Call on_extract(offset, data) for each chunk of the current entry.

        A callback returning a count other than the chunk's length aborts.
        """
        info = self._current_info()
        position = 0
        try:
            for chunk in iter_entry_chunks(self._fp, info, self._start):
                result = on_extract(position, chunk)
                if result is not None and result != len(chunk):
                    raise ZipError(ErrorCode.EINVIDX, "extraction aborted by callback")
                position += len(chunk)
        except ZipError as exc:
            if exc.code == ErrorCode.EINVIDX:
                raise
            raise ZipError(ErrorCode.EINVIDX, exc.message) from exc

    # -- deleting --------------------------------------------------------

    def _reindex(self) -> None:
        cd_pos = 0
        for index, info in enumerate(self._entries):
            info.index = index
            info.central_dir_offset = cd_pos
            cd_pos += 46 + len(info.encoded_name) + len(info.extra) + len(info.comment)

    def _delete(self, flags: list[bool]) -> int:
        self._require_open()
        if self._reading or self._finalized:
            raise ZipError(ErrorCode.EINVMODE)
        offsets = [info.header_offset for info in self._entries]
        marks = plan_deletion(offsets, flags, self._size)
        shifted = [replace(m, header_offset=m.header_offset + self._start) for m in marks]
        new_offsets = compact(self._fp, shifted)
        removed = sum(m.length for m in marks if m.mark is Mark.DELETE)
        kept = []
        for info, new in zip(self._entries, new_offsets):
            if new is None:
                continue
            info.header_offset = new - self._start
            kept.append(info)
        deleted = len(self._entries) - len(kept)
        self._entries = kept
        self._reindex()
        self._size -= removed
        return deleted

    def entries_delete(self, names: Iterable[str]) -> int:
        """Delete the entries with these exact names; return how many went."""
        wanted = set(names)
        if not wanted:
            return 0
        return self._delete([info.name in wanted for info in self._entries])

    def entries_delete_by_index(self, indices: Iterable[int]) -> int:
        """Delete the entries at these indices; unknown indices are ignored."""
        wanted = set(indices)
        if not wanted:
            return 0
        return self._delete([info.index in wanted for info in self._entries])

    # -- in-memory archives ---------------------------------------------

    def stream_copy(self) -> bytes:
        """Finalize an in-memory archive and return its bytes."""
        self._require_open()
        if not self._memory:
            raise ZipError(ErrorCode.EINVMODE, "not an in-memory archive")
        buffer = self._fp.getvalue()  # type: ignore[attr-defined]
        if self._reading:
            return buffer
        self._finalize()
        return self._fp.getvalue()[self._start:self._start + self._final_size]  # type: ignore[attr-defined]


def open_zip(zipname: str, level: int = DEFAULT_COMPRESSION_LEVEL, mode: str = "r") -> Zip:
    """Open the archive file zipname: 'r' read, 'w' create, 'a' or 'd' modify."""
    if not zipname:
        raise ZipError(ErrorCode.EINVZIPNAME)
    level = _check_level(level)
    kind = _mode_of(mode)
    if kind == "w":
        try:
            fp = open(zipname, "w+b")
        except OSError as exc:
            raise ZipError(ErrorCode.EWINIT, str(exc)) from exc
        return Zip(fp, "w", level, owns_file=True)
    if kind == "r":
        try:
            fp = open(zipname, "rb")
        except OSError as exc:
            raise ZipError(ErrorCode.ERINIT, str(exc)) from exc
    else:
        try:
            fp = open(zipname, "r+b")
        except OSError as exc:
            raise ZipError(ErrorCode.EOPNFILE, str(exc)) from exc
    try:
        directory = _read_dir(fp)
    except ZipError:
        fp.close()
        raise
    return Zip(fp, kind, level, directory=directory, owns_file=True)


def open_stream(
    stream: Optional[bytes], level: int = DEFAULT_COMPRESSION_LEVEL, mode: str = "r"
) -> Zip:
    """Open an archive in memory: 'r' reads stream, 'w' builds one (stream must be None)."""
    level = _check_level(level)
    kind = _mode_of(mode)
    if kind == "r":
        if not stream:
            raise ZipError(ErrorCode.EINVMODE)
        buffer = io.BytesIO(bytes(stream))
        return Zip(buffer, "r", level, directory=_read_dir(buffer), memory=True)
    if kind == "w":
        if stream is not None:
            raise ZipError(ErrorCode.EINVMODE)
        return Zip(io.BytesIO(), "w", level, memory=True)
    raise ZipError(ErrorCode.EINVMODE)


def open_cstream(
    fileobj: Optional[BinaryIO], level: int = DEFAULT_COMPRESSION_LEVEL, mode: str = "r"
) -> Zip:
    """Open an archive on an already open binary file, which close leaves open."""
    if fileobj is None:
        raise ZipError(ErrorCode.ENOFILE)
    level = _check_level(level)
    kind = _mode_of(mode)
    if kind == "w":
        try:
            start = fileobj.tell()
        except OSError as exc:
            raise ZipError(ErrorCode.EWINIT, str(exc)) from exc
        return Zip(fileobj, "w", level, start_offset=start)
    return Zip(fileobj, kind, level, directory=_read_dir(fileobj))