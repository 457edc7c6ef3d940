"""Records of the zip file format: building them and reading them back."""

from __future__ import annotations

import io
import os
import string
import struct
import time
import zlib
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator

from .errors import ErrorCode, ZipError

__all__ = [
    "EntryInfo",
    "Directory",
    "to_dos_datetime",
    "from_dos_datetime",
    "build_local_header",
    "build_zip64_extra",
    "build_data_descriptor",
    "build_central_record",
    "build_end_records",
    "read_directory",
    "iter_entry_chunks",
    "read_entry_data",
]

LOCAL_HEADER_SIG = 0x04034B50
CENTRAL_HEADER_SIG = 0x02014B50
END_SIG = 0x06054B50
ZIP64_END_SIG = 0x06064B50
ZIP64_LOCATOR_SIG = 0x07064B50
DATA_DESCRIPTOR_SIG = 0x08074B50

LOCAL_HEADER_SIZE = 30
CENTRAL_HEADER_SIZE = 46
END_SIZE = 22
ZIP64_END_SIZE = 56
ZIP64_LOCATOR_SIZE = 20
DATA_DESCRIPTOR_SIZE64 = 24
ZIP64_EXTRA_ID = 0x0001

UINT16_MAX = 0xFFFF
UINT32_MAX = 0xFFFFFFFF

FLAG_ENCRYPTED = 0x0001
FLAG_HAS_LOCATOR = 0x0008
FLAG_UTF8 = 0x0800
DOS_DIR_ATTRIBUTE = 0x10

METHOD_STORED = 0
METHOD_DEFLATED = 8

PLATFORM = 0 if os.name == "nt" else 3
VERSION_MADE_BY = (PLATFORM << 8) | 30

DEFAULT_CHUNK_SIZE = 64 * 1024

_LOCAL = struct.Struct("<IHHHHHIIIHH")
_CENTRAL = struct.Struct("<IHHHHHHIIIHHHHHII")
_END = struct.Struct("<IHHHHIIH")
_ZIP64_END = struct.Struct("<IQHHIIQQQQ")
_LOCATOR = struct.Struct("<IIQI")
_DESCRIPTOR = struct.Struct("<IIQQ")
_EXTRA_HEADER = struct.Struct("<HH")

_END_SIG_BYTES = struct.pack("<I", END_SIG)
_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def _decode_name(raw: bytes, flags: int) -> str:
    if flags & FLAG_UTF8:
        return raw.decode("utf-8", "surrogateescape")
    return raw.decode("cp437")


def _encode_name(name: str, flags: int) -> bytes:
    if flags & FLAG_UTF8:
        return name.encode("utf-8", "surrogateescape")
    try:
        return name.encode("cp437")
    except UnicodeEncodeError:
        return name.encode("utf-8", "surrogateescape")


@dataclass
class EntryInfo:
    """One entry as described by its central directory record."""

    name: str
    index: int = 0
    version_made_by: int = VERSION_MADE_BY
    version_needed: int = 20
    flags: int = FLAG_UTF8 | FLAG_HAS_LOCATOR
    method: int = METHOD_DEFLATED
    dos_time: int = 0
    dos_date: int = 0
    crc32: int = 0
    comp_size: int = 0
    uncomp_size: int = 0
    internal_attr: int = 0
    external_attr: int = 0
    header_offset: int = 0
    central_dir_offset: int = 0
    extra: bytes = b""
    comment: bytes = b""

    @property
    def mtime(self) -> int:
        """Modification time as a POSIX timestamp."""
        return from_dos_datetime(self.dos_time, self.dos_date)

    @property
    def encoded_name(self) -> bytes:
        """The name as stored in the archive."""
        return _encode_name(self.name, self.flags)

    def is_dir(self) -> bool:
        """True for a directory entry: trailing '/' or the DOS directory bit."""
        if self.name.endswith("/"):
            return True
        return bool(self.external_attr & DOS_DIR_ATTRIBUTE)


@dataclass
class Directory:
    """The central directory of an archive and where the archive sits in its file."""

    entries: list[EntryInfo] = field(default_factory=list)
    start_offset: int = 0
    cd_offset: int = 0
    cd_size: int = 0
    archive_size: int = 0
    zip64: bool = False

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[EntryInfo]:
        return iter(self.entries)

    def locate(self, name: str, case_sensitive: bool = False) -> int:
        """Return the index of the first entry called name; raise ZipError if none."""
        if case_sensitive:
            for info in self.entries:
                if info.name == name:
                    return info.index
        else:
            wanted = name.translate(_ASCII_LOWER)
            for info in self.entries:
                if info.name.translate(_ASCII_LOWER) == wanted:
                    return info.index
        raise ZipError(ErrorCode.ENOENT, f"entry not found: {name!r}")


def to_dos_datetime(timestamp: float) -> tuple[int, int]:
    """Return the (dos_time, dos_date) pair for a timestamp in local time."""
    t = time.localtime(timestamp)
    year = min(max(t.tm_year, 1980), 2107)
    dos_time = (t.tm_hour << 11) | (t.tm_min << 5) | (t.tm_sec >> 1)
    dos_date = ((year - 1980) << 9) | (t.tm_mon << 5) | t.tm_mday
    return dos_time & UINT16_MAX, dos_date & UINT16_MAX


def from_dos_datetime(dos_time: int, dos_date: int) -> int:
    """Return the POSIX timestamp for a DOS time and date in local time."""
    year = ((dos_date >> 9) & 0x7F) + 1980
    month = max((dos_date >> 5) & 0x0F, 1)
    day = max(dos_date & 0x1F, 1)
    hour = (dos_time >> 11) & 0x1F
    minute = (dos_time >> 5) & 0x3F
    second = (dos_time << 1) & 0x3E
    return int(time.mktime((year, month, day, hour, minute, second, 0, 0, -1)))


def build_local_header(
    name: str, method: int, dos_time: int, dos_date: int, extra: bytes = b""
) -> bytes:
    """Return a local file header followed by the name and extra field.

    Sizes and CRC are left zero: they follow the data in a data descriptor.
    """
    name_bytes = name.encode("utf-8", "surrogateescape")
    header = _LOCAL.pack(
        LOCAL_HEADER_SIG,
        20 if method else 0,
        FLAG_UTF8 | FLAG_HAS_LOCATOR,
        method,
        dos_time,
        dos_date,
        0,
        0,
        0,
        len(name_bytes),
        len(extra),
    )
    return header + name_bytes + extra


def build_zip64_extra(
    uncomp_size: int | None = None,
    comp_size: int | None = None,
    header_offset: int | None = None,
) -> bytes:
    """Return a zip64 extra field holding whichever values are given."""
    values = [v for v in (uncomp_size, comp_size, header_offset) if v is not None]
    body = b"".join(struct.pack("<Q", v) for v in values)
    return _EXTRA_HEADER.pack(ZIP64_EXTRA_ID, len(body)) + body


def build_data_descriptor(crc32: int, comp_size: int, uncomp_size: int) -> bytes:
    """Return a 64-bit data descriptor."""
    return _DESCRIPTOR.pack(DATA_DESCRIPTOR_SIG, crc32 & UINT32_MAX, comp_size, uncomp_size)


def build_central_record(info: EntryInfo) -> bytes:
    """Return the central directory record for an entry."""
    name_bytes = info.encoded_name
    header = _CENTRAL.pack(
        CENTRAL_HEADER_SIG,
        info.version_made_by & UINT16_MAX,
        info.version_needed & UINT16_MAX,
        info.flags & UINT16_MAX,
        info.method,
        info.dos_time,
        info.dos_date,
        info.crc32 & UINT32_MAX,
        min(info.comp_size, UINT32_MAX),
        min(info.uncomp_size, UINT32_MAX),
        len(name_bytes),
        len(info.extra),
        len(info.comment),
        0,
        info.internal_attr & UINT16_MAX,
        info.external_attr & UINT32_MAX,
        min(info.header_offset, UINT32_MAX),
    )
    return header + name_bytes + info.extra + info.comment


def build_end_records(entry_count: int, cd_size: int, cd_offset: int, zip64: bool) -> bytes:
    """Return the end of central directory records, with zip64 ones if asked."""
    out = b""
    if zip64:
        out += _ZIP64_END.pack(
            ZIP64_END_SIG,
            ZIP64_END_SIZE - 12,
            0x031E,
            0x002D,
            0,
            0,
            entry_count,
            entry_count,
            cd_size,
            cd_offset,
        )
        out += _LOCATOR.pack(ZIP64_LOCATOR_SIG, 0, cd_offset + cd_size, 1)
    out += _END.pack(
        END_SIG,
        0,
        0,
        min(UINT16_MAX, entry_count),
        min(UINT16_MAX, entry_count),
        min(UINT32_MAX, cd_size),
        min(UINT32_MAX, cd_offset),
        0,
    )
    return out


def _read_at(fileobj: BinaryIO, offset: int, size: int) -> bytes:
    fileobj.seek(offset)
    data = fileobj.read(size)
    if len(data) != size:
        raise ZipError(ErrorCode.EFREAD, f"short read at offset {offset}")
    return data


def _bad(message: str) -> ZipError:
    return ZipError(ErrorCode.ERINIT, message)


def _read_zip64_end(fileobj: BinaryIO, eocd_ofs: int, rel_ofs: int, file_size: int) -> tuple:
    candidate = eocd_ofs - ZIP64_LOCATOR_SIZE - ZIP64_END_SIZE
    if candidate < 0:
        raise _bad("truncated zip64 end of central directory")
    record = _ZIP64_END.unpack(_read_at(fileobj, candidate, ZIP64_END_SIZE))
    if record[0] == ZIP64_END_SIG:
        return record
    if rel_ofs > file_size - ZIP64_END_SIZE:
        raise _bad("invalid zip64 end of central directory offset")
    record = _ZIP64_END.unpack(_read_at(fileobj, rel_ofs, ZIP64_END_SIZE))
    if record[0] != ZIP64_END_SIG:
        raise _bad("zip64 end of central directory not found")
    return record


def _apply_zip64_extra(info: EntryInfo, raw_uncomp: int, raw_comp: int, raw_offset: int) -> None:
    wanted = [raw_uncomp == UINT32_MAX, raw_comp == UINT32_MAX, raw_offset == UINT32_MAX]
    if not any(wanted):
        return
    extra = info.extra
    pos = 0
    while pos + _EXTRA_HEADER.size <= len(extra):
        field_id, field_size = _EXTRA_HEADER.unpack_from(extra, pos)
        body = extra[pos + _EXTRA_HEADER.size:pos + _EXTRA_HEADER.size + field_size]
        if len(body) != field_size:
            raise _bad("truncated extra field")
        if field_id == ZIP64_EXTRA_ID:
            values = iter(struct.unpack_from(f"<{field_size // 8}Q", body))
            try:
                if wanted[0]:
                    info.uncomp_size = next(values)
                if wanted[1]:
                    info.comp_size = next(values)
                if wanted[2]:
                    info.header_offset = next(values)
            except StopIteration:
                raise _bad("zip64 extra field too short") from None
            return
        pos += _EXTRA_HEADER.size + field_size
    raise _bad("zip64 extra field missing")


def read_directory(fileobj: BinaryIO) -> Directory:
    """Read the central directory of the archive held in a seekable binary file."""
    fileobj.seek(0, io.SEEK_END)
    file_size = fileobj.tell()
    if file_size < END_SIZE:
        raise _bad("file too small to be a zip archive")

    tail_len = min(file_size, END_SIZE + UINT16_MAX)
    tail_start = file_size - tail_len
    tail = _read_at(fileobj, tail_start, tail_len)
    pos = tail.rfind(_END_SIG_BYTES, 0, tail_len - END_SIZE + 4)
    if pos < 0:
        raise _bad("end of central directory not found")
    eocd_ofs = tail_start + pos
    _, disk, cd_disk, on_disk, total, cd_size, cd_offset, _ = _END.unpack_from(tail, pos)

    zip64 = False
    rel_ofs = 0
    if eocd_ofs >= ZIP64_LOCATOR_SIZE:
        sig, _, rel_ofs, _ = _LOCATOR.unpack(
            _read_at(fileobj, eocd_ofs - ZIP64_LOCATOR_SIZE, ZIP64_LOCATOR_SIZE)
        )
        zip64 = sig == ZIP64_LOCATOR_SIG
    if zip64:
        record = _read_zip64_end(fileobj, eocd_ofs, rel_ofs, file_size)
        _, _, _, _, disk, cd_disk, on_disk, total, cd_size, cd_offset = record
        if total > UINT32_MAX:
            raise _bad("too many entries")

    if (disk | cd_disk) != 0 and (disk, cd_disk) != (1, 1):
        raise _bad("multi-disk archives are not supported")
    if total != on_disk:
        raise _bad("multi-disk archives are not supported")
    if cd_size < total * CENTRAL_HEADER_SIZE:
        raise _bad("central directory too small")
    if eocd_ofs < cd_offset + cd_size:
        raise _bad("central directory extends past its end record")

    archive_ofs = eocd_ofs - (cd_offset + cd_size)
    if zip64:
        if archive_ofs < ZIP64_END_SIZE + ZIP64_LOCATOR_SIZE:
            raise _bad("zip64 records missing")
        archive_ofs -= ZIP64_END_SIZE + ZIP64_LOCATOR_SIZE
    archive_size = file_size - archive_ofs

    cd = _read_at(fileobj, archive_ofs + cd_offset, cd_size)
    entries: list[EntryInfo] = []
    pos = 0
    for index in range(total):
        if pos + CENTRAL_HEADER_SIZE > len(cd):
            raise _bad("truncated central directory")
        (sig, made_by, needed, flags, method, dos_time, dos_date, crc, comp, uncomp,
         name_len, extra_len, comment_len, _, internal, external, offset) = _CENTRAL.unpack_from(cd, pos)
        if sig != CENTRAL_HEADER_SIG:
            raise _bad("bad central directory record")
        name_start = pos + CENTRAL_HEADER_SIZE
        extra_start = name_start + name_len
        comment_start = extra_start + extra_len
        end = comment_start + comment_len
        if end > len(cd):
            raise _bad("truncated central directory record")
        if comp != UINT32_MAX and offset + LOCAL_HEADER_SIZE + comp > archive_size:
            raise _bad("entry data extends past the archive")
        if (method == METHOD_STORED and comp != uncomp
                and comp != UINT32_MAX and uncomp != UINT32_MAX):
            raise _bad("stored entry sizes differ")
        info = EntryInfo(
            name=_decode_name(cd[name_start:extra_start], flags),
            index=index,
            version_made_by=made_by,
            version_needed=needed,
            flags=flags,
            method=method,
            dos_time=dos_time,
            dos_date=dos_date,
            crc32=crc,
            comp_size=comp,
            uncomp_size=uncomp,
            internal_attr=internal,
            external_attr=external,
            header_offset=offset,
            central_dir_offset=pos,
            extra=cd[extra_start:comment_start],
            comment=cd[comment_start:end],
        )
        _apply_zip64_extra(info, uncomp, comp, offset)
        entries.append(info)
        pos = end

    return Directory(
        entries=entries,
        start_offset=archive_ofs,
        cd_offset=cd_offset,
        cd_size=cd_size,
        archive_size=archive_size,
        zip64=zip64,
    )


def iter_entry_chunks(
    fileobj: BinaryIO,
    info: EntryInfo,
    start_offset: int = 0,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[bytes]:
    """Yield the uncompressed data of an entry in chunks of at most chunk_size bytes.

    The CRC and size are checked once the data is exhausted.
    """
    if chunk_size <= 0:
        raise ZipError(ErrorCode.EINVAL, "chunk size must be positive")
    if info.flags & FLAG_ENCRYPTED:
        raise ZipError(ErrorCode.EINVAL, "encrypted entries are not supported")
    if info.method not in (METHOD_STORED, METHOD_DEFLATED):
        raise ZipError(ErrorCode.EINVAL, f"unsupported compression method {info.method}")

    header_pos = start_offset + info.header_offset
    header = _LOCAL.unpack(_read_at(fileobj, header_pos, LOCAL_HEADER_SIZE))
    if header[0] != LOCAL_HEADER_SIG:
        raise ZipError(ErrorCode.ENOHDR)
    name_len, extra_len = header[9], header[10]
    position = header_pos + LOCAL_HEADER_SIZE + name_len + extra_len

    remaining = info.comp_size
    decomp = zlib.decompressobj(-15) if info.method == METHOD_DEFLATED else None
    crc = 0
    total = 0
    while remaining > 0:
        raw = _read_at(fileobj, position, min(chunk_size, remaining))
        position += len(raw)
        remaining -= len(raw)
        if decomp is None:
            pieces = [raw]
        else:
            pieces = []
            try:
                piece = decomp.decompress(raw, chunk_size)
                pieces.append(piece)
                while decomp.unconsumed_tail:
                    pieces.append(decomp.decompress(decomp.unconsumed_tail, chunk_size))
            except zlib.error as exc:
                raise ZipError(ErrorCode.EINVAL, f"corrupt deflate data: {exc}") from exc
        for piece in pieces:
            if piece:
                crc = zlib.crc32(piece, crc)
                total += len(piece)
                yield piece
    if decomp is not None:
        try:
            tail = decomp.flush()
        except zlib.error as exc:
            raise ZipError(ErrorCode.EINVAL, f"corrupt deflate data: {exc}") from exc
        if tail:
            crc = zlib.crc32(tail, crc)
            total += len(tail)
            yield tail
        if info.comp_size and not decomp.eof:
            raise ZipError(ErrorCode.EINVAL, "truncated deflate data")
    if total != info.uncomp_size:
        raise ZipError(ErrorCode.EINVAL, "entry size mismatch")
    if crc != info.crc32:
        raise ZipError(ErrorCode.EINVAL, "CRC mismatch")


def read_entry_data(fileobj: BinaryIO, info: EntryInfo, start_offset: int = 0) -> bytes:
    """Return the whole uncompressed data of an entry."""
    return b"".join(iter_entry_chunks(fileobj, info, start_offset))