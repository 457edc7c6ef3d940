"""Planning and carrying out the removal of entries from an archive's data."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from itertools import groupby
from operator import attrgetter
from typing import BinaryIO, Sequence, Union

from .errors import ErrorCode, ZipError

__all__ = [
    "Mark",
    "EntryMark",
    "mark_entries",
    "compute_lengths",
    "compact",
    "plan_deletion",
]

DEFAULT_PAGE_SIZE = 1 << 12

Storage = Union[bytearray, BinaryIO]


class Mark(Enum):
    """What happens to an entry's local record when others are deleted."""

    KEEP = 0
    DELETE = 1
    MOVE = 2


@dataclass(frozen=True)
class EntryMark:
    """One entry's fate, where its local record starts and how long it is."""

    index: int
    mark: Mark
    header_offset: int
    length: int = 0


def mark_entries(offsets: Sequence[int], delete_flags: Sequence[bool]) -> list[EntryMark]:
    """Mark each entry as kept, deleted or moved.

    An entry that is not deleted but lies after the first deleted one must move.
    """
    if len(offsets) != len(delete_flags):
        raise ZipError(ErrorCode.EINVAL, "offsets and delete flags differ in length")
    deleted = [offset for offset, flag in zip(offsets, delete_flags) if flag]
    first_deleted = min(deleted) if deleted else None
    marks = []
    for index, (offset, flag) in enumerate(zip(offsets, delete_flags)):
        if flag:
            kind = Mark.DELETE
        elif first_deleted is not None and offset > first_deleted:
            kind = Mark.MOVE
        else:
            kind = Mark.KEEP
        marks.append(EntryMark(index=index, mark=kind, header_offset=offset))
    return marks


def compute_lengths(marks: Sequence[EntryMark], archive_size: int) -> list[EntryMark]:
    """Return the marks with each local record's length filled in.

    A record runs up to the next record in file order; the last one runs up
    to archive_size, the end of the entry data.
    """
    if not marks:
        return []
    order = sorted(range(len(marks)), key=lambda i: marks[i].header_offset)
    lengths = [0] * len(marks)
    ends = [marks[i].header_offset for i in order[1:]] + [archive_size]
    for position, end in zip(order, ends):
        length = end - marks[position].header_offset
        if length < 0:
            raise ZipError(ErrorCode.EINVAL, "archive size lies before an entry's record")
        lengths[position] = length
    return [replace(mark, length=length) for mark, length in zip(marks, lengths)]


def plan_deletion(
    offsets: Sequence[int], delete_flags: Sequence[bool], archive_size: int
) -> list[EntryMark]:
    """Mark the entries and measure their records in one step."""
    return compute_lengths(mark_entries(offsets, delete_flags), archive_size)


def _move_in_memory(buffer: bytearray, to: int, source: int, length: int) -> None:
    size = len(buffer)
    if to > size or source > size or to + length > size or source + length > size:
        raise ZipError(ErrorCode.EINVIDX, "move lies outside the buffer")
    buffer[to:to + length] = buffer[source:source + length]


def _move_in_file(fileobj: BinaryIO, to: int, source: int, length: int, page_size: int) -> None:
    while length > 0:
        count = min(length, page_size)
        try:
            fileobj.seek(source)
        except OSError as exc:
            raise ZipError(ErrorCode.EFSEEK, str(exc)) from exc
        data = fileobj.read(count)
        if len(data) != count:
            raise ZipError(ErrorCode.EFREAD, f"short read at offset {source}")
        try:
            fileobj.seek(to)
        except OSError as exc:
            raise ZipError(ErrorCode.EFSEEK, str(exc)) from exc
        written = fileobj.write(data)
        if written is not None and written != count:
            raise ZipError(ErrorCode.EFWRITE, f"short write at offset {to}")
        to += count
        source += count
        length -= count


def compact(
    fileobj: Storage, marks: Sequence[EntryMark], page_size: int = DEFAULT_PAGE_SIZE
) -> list[int | None]:
    """Close the gaps left by deleted records, moving later records forward.

    fileobj is a bytearray or a seekable read/write binary file; the marks are
    taken in entry order. Returns each entry's new record offset, None for a
    deleted entry. Bytes past the compacted data are left untouched.
    """
    if page_size <= 0:
        raise ZipError(ErrorCode.EINVAL, "page size must be positive")
    if not marks:
        return []
    write_pos = min(mark.header_offset for mark in marks)
    read_pos = write_pos
    removed = 0
    new_offsets: list[int | None] = []
    for kind, group in groupby(marks, key=attrgetter("mark")):
        run = list(group)
        size = sum(mark.length for mark in run)
        if kind is Mark.KEEP:
            new_offsets.extend(mark.header_offset for mark in run)
            write_pos += size
            read_pos = write_pos
        elif kind is Mark.DELETE:
            new_offsets.extend(None for _ in run)
            read_pos += size
            removed += size
        else:
            new_offsets.extend(mark.header_offset - removed for mark in run)
            if isinstance(fileobj, bytearray):
                _move_in_memory(fileobj, write_pos, read_pos, size)
            else:
                _move_in_file(fileobj, write_pos, read_pos, size, page_size)
            write_pos += size
            read_pos += size
    return new_offsets