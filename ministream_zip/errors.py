"""Error codes and the exception raised for archive failures."""

from __future__ import annotations

from enum import IntEnum

__all__ = ["ErrorCode", "ZipError", "strerror"]


class ErrorCode(IntEnum):
    """Negative error numbers reported by archive operations."""

    ENOINIT = -1
    EINVENTNAME = -2
    ENOENT = -3
    EINVMODE = -4
    EINVLVL = -5
    ENOSUP64 = -6
    EMEMSET = -7
    EWRTENT = -8
    ETDEFLINIT = -9
    EINVIDX = -10
    ENOHDR = -11
    ETDEFLBUF = -12
    ECRTHDR = -13
    EWRTHDR = -14
    EWRTDIR = -15
    EOPNFILE = -16
    EINVENTTYPE = -17
    EMEMNOALLOC = -18
    ENOFILE = -19
    ENOPERM = -20
    EOOMEM = -21
    EINVZIPNAME = -22
    EMKDIR = -23
    ESYMLINK = -24
    ECLSZIP = -25
    ECAPSIZE = -26
    EFSEEK = -27
    EFREAD = -28
    EFWRITE = -29
    ERINIT = -30
    EWINIT = -31
    EWRINIT = -32
    EINVAL = -33
    ENORITER = -34


# Indexed by the negated error number; index 0 is unused.
_MESSAGES: tuple[str | None, ...] = (
    None,
    "not initialized",
    "invalid entry name",
    "entry not found",
    "invalid zip mode",
    "invalid compression level",
    "no zip 64 support",
    "memset error",
    "cannot write data to entry",
    "cannot initialize tdefl compressor",
    "invalid index",
    "header not found",
    "cannot flush tdefl buffer",
    "cannot write entry header",
    "cannot create entry header",
    "cannot write to central dir",
    "cannot open file",
    "invalid entry type",
    "extracting data using no memory allocation",
    "file not found",
    "no permission",
    "out of memory",
    "invalid zip archive name",
    "make dir error",
    "symlink error",
    "close archive error",
    "capacity size too small",
    "fseek error",
    "fread error",
    "fwrite error",
    "cannot initialize reader",
    "cannot initialize writer",
    "cannot initialize writer from reader",
    "invalid argument",
    "cannot initialize reader iterator",
)


def strerror(errnum: int) -> str | None:
    """Return the message for an error number, or None if it has none."""
    index = -int(errnum)
    if index <= 0 or index >= 33:
        return None
    return _MESSAGES[index]


class ZipError(Exception):
    """Raised when an archive operation fails; carries an ErrorCode."""

    def __init__(self, code: int, message: str | None = None) -> None:
        try:
            self.code: ErrorCode | int = ErrorCode(code)
        except ValueError:
            self.code = int(code)
        if message is None:
            index = -int(code)
            if 0 < index < len(_MESSAGES):
                message = _MESSAGES[index]
            else:
                message = f"zip error {int(code)}"
        self.message: str = message
        super().__init__(message)