import io
import zlib

import pytest

from ministream_zip.archive import (
    DEFAULT_COMPRESSION_LEVEL,
    open_cstream,
    open_stream,
    open_zip,
)
from ministream_zip.errors import ErrorCode, ZipError

TESTDATA1 = b"Some test data 1..."
TESTDATA2 = b"Some test data 2..."
CRC32DATA1 = 2220805626
CRC32DATA2 = 2532008468
LOCAL_HEADER_SIZE = 30
ZIP64_EXTRA_MAX = 28

ENTRIES = [
    ("test/test-1.txt", TESTDATA1),
    ("test\\test-2.txt", TESTDATA2),
    ("test\\empty/", None),
    ("empty/", None),
    ("dotfiles/.test", TESTDATA2),
    ("delete.me", TESTDATA1),
    ("_", TESTDATA2),
    ("delete/file.1", TESTDATA1),
    ("delete/file.2", TESTDATA2),
    ("deleteme/file.3", TESTDATA1),
    ("delete/file.4", TESTDATA2),
]


@pytest.fixture
def zipname(tmp_path):
    path = str(tmp_path / "z.zip")
    with open_zip(path, DEFAULT_COMPRESSION_LEVEL, "w") as z:
        for name, data in ENTRIES:
            z.entry_open(name)
            if data is not None:
                z.entry_write(data)
            z.entry_close()
    return path


def test_openwitherror(tmp_path):
    path = tmp_path / "empty.zip"
    path.write_bytes(b"")
    with pytest.raises(ZipError) as info:
        open_zip(str(path), DEFAULT_COMPRESSION_LEVEL, "r")
    assert info.value.code == ErrorCode.ERINIT
    z = open_zip(str(path), DEFAULT_COMPRESSION_LEVEL, "w")
    z.close()
    with open_zip(str(path), 0, "r") as z:
        assert z.entries_total() == 0


def test_open_errors(tmp_path):
    with pytest.raises(ZipError) as info:
        open_zip("", 0, "w")
    assert info.value.code == ErrorCode.EINVZIPNAME
    with pytest.raises(ZipError) as info:
        open_zip(str(tmp_path / "x.zip"), 11, "w")
    assert info.value.code == ErrorCode.EINVLVL
    with pytest.raises(ZipError) as info:
        open_zip(str(tmp_path / "x.zip"), 0, "q")
    assert info.value.code == ErrorCode.EINVMODE
    with pytest.raises(ZipError) as info:
        open_zip(str(tmp_path / "missing.zip"), 0, "a")
    assert info.value.code == ErrorCode.EOPNFILE


def test_stream_openwitherror():
    with pytest.raises(ZipError) as info:
        open_stream(None, DEFAULT_COMPRESSION_LEVEL, "r")
    assert info.value.code == ErrorCode.EINVMODE
    with open_stream(None, DEFAULT_COMPRESSION_LEVEL, "w") as z:
        assert z.entries_total() == 0


def test_cstream_openwitherror(tmp_path):
    with pytest.raises(ZipError) as info:
        open_cstream(None, DEFAULT_COMPRESSION_LEVEL, "r")
    assert info.value.code == ErrorCode.ENOFILE
    with open(tmp_path / "c.zip", "w+b") as fp:
        z = open_cstream(fp, DEFAULT_COMPRESSION_LEVEL, "w")
        z.close()
        assert not fp.closed


def test_read(zipname):
    with open_zip(zipname, 0, "r") as z:
        assert z.is64()
        z.entry_open("test/test-1.txt")
        assert z.entry_size() == len(TESTDATA1)
        assert z.entry_crc32() == CRC32DATA1
        assert z.entry_read() == TESTDATA1
        z.entry_close()
        z.entry_open("test/test-2.txt")
        assert z.entry_size() == len(TESTDATA2)
        assert z.entry_crc32() == CRC32DATA2
        assert z.entry_read() == TESTDATA2
        z.entry_close()
        z.entry_open("test/empty/")
        assert z.entry_name() == "test/empty/"
        assert z.entry_size() == 0
        assert z.entry_crc32() == 0
        with pytest.raises(ZipError) as info:
            z.entry_read()
        assert info.value.code == ErrorCode.EINVENTTYPE
        z.entry_close()


def test_noallocread(zipname):
    with open_zip(zipname, 0, "r") as z:
        for name, data in (("test/test-2.txt", TESTDATA2), ("test/test-1.txt", TESTDATA1),
                           ("dotfiles/.test", TESTDATA2)):
            buf = bytearray(len(data))
            z.entry_open(name)
            assert z.entry_read_into(buf) == len(data)
            assert bytes(buf) == data
            z.entry_close()
        z.entry_open("test/test-1.txt")
        with pytest.raises(ZipError) as info:
            z.entry_read_into(bytearray(3))
        assert info.value.code == ErrorCode.EMEMNOALLOC


def test_noallocreadwithoffset(zipname):
    with open_zip(zipname, 0, "r") as z:
        z.entry_open("test/test-2.txt")
        expected = TESTDATA2
        for chunk in range(1, len(expected) + 1):
            for start in range(len(expected)):
                offset = start
                while offset < len(expected):
                    data = z.entry_read_with_offset(offset, chunk)
                    assert 0 < len(data) <= chunk
                    assert data == expected[offset:offset + len(data)]
                    offset += len(data)
        with pytest.raises(ZipError) as info:
            z.entry_read_with_offset(len(expected), 1)
        assert info.value.code == ErrorCode.EINVAL


def test_write(tmp_path):
    with open_zip(str(tmp_path / "w.zip"), DEFAULT_COMPRESSION_LEVEL, "w") as z:
        z.entry_open("test/test-1.txt")
        z.entry_write(TESTDATA1)
        assert z.entry_name() == "test/test-1.txt"
        assert z.entry_index() == 0
        assert z.entry_size() == len(TESTDATA1)
        assert z.entry_crc32() == CRC32DATA1
        z.entry_close()
        assert z.is64()


def test_write_utf(tmp_path):
    name = "тест/Если-б-не-было-войны.txt"
    path = str(tmp_path / "u.zip")
    with open_zip(path, DEFAULT_COMPRESSION_LEVEL, "w") as z:
        z.entry_open(name)
        z.entry_write(TESTDATA1)
        assert z.entry_name() == name
        assert z.entry_crc32() == CRC32DATA1
        z.entry_close()
    with open_zip(path, 0, "r") as z:
        z.entry_open(name)
        assert z.entry_read() == TESTDATA1


def test_fwrite(tmp_path):
    source = tmp_path / "w-file"
    source.write_bytes(TESTDATA1)
    path = str(tmp_path / "f.zip")
    with open_zip(path, 9, "w") as z:
        z.entry_open("w-file")
        z.entry_fwrite(str(source))
        z.entry_close()
        assert z.is64()
    with open_zip(path, 0, "r") as z:
        z.entry_open("w-file")
        assert z.entry_read() == TESTDATA1


def test_write_in_read_mode_fails(zipname):
    with open_zip(zipname, 0, "r") as z:
        with pytest.raises(ZipError) as info:
            z.entry_open("nope")
        assert info.value.code == ErrorCode.ENOENT
        with pytest.raises(ZipError) as info:
            z.entry_open("")
        assert info.value.code == ErrorCode.EINVENTNAME


def test_append(tmp_path):
    path = str(tmp_path / "a.zip")
    with open_zip(path, DEFAULT_COMPRESSION_LEVEL, "w") as z:
        z.entry_open("test/test-1.txt")
        z.entry_write(TESTDATA1)
        z.entry_close()
    total = 1
    with open_zip(path, DEFAULT_COMPRESSION_LEVEL, "a") as z:
        z.entry_open("test\\test-2.txt")
        assert z.entry_name() == "test/test-2.txt"
        assert z.entry_index() == total
        z.entry_write(TESTDATA2)
        assert z.entry_size() == len(TESTDATA2)
        assert z.entry_crc32() == CRC32DATA2
        z.entry_close()
        total += 1
    with open_zip(path, DEFAULT_COMPRESSION_LEVEL, "a") as z:
        z.entry_open("test\\empty/")
        assert z.entry_name() == "test/empty/"
        assert z.entry_size() == 0
        assert z.entry_crc32() == 0
        assert z.entry_index() == total
        z.entry_close()
        total += 1
    with open_zip(path, DEFAULT_COMPRESSION_LEVEL, "a") as z:
        z.entry_open("empty/")
        assert z.entry_index() == total
        z.entry_close()
        total += 1
        z.entry_open("dotfiles/.test")
        assert z.entry_size() == 0
        z.entry_write(TESTDATA2)
        assert z.entry_crc32() == CRC32DATA2
        assert z.entry_index() == total
        z.entry_close()
        total += 1
        assert z.entries_total() == total
    with open_zip(path, 0, "r") as z:
        assert z.entries_total() == 5
        z.entry_open("dotfiles/.test")
        assert z.entry_read() == TESTDATA2


def test_entry_name_and_index(zipname):
    with open_zip(zipname, 0, "r") as z:
        z.entry_open("test/test-1.txt")
        assert z.entry_name() == "test/test-1.txt"
        assert z.entry_size() == len(TESTDATA1)
        assert z.entry_crc32() == CRC32DATA1
        assert z.entry_index() == 0
        z.entry_close()
        z.entry_open("test/test-2.txt")
        assert z.entry_name() == "test/test-2.txt"
        assert z.entry_crc32() == CRC32DATA2
        assert z.entry_index() == 1
        z.entry_close()


def test_entry_opencasesensitive(zipname):
    with open_zip(zipname, 0, "r") as z:
        assert z.entry_name() is None
        z.entry_open("test/TEST-1.TXT")
        assert z.entry_name() == "test/test-1.txt"
        z.entry_close()
        with pytest.raises(ZipError) as info:
            z.entry_open_case_sensitive("test/TEST-1.TXT")
        assert info.value.code == ErrorCode.ENOENT


def test_entry_openbyindex(zipname):
    with open_zip(zipname, 0, "r") as z:
        z.entry_open_by_index(1)
        assert z.entry_index() == 1
        assert z.entry_size() == len(TESTDATA2)
        assert z.entry_crc32() == CRC32DATA2
        assert z.entry_name() == "test/test-2.txt"
        z.entry_close()
        z.entry_open_by_index(0)
        assert z.entry_index() == 0
        assert z.entry_crc32() == CRC32DATA1
        assert z.entry_name() == "test/test-1.txt"
        z.entry_close()
        with pytest.raises(ZipError) as info:
            z.entry_open_by_index(100)
        assert info.value.code == ErrorCode.EINVIDX


def test_entry_read_stream():
    with open_stream(None, DEFAULT_COMPRESSION_LEVEL, "w") as z:
        z.entry_open("test/test-1.txt")
        z.entry_write(TESTDATA1)
        z.entry_close()
        first = z.stream_copy()
        second = z.stream_copy()
    assert first == second
    with open_stream(first, 0, "r") as z:
        z.entry_open("test/test-1.txt")
        assert z.entry_read() == TESTDATA1


def test_list_entries(zipname):
    with open_zip(zipname, 0, "r") as z:
        dirs = []
        for i in range(z.entries_total()):
            z.entry_open_by_index(i)
            if z.entry_isdir():
                dirs.append(z.entry_name())
            z.entry_close()
        assert dirs == ["test/empty/", "empty/"]
        with pytest.raises(ZipError) as info:
            z.entry_isdir()
        assert info.value.code == ErrorCode.EINVIDX


DELETED = ["delete.me", "_", "delete/file.1", "deleteme/file.3", "delete/file.2"]


def _check_deleted(zipname):
    with open_zip(zipname, 0, "r") as z:
        for name in DELETED:
            with pytest.raises(ZipError) as info:
                z.entry_open(name)
            assert info.value.code == ErrorCode.ENOENT
            z.entry_close()
        assert z.entries_total() == len(ENTRIES) - 5
        z.entry_open("delete/file.4")
        assert z.entry_read() == TESTDATA2
        z.entry_close()
        z.entry_open("dotfiles/.test")
        assert z.entry_read() == TESTDATA2


def test_entries_deletebyindex(zipname):
    with open_zip(zipname, 0, "d") as z:
        assert z.entries_delete_by_index([5, 6, 7, 9, 8]) == 5
    _check_deleted(zipname)


def test_entries_deleteinvalid(zipname):
    with open_zip(zipname, 0, "d") as z:
        assert z.entries_delete_by_index([111, 222, 333, 444]) == 0
    with open_zip(zipname, 0, "r") as z:
        assert z.entries_total() == len(ENTRIES)
        for name in DELETED:
            z.entry_open(name)
            z.entry_close()
        z.entry_open("delete/file.4")
        assert z.entry_read() == TESTDATA2


def test_entries_delete(zipname):
    with open_zip(zipname, 0, "d") as z:
        assert z.entries_delete(DELETED) == 5
    _check_deleted(zipname)


def test_entry_offset(zipname):
    with open_zip(zipname, 0, "r") as z:
        expected = 0
        for i in range(z.entries_total()):
            z.entry_open_by_index(i)
            assert z.entry_index() == i
            assert z.entry_header_offset() == expected
            expected = (z.entry_header_offset() + LOCAL_HEADER_SIZE
                        + len(z.entry_name().encode()) + ZIP64_EXTRA_MAX + z.entry_comp_size())
            z.entry_close()


def test_offset(tmp_path):
    header = b"this precedes the zip header"
    path = tmp_path / "o.zip"
    with open(path, "w+b") as fp:
        fp.write(header)
        with open_cstream(fp, DEFAULT_COMPRESSION_LEVEL, "w") as z:
            z.entry_open("test/test-1.txt")
            z.entry_write(TESTDATA1)
            z.entry_close()
    with open_zip(str(path), DEFAULT_COMPRESSION_LEVEL, "a") as z:
        z.entry_open("test/test-2.txt")
        z.entry_write(TESTDATA2)
        z.entry_close()
    assert path.read_bytes().startswith(header)
    with open_zip(str(path), 0, "r") as z:
        assert z.offset() == len(header)
        assert z.entries_total() == 2
        z.entry_open("test/test-1.txt")
        assert z.entry_size() == len(TESTDATA1)
        assert z.entry_crc32() == CRC32DATA1
        assert z.entry_read() == TESTDATA1
        z.entry_close()
        z.entry_open("test/test-2.txt")
        assert z.entry_read() == TESTDATA2


def test_cstream_read_and_extract(zipname):
    with open(zipname, "rb") as fp:
        z = open_cstream(fp, 0, "r")
        z.entry_open("dotfiles/.test")
        pieces = []
        z.entry_extract(lambda offset, data: pieces.append(data) or len(data))
        assert b"".join(pieces) == TESTDATA2
        with pytest.raises(ZipError) as info:
            z.entry_extract(lambda offset, data: 0)
        assert info.value.code == ErrorCode.EINVIDX
        z.close()
        assert not fp.closed


def test_entry_fread(zipname, tmp_path):
    out = tmp_path / "out.txt"
    with open_zip(zipname, 0, "r") as z:
        z.entry_open("test/test-1.txt")
        z.entry_fread(str(out))
    assert out.read_bytes() == TESTDATA1


def test_data(tmp_path):
    payload = bytes(range(256)) * 1600
    source = tmp_path / "data.bin"
    source.write_bytes(payload)
    path = str(tmp_path / "d.zip")
    with open_zip(path, DEFAULT_COMPRESSION_LEVEL, "w") as z:
        z.entry_open("data.bin")
        z.entry_fwrite(str(source))
        z.entry_close()
    with open_zip(path, 0, "r") as z:
        z.entry_open("data.bin")
        assert z.entry_size() == 409600
        assert z.entry_crc32() == zlib.crc32(payload)
        data = z.entry_read()
        assert len(data) == 409600
        assert data == payload


def test_stored_level_zero(tmp_path):
    buffer = io.BytesIO()
    with open_cstream(buffer, 0, "w") as z:
        z.entry_open("plain")
        z.entry_write(TESTDATA1)
        assert z.entry_comp_size() == len(TESTDATA1)
        z.entry_close()
    with open_stream(buffer.getvalue(), 0, "r") as z:
        z.entry_open("plain")
        assert z.entry_read() == TESTDATA1
        assert z.entry_comp_size() == len(TESTDATA1)