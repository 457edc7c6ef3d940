# ministream-zip

A small ZIP library that writes archives one entry at a time. It can also:

- read archives and append to existing ones;
- delete entries in place;
- extract whole archives to a directory, keeping Unix permissions, modification
  times and symbolic links.

New archives are written with ZIP64 end records. Every entry is written with a
data descriptor after its data. The package depends only on the standard library.

## Installing

```
pip install ministream-zip
```

## Writing an archive

```python
from ministream_zip.archive import open_zip

with open_zip("out.zip", 6, "w") as zip:
    zip.entry_open("docs/readme.txt")
    zip.entry_write(b"Some test data 1...")
    zip.entry_close()

    zip.entry_open("data.bin")
    zip.entry_fwrite("local/data.bin")
    zip.entry_close()
```

Only one entry is open at a time. Entry names are stored as given, except that
backslashes become forward slashes. A name that ends in `/` is a directory entry.

Compression levels run from 0 to 10:

- 0 stores the data without compression.
- 1 to 10 deflate it; 10 compresses the same as 9.
- A negative level selects the default, `DEFAULT_COMPRESSION_LEVEL`, which is 6.

`entry_fwrite(path)` reads the file's contents into the entry. It also takes
the file's modification time and, on POSIX systems, its permission bits.

## Reading

```python
with open_zip("out.zip", 0, "r") as zip:
    for index in range(zip.entries_total()):
        zip.entry_open_by_index(index)
        print(zip.entry_name(), zip.entry_size(), zip.entry_isdir())
        zip.entry_close()

    zip.entry_open("docs/readme.txt")
    data = zip.entry_read()
    part = zip.entry_read_with_offset(5, 4)
    zip.entry_close()
```

Name lookups ignore ASCII case. Use `entry_open_case_sensitive` for an exact
match.

The other ways to read the open entry:

- `entry_read_into(buffer)` fills a `bytearray` with the entry's data.
- `entry_extract(callback)` calls `callback(offset, chunk)` for each
  decompressed piece.
- `entry_fread(path)` writes the entry to a file.

While an entry is open, these methods describe it:

- `entry_uncomp_size()` and `entry_comp_size()`
- `entry_crc32()`
- `entry_header_offset()` and `entry_dir_offset()`
- `entry_index()`

The CRC and size of each entry are checked as its data is read.

## Appending and deleting

Open with mode `"a"` to add entries to an existing archive. Open with mode
`"d"` to remove entries:

```python
with open_zip("out.zip", 0, "d") as zip:
    removed = zip.entries_delete(["docs/readme.txt"])
    removed += zip.entries_delete_by_index([0])
```

Both delete methods return how many entries were removed. Names and indices
that match no entry are ignored. The data of later entries is moved forward,
and the file is shortened when the archive is closed.

## In-memory archives

```python
from ministream_zip.archive import open_stream

with open_stream(None, 6, "w") as zip:
    zip.entry_open("hello.txt")
    zip.entry_write(b"hello")
    zip.entry_close()
    payload = zip.stream_copy()

with open_stream(payload, 0, "r") as zip:
    zip.entry_open("hello.txt")
    assert zip.entry_read() == b"hello"
```

`open_cstream(fileobj, level, mode)` works on a binary file object that is
already open. Closing the archive leaves that file open.

An archive may follow other data in a file. When writing through
`open_cstream`, the archive starts at the file's current position. When
reading, `offset()` reports where the archive begins.

## Whole-archive helpers

```python
from ministream_zip.extract import create, extract, stream_extract

create("bundle.zip", ["a.txt", "b.txt"])
extract("bundle.zip", "outdir", lambda path: print("extracted", path))
stream_extract(payload, "outdir", None)
```

`create` stores each file under its base name.

The extract helpers create any directories they need. The callback is given
each extracted path. If it returns a negative number, extraction stops.

Names are cleaned up before extraction: leading slashes and components made
only of dots (such as `..`) are dropped. No entry can therefore be written
outside the target directory.

## What is not supported

- Only stored and deflated entries can be read.
- Encrypted entries are refused.
- Archives split over several disks are refused.
- There is no command-line tool; the package is a library only.

## Errors

Failures raise `ministream_zip.errors.ZipError`. Its `code` attribute is an
`ErrorCode` member, such as `ErrorCode.ENOENT` when an entry is not found, and
its `message` attribute describes the failure.

`strerror(code)` returns the standard message for a code, or `None` if that
code has none.