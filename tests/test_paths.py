import os

import pytest

from ministream_zip.errors import ErrorCode, ZipError
from ministream_zip.paths import basename, make_path, normalize_name, to_archive_name


@pytest.mark.parametrize(
    "name, expected",
    [
        (
            "/../../../../../../../../../../../../../../../../../../../../../../../"
            "../../../../../../../../../../../../../../../../../tmp/evil.txt",
            "tmp/evil.txt",
        ),
        ("../.ala/ala/...c.../../", ".ala/ala/...c.../"),
        ("../evil.txt/.al", "evil.txt/.al"),
        ("/.././.../a..../..../..a./.aaaa", "a..../..a./.aaaa"),
    ],
)
def test_normalize(name, expected):
    assert normalize_name(name) == expected


def test_normalize_keeps_plain_names():
    assert normalize_name("test/test-1.txt") == "test/test-1.txt"
    assert normalize_name("empty/") == "empty/"


def test_normalize_collapses_repeated_slashes():
    assert normalize_name("a//b") == "a/b"


def test_normalize_dots_only_gives_empty():
    assert normalize_name("../..") == ""


def test_normalize_empty_raises():
    with pytest.raises(ZipError) as info:
        normalize_name("")
    assert info.value.code == ErrorCode.EINVENTNAME


def test_normalize_is_idempotent():
    for name in ["../a/./b/..c", "//x\\..\\y", "dotfiles/.test"]:
        once = normalize_name(name)
        if once:
            assert normalize_name(once) == once


def test_basename_forward_slash():
    assert basename("/a/b/c.txt") == "c.txt"


def test_basename_backslash():
    assert basename("dir\\file.bin") == "file.bin"


def test_basename_no_slash():
    assert basename("plain.txt") == "plain.txt"


def test_basename_all_slashes():
    assert basename("///") == "/"


def test_basename_trailing_slash():
    assert basename("dir/") == ""


def test_to_archive_name_replaces_backslashes():
    assert to_archive_name("test\\test-2.txt") == "test/test-2.txt"
    assert to_archive_name("test\\empty/") == "test/empty/"


def test_to_archive_name_empty_raises():
    with pytest.raises(ZipError) as info:
        to_archive_name("")
    assert info.value.code == ErrorCode.EINVENTNAME


def test_make_path_creates_parents(tmp_path):
    target = os.path.join(str(tmp_path), "x", "y", "file.txt")
    result = make_path(target)
    assert os.path.isdir(os.path.join(str(tmp_path), "x", "y"))
    assert not os.path.exists(os.path.join(str(tmp_path), "x", "y", "file.txt"))
    assert result.endswith("file.txt")


def test_make_path_existing_directories(tmp_path):
    (tmp_path / "a").mkdir()
    target = os.path.join(str(tmp_path), "a", "b", "c")
    result = make_path(target)
    assert result.endswith("c")
    assert (tmp_path / "a" / "b").is_dir()
    assert not (tmp_path / "a" / "b" / "c").exists()


def test_make_path_backslash_separators(tmp_path):
    target = str(tmp_path) + "/p\\q\\r.txt"
    result = make_path(target)
    assert result.endswith("r.txt")
    assert (tmp_path / "p" / "q").is_dir()


def test_make_path_through_file_raises(tmp_path):
    (tmp_path / "f").write_bytes(b"data")
    target = os.path.join(str(tmp_path), "f", "sub", "x")
    with pytest.raises(ZipError) as info:
        make_path(target)
    assert info.value.code == ErrorCode.EMKDIR