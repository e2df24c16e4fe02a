"""Tests for cache files and buffers."""

from __future__ import annotations

import pytest

import streams as s
from typed_cache.ado import AdoType, Descriptor
from typed_cache.cachefile import CacheBuffer, CacheFile, iter_rows, read_cache_file
from typed_cache.descriptors import SqliteDescriptorStore
from typed_cache.errors import (
    CacheReadError,
    CannotOpenBuffer,
    CannotOpenFile,
    DescriptorStoreUnavailable,
    FileAccessError,
    UnknownTypeTag,
)
from typed_cache.rows import Row
from typed_cache.values import Instance, Value

COLUMNS = [("id", AdoType.I4), ("label", AdoType.STR)]


@pytest.fixture
def cache_path(tmp_path):
    """Write a cache file holding a rowset-like tuple of packed rows."""
    descriptor = Descriptor.from_pairs("x", COLUMNS)
    rows = [
        s.packed_row(
            s.descriptor(COLUMNS, shared=True) if i == 0 else s.ref(1),
            s.pack_fields(descriptor, {"id": i}),
            [s.string(f"row{i}")],
        )
        for i in range(3)
    ]
    data = s.stream(s.tuple_(s.string("header"), s.list_(*rows)), share_map=[1])
    path = tmp_path / "rows.cache"
    path.write_bytes(data)
    return path


class TestCacheFile:
    """Test opening and closing cache files."""

    def test_open_and_close(self, cache_path):
        cache_file = CacheFile.open(cache_path)
        assert not cache_file.closed
        assert cache_file.fileno() >= 0
        cache_file.close()
        assert cache_file.closed
        cache_file.close()
        with pytest.raises(ValueError):
            cache_file.fileno()

    def test_context_manager(self, cache_path):
        with CacheFile.open(cache_path) as cache_file:
            assert cache_file.path == cache_path
        assert cache_file.closed

    def test_missing_file(self, tmp_path):
        """A path that cannot be opened raises CannotOpenFile."""
        with pytest.raises(CannotOpenFile):
            CacheFile.open(tmp_path / "missing.cache")

    def test_directory(self, tmp_path):
        with pytest.raises(FileAccessError):
            CacheFile.open(tmp_path)


class TestCacheBuffer:
    """Test reading and decoding cache buffers."""

    def test_from_file(self, cache_path):
        with CacheFile.open(cache_path) as cache_file:
            buffer = CacheBuffer.from_file(cache_file)
        assert len(buffer) == cache_path.stat().st_size
        assert buffer.source == str(cache_path)

    def test_empty_file(self, tmp_path):
        """An empty file cannot be mapped."""
        path = tmp_path / "empty.cache"
        path.write_bytes(b"")
        with CacheFile.open(path) as cache_file:
            with pytest.raises(CannotOpenBuffer):
                CacheBuffer.from_file(cache_file)

    def test_closed_file(self, cache_path):
        cache_file = CacheFile.open(cache_path)
        cache_file.close()
        with pytest.raises(CannotOpenBuffer):
            CacheBuffer.from_file(cache_file)

    def test_decode_all(self, cache_path):
        (value,) = read_cache_file(cache_path)
        header, rows = value.items
        assert header == Value.string("header")
        assert [row.data.as_dict() for row in rows.items] == [
            {"id": 0, "label": "row0"},
            {"id": 1, "label": "row1"},
            {"id": 2, "label": "row2"},
        ]

    def test_decode_twice_equal(self, cache_path):
        """Decoding is repeatable: each pass starts from a fresh share table."""
        with CacheFile.open(cache_path) as cache_file:
            buffer = CacheBuffer.from_file(cache_file)
        assert buffer.decode_all() == buffer.decode_all()

    def test_rows(self, cache_path):
        with CacheFile.open(cache_path) as cache_file:
            rows = CacheBuffer.from_file(cache_file).rows()
        assert [row.get("id") for row in rows] == [0, 1, 2]

    def test_read_error_wraps_cause(self, tmp_path):
        """Decoding failures surface as CacheReadError with the cause kept."""
        path = tmp_path / "bad.cache"
        path.write_bytes(s.stream(s.tuple_(s.integer(1), b"\x00")))
        with pytest.raises(CacheReadError) as exc_info:
            read_cache_file(path)
        exc = exc_info.value
        assert isinstance(exc.cause, UnknownTypeTag)
        assert exc.offset == 5 + 3
        assert exc.source == str(path)
        assert str(path) in str(exc)

    def test_unavailable_descriptor_store(self, tmp_path):
        """A descriptor database that cannot be read surfaces as CacheReadError."""
        data = s.stream(s.obj(s.string("util.KeyVal"), s.tuple_(s.integer(1))))
        buffer = CacheBuffer(data, SqliteDescriptorStore(tmp_path / "missing.db"), source="keyval")
        with pytest.raises(CacheReadError) as exc_info:
            buffer.decode_all()
        assert isinstance(exc_info.value.cause, DescriptorStoreUnavailable)
        assert exc_info.value.source == "keyval"

    def test_keep_refs_option(self, tmp_path):
        path = tmp_path / "refs.cache"
        path.write_bytes(s.stream(s.tuple_(s.list_(shared=True), s.ref(1)), share_map=[1]))
        (value,) = read_cache_file(path, keep_refs=True)
        assert value.items[1] == Value.shared_ref(1)


class TestIterRows:
    """Test row discovery in value graphs."""

    def test_depth_first_order(self):
        """Rows are found in stream order, including inside instances and dicts."""
        descriptor = Descriptor.from_pairs("d", [("n", AdoType.I4)])
        rows = [Row(descriptor, (Value.integer(i),)) for i in range(4)]
        graph = [
            Value.tuple_of((Value.object_of(rows[0]), Value.dict_of([(Value.string("k"), Value.object_of(rows[1]))]))),
            Value.instance_of(Instance("x.Y", Value.object_of(rows[2]), items=(Value.object_of(rows[3]),))),
        ]
        assert list(iter_rows(graph)) == rows
