"""Tests for cache folder discovery and cached method calls."""

from __future__ import annotations

import logging

import pytest

import streams as s
from typed_cache.descriptors import SqliteDescriptorStore
from typed_cache.errors import CacheReadError, DescriptorStoreUnavailable, UnknownTypeTag
from typed_cache.manager import CacheManager, cached_call_from_values
from typed_cache.values import Value


def _call(service: str, method: str, *args: bytes, payload: bytes = b"\x01") -> bytes:
    key = s.tuple_(s.string(service), s.string(method), *args)
    return s.stream(s.tuple_(key, payload))


@pytest.fixture
def machonet(tmp_path):
    """Create a machonet folder with calls, a non-call file and a corrupt file."""
    root = tmp_path / "machonet"
    calls = root / "CachedMethodCalls"
    objects = root / "CachedObjects"
    calls.mkdir(parents=True)
    objects.mkdir()
    (calls / "a.cache").write_bytes(_call("marketProxy", "GetOrders", s.integer(34), payload=s.list_()))
    (calls / "b.cache").write_bytes(_call("charMgr", "GetPublicInfo", s.integer(90000001)))
    (calls / "bad.cache").write_bytes(b"\x7e\x00\x00\x00\x00\x00")
    (calls / "notes.txt").write_bytes(b"ignored")
    (objects / "c.cache").write_bytes(_call("config", "GetUnits"))
    (objects / "plain.cache").write_bytes(s.stream(s.integer(5)))
    return root


class TestCachedCall:
    """Test cached call recognition."""

    def test_from_values(self, tmp_path):
        values = [Value.from_python((("svc", "Method", 1, "x"), [1, 2]))]
        call = cached_call_from_values(tmp_path / "f.cache", values)
        assert call.service == "svc"
        assert call.method == "Method"
        assert [a.data for a in call.arguments] == [1, "x"]
        assert call.payload.to_python() == [1, 2]
        assert call.rows() == []

    @pytest.mark.parametrize(
        "obj",
        [
            [1],
            [(1, 2, 3)],
            [(("svc",), None)],
            [((1, "Method"), None)],
            [(("svc", "Method"), None), 2],
        ],
    )
    def test_not_a_call(self, tmp_path, obj):
        values = [Value.from_python(v) for v in obj]
        assert cached_call_from_values(tmp_path / "f.cache", values) is None


class TestCacheManager:
    """Test cache folder scanning and decoding."""

    def test_cache_files(self, machonet):
        """Only *.cache files are listed, in a stable order."""
        manager = CacheManager([machonet])
        names = [p.relative_to(machonet).as_posix() for p in manager.cache_files()]
        assert names == [
            "CachedMethodCalls/a.cache",
            "CachedMethodCalls/b.cache",
            "CachedMethodCalls/bad.cache",
            "CachedObjects/c.cache",
            "CachedObjects/plain.cache",
        ]

    def test_parse_machonet(self, machonet, caplog):
        """Readable calls are kept in file order; unreadable files are recorded."""
        manager = CacheManager([machonet], workers=3)
        with caplog.at_level(logging.WARNING, logger="typed_cache.manager"):
            calls = manager.parse_machonet()

        assert [c.method for c in calls] == ["GetOrders", "GetPublicInfo", "GetUnits"]
        assert manager.streams == calls
        assert calls[0].arguments == (Value.integer(34),)

        assert len(manager.errors) == 1
        error = manager.errors[0]
        assert isinstance(error, CacheReadError)
        assert isinstance(error.cause, UnknownTypeTag)
        assert error.source.endswith("bad.cache")
        assert "bad.cache" in caplog.text

    def test_folder_filter(self, machonet):
        manager = CacheManager([machonet])
        manager.add_cache_folder_filter("CachedObjects")
        calls = manager.parse_machonet()
        assert [c.method for c in calls] == ["GetUnits"]
        assert manager.errors == []

    def test_method_filter(self, machonet):
        manager = CacheManager([machonet])
        manager.add_method_filter("GetOrders")
        manager.add_method_filter("GetUnits")
        assert [c.method for c in manager.parse_machonet()] == ["GetOrders", "GetUnits"]

    def test_reparse_resets_state(self, machonet):
        manager = CacheManager([machonet])
        manager.parse_machonet()
        manager.add_cache_folder_filter("CachedObjects")
        manager.parse_machonet()
        assert len(manager.streams) == 1
        assert manager.errors == []

    def test_unavailable_descriptor_store(self, machonet, tmp_path, caplog):
        """A broken descriptor store fails only the files that need it."""
        keyval = s.obj(s.string("util.KeyVal"), s.tuple_(s.integer(1)))
        (machonet / "CachedObjects" / "keyval.cache").write_bytes(_call("config", "GetKeyVal", payload=keyval))
        manager = CacheManager([machonet], SqliteDescriptorStore(tmp_path / "missing.db"))
        with caplog.at_level(logging.WARNING, logger="typed_cache.manager"):
            calls = manager.parse_machonet()

        assert [c.method for c in calls] == ["GetOrders", "GetPublicInfo", "GetUnits"]
        causes = {type(e.cause) for e in manager.errors}
        assert causes == {UnknownTypeTag, DescriptorStoreUnavailable}
        assert "keyval.cache" in caplog.text

    def test_missing_path(self, tmp_path, caplog):
        manager = CacheManager([tmp_path / "absent"])
        with caplog.at_level(logging.WARNING, logger="typed_cache.manager"):
            assert manager.parse_machonet() == []
        assert "not a directory" in caplog.text

    def test_single_worker(self, machonet):
        """A worker count below one still reads files."""
        manager = CacheManager([machonet], workers=0)
        assert len(manager.parse_machonet()) == 3
