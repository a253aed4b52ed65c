"""
Tests for the object store adapters.
"""

import hashlib
import json

import pytest

from launcher_publisher.storage import (
    FileObjectStore,
    MemoryObjectStore,
    create_object_store,
    normalize_key,
)


class TestNormalizeKey:
    def test_backslashes_and_leading_slash(self):
        assert normalize_key("\\clients\\spicetech\\a.txt") == "clients/spicetech/a.txt"
        assert normalize_key("/manifests//x.json") == "manifests/x.json"

    def test_rejects_empty(self):
        with pytest.raises(ValueError):
            normalize_key("  / ")

    def test_rejects_traversal(self):
        with pytest.raises(ValueError):
            normalize_key("clients/../secrets")


class TestFileObjectStore:
    """Tests for the file:// adapter."""

    def test_upload_writes_object_and_sidecar(self, tmp_path):
        store = FileObjectStore(tmp_path)
        store.upload("clients/p/b1/mods/a.jar", b"jar", "application/java-archive", {"sha256": "ABC"})

        object_path = tmp_path / "clients/p/b1/mods/a.jar"
        assert object_path.read_bytes() == b"jar"
        sidecar = json.loads((tmp_path / "clients/p/b1/mods/a.jar.meta.json").read_text())
        assert sidecar["contentType"] == "application/java-archive"
        assert sidecar["metadata"] == {"sha256": "ABC"}
        assert not list(tmp_path.rglob("*.tmp"))

    def test_get_returns_bytes_and_content_type(self, tmp_path):
        store = FileObjectStore(tmp_path)
        store.upload("a/b.json", b"{}", "application/json")

        stored = store.get("a/b.json")
        assert stored.data == b"{}"
        assert stored.content_type == "application/json"
        assert store.get("missing.json") is None

    def test_get_metadata_prefers_stored_hash(self, tmp_path):
        store = FileObjectStore(tmp_path)
        store.upload("runtime.zip", b"zip", "application/zip", {"sha256": "DEADBEEF"})

        metadata = store.get_metadata("runtime.zip")
        assert metadata.sha256 == "deadbeef"
        assert metadata.size_bytes == 3

    def test_get_metadata_hashes_when_sidecar_lacks_hash(self, tmp_path):
        store = FileObjectStore(tmp_path)
        (tmp_path / "raw.bin").write_bytes(b"payload")

        metadata = store.get_metadata("raw.bin")
        assert metadata.sha256 == hashlib.sha256(b"payload").hexdigest()
        assert metadata.content_type == "application/octet-stream"
        assert store.get_metadata("nope.bin") is None

    def test_list_by_prefix_is_case_insensitive_and_skips_sidecars(self, tmp_path):
        store = FileObjectStore(tmp_path)
        store.upload("Manifests/p/1.json", b"1", "application/json")
        store.upload("manifests/p/latest.json", b"2", "application/json")
        store.upload("clients/p/1/a.txt", b"3", "text/plain")

        keys = [item.key for item in store.list_by_prefix("MANIFESTS/p/")]
        assert keys == ["Manifests/p/1.json", "Manifests/p/latest.json"]

    def test_keys_compare_case_insensitively(self, tmp_path):
        store = FileObjectStore(tmp_path)
        store.upload("Clients/P/A.txt", b"1", "text/plain", {"sha256": "abc"})
        store.upload("clients/p/a.txt", b"2", "text/plain", {"sha256": "def"})

        assert [item.key for item in store.list_by_prefix("")] == ["Clients/P/A.txt"]
        assert store.get("CLIENTS/p/a.TXT").data == b"2"
        assert store.get_metadata("clients/P/a.txt").sha256 == "def"

        store.delete("clients/p/a.txt")
        assert store.get("Clients/P/A.txt") is None
        assert not (tmp_path / "Clients/P/A.txt.meta.json").exists()

    def test_upload_overwrites(self, tmp_path):
        store = FileObjectStore(tmp_path)
        store.upload("k.txt", b"old", "text/plain")
        store.upload("k.txt", b"new", "text/plain")
        assert store.get("k.txt").data == b"new"

    def test_delete_removes_sidecar_and_ignores_missing(self, tmp_path):
        store = FileObjectStore(tmp_path)
        store.upload("k.txt", b"x", "text/plain")
        store.delete("k.txt")
        store.delete("k.txt")

        assert store.get("k.txt") is None
        assert not (tmp_path / "k.txt.meta.json").exists()


class TestMemoryObjectStore:
    def test_keys_compare_case_insensitively(self):
        store = MemoryObjectStore()
        store.upload("Clients/A.txt", b"1", "text/plain")
        store.upload("clients/a.txt", b"2", "text/plain")

        assert len(store.keys()) == 1
        assert store.get("CLIENTS/A.TXT").data == b"2"

    def test_metadata_falls_back_to_hash(self):
        store = MemoryObjectStore()
        store.upload("a", b"abc", "")

        metadata = store.get_metadata("a")
        assert metadata.sha256 == hashlib.sha256(b"abc").hexdigest()
        assert metadata.content_type == "application/octet-stream"


class TestCreateObjectStore:
    def test_file_uri(self, tmp_path):
        store = create_object_store(f"file://{tmp_path}")
        assert isinstance(store, FileObjectStore)
        assert store.root == tmp_path.resolve()
        assert store.get_uri() == f"file://{tmp_path.resolve()}"

    def test_relative_file_uri(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = create_object_store("file://./storage")
        assert store.root == (tmp_path / "storage").resolve()

    def test_memory_uri(self):
        store = create_object_store("memory://")
        assert isinstance(store, MemoryObjectStore)
        assert store.get_uri() == "memory://"

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported storage scheme"):
            create_object_store("s3://bucket/prefix")
