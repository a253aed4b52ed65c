"""
Object storage abstraction for published builds.

file://   local filesystem, one file per object plus a ``.meta.json`` sidecar
memory:// in-process dict, for tests and dry runs

Design principle: treat storage as a URI, not a boolean. The S3-compatible
service used in production is an external collaborator that implements the
same ``ObjectStore`` contract.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

from .errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
METADATA_SUFFIX = ".meta.json"
SHA256_METADATA_KEY = "sha256"


@dataclass(frozen=True)
class StoredObject:
    """Object bytes plus the content type they were uploaded with."""

    data: bytes
    content_type: str


@dataclass(frozen=True)
class StoredObjectMetadata:
    """What a caller needs to verify an object without downloading it."""

    size_bytes: int
    content_type: str
    sha256: str


@dataclass(frozen=True)
class StoredObjectListItem:
    key: str
    size_bytes: int
    modified_at: datetime


def normalize_key(key: str) -> str:
    """Normalize an object key to forward slashes without a leading slash.

    Raises:
        ValueError: If the key is empty or contains a '..' segment
    """
    normalized = (key or "").strip().replace("\\", "/").lstrip("/")
    segments = [segment for segment in normalized.split("/") if segment]
    if not segments:
        raise ValueError("Object key must not be empty.")
    if any(segment == ".." for segment in segments):
        raise ValueError(f"Object key '{key}' cannot contain '..' segments.")
    return "/".join(segments)


def sha256_hex(data: bytes) -> str:
    """Lowercase hex SHA-256 of ``data``."""
    return hashlib.sha256(data).hexdigest().lower()


class ObjectStore(ABC):
    """Abstract key/value blob store.

    Keys compare case-insensitively. Uploading an existing key overwrites it.
    """

    @abstractmethod
    def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Store ``data`` under ``key``."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[StoredObject]:
        """Return the object, or None if it does not exist."""
        pass

    @abstractmethod
    def get_metadata(self, key: str) -> Optional[StoredObjectMetadata]:
        """Return size, content type and SHA-256 without the body."""
        pass

    @abstractmethod
    def list_by_prefix(self, prefix: str) -> List[StoredObjectListItem]:
        """List objects whose key starts with ``prefix`` (case-insensitive)."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Missing keys are ignored."""
        pass

    @abstractmethod
    def get_uri(self) -> str:
        """Get the URI this store was created from."""
        pass


class FileObjectStore(ObjectStore):
    """Local filesystem object store (file:// URIs).

    Keys compare case-insensitively: a key that differs from a stored one only
    in case resolves to the same file.

    Structure:
        {root}/
        ├── clients/{slug}/{build_id}/...     # uploaded file content
        ├── clients/.../mods/a.jar.meta.json  # content type + metadata sidecar
        └── manifests/{slug}/latest.json
    """

    def __init__(self, root: Path):
        """Initialize with the directory that holds all objects.

        Args:
            root: Directory for object files; created if missing
        """
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Write the object atomically, then its metadata sidecar."""
        object_path = self._object_path(key)
        document = {
            "contentType": (content_type or "").strip() or DEFAULT_CONTENT_TYPE,
            "metadata": {
                name.strip(): value.strip()
                for name, value in (metadata or {}).items()
                if name and name.strip() and value and value.strip()
            },
        }
        try:
            object_path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(object_path, data)
            _atomic_write(
                _metadata_path(object_path),
                json.dumps(document, indent=2).encode("utf-8"),
            )
        except OSError as e:
            raise StorageError(f"Failed to upload '{key}': {e}") from e

    def get(self, key: str) -> Optional[StoredObject]:
        """Read an object and its content type."""
        object_path = self._object_path(key)
        try:
            data = object_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e

        document = _read_metadata(object_path)
        return StoredObject(data=data, content_type=_content_type_of(document))

    def get_metadata(self, key: str) -> Optional[StoredObjectMetadata]:
        """Return object metadata, hashing the body only if no hash was stored."""
        object_path = self._object_path(key)
        try:
            size_bytes = object_path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to stat '{key}': {e}") from e

        document = _read_metadata(object_path)
        stored_sha = (document or {}).get("metadata", {}).get(SHA256_METADATA_KEY, "")
        if stored_sha.strip():
            sha = stored_sha.strip().lower()
        else:
            try:
                sha = _hash_file(object_path)
            except OSError as e:
                raise StorageError(f"Failed to hash '{key}': {e}") from e

        return StoredObjectMetadata(
            size_bytes=size_bytes,
            content_type=_content_type_of(document),
            sha256=sha,
        )

    def list_by_prefix(self, prefix: str) -> List[StoredObjectListItem]:
        """List objects under ``prefix``; sidecars are not objects."""
        wanted = (prefix or "").strip().replace("\\", "/").lstrip("/").casefold()
        items: List[StoredObjectListItem] = []
        for directory_path, _, file_names in os.walk(self.root):
            for file_name in file_names:
                if file_name.endswith(METADATA_SUFFIX) or file_name.endswith(".tmp"):
                    continue
                full_path = Path(directory_path) / file_name
                key = full_path.relative_to(self.root).as_posix()
                if not key.casefold().startswith(wanted):
                    continue
                try:
                    stat_result = full_path.stat()
                except FileNotFoundError:
                    # Deleted while listing
                    continue
                items.append(
                    StoredObjectListItem(
                        key=key,
                        size_bytes=stat_result.st_size,
                        modified_at=datetime.fromtimestamp(
                            stat_result.st_mtime, tz=timezone.utc
                        ),
                    )
                )
        items.sort(key=lambda item: item.key.casefold())
        return items

    def delete(self, key: str) -> None:
        """Remove the object and its sidecar."""
        object_path = self._object_path(key)
        try:
            object_path.unlink(missing_ok=True)
            _metadata_path(object_path).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e

    def get_uri(self) -> str:
        """Get the full URI of this object store."""
        return f"file://{self.root}"

    def _object_path(self, key: str) -> Path:
        """Map a key to its file, reusing any existing path that differs only in case."""
        current = self.root
        for part in normalize_key(key).split("/"):
            current = _match_child(current, part)
        full_path = current.resolve()
        if full_path != self.root and self.root not in full_path.parents:
            raise ValueError(f"Object key '{key}' escapes the storage root.")
        return full_path


class MemoryObjectStore(ObjectStore):
    """Thread-safe in-process object store (memory:// URIs)."""

    def __init__(self):
        self._objects: Dict[str, "_MemoryEntry"] = {}
        self._lock = threading.Lock()

    def upload(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        normalized = normalize_key(key)
        entry = _MemoryEntry(
            key=normalized,
            data=bytes(data),
            content_type=(content_type or "").strip() or DEFAULT_CONTENT_TYPE,
            metadata=dict(metadata or {}),
            modified_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._objects[normalized.casefold()] = entry

    def get(self, key: str) -> Optional[StoredObject]:
        entry = self._entry(key)
        if entry is None:
            return None
        return StoredObject(data=entry.data, content_type=entry.content_type)

    def get_metadata(self, key: str) -> Optional[StoredObjectMetadata]:
        entry = self._entry(key)
        if entry is None:
            return None
        sha = entry.metadata.get(SHA256_METADATA_KEY, "").strip().lower()
        return StoredObjectMetadata(
            size_bytes=len(entry.data),
            content_type=entry.content_type,
            sha256=sha or sha256_hex(entry.data),
        )

    def list_by_prefix(self, prefix: str) -> List[StoredObjectListItem]:
        wanted = (prefix or "").strip().replace("\\", "/").lstrip("/").casefold()
        with self._lock:
            entries = [
                entry
                for folded, entry in self._objects.items()
                if folded.startswith(wanted)
            ]
        return sorted(
            (
                StoredObjectListItem(
                    key=entry.key,
                    size_bytes=len(entry.data),
                    modified_at=entry.modified_at,
                )
                for entry in entries
            ),
            key=lambda item: item.key.casefold(),
        )

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(normalize_key(key).casefold(), None)

    def keys(self) -> List[str]:
        """Return every stored key (original casing)."""
        with self._lock:
            return [entry.key for entry in self._objects.values()]

    def get_uri(self) -> str:
        return "memory://"

    def _entry(self, key: str) -> Optional["_MemoryEntry"]:
        with self._lock:
            return self._objects.get(normalize_key(key).casefold())


@dataclass
class _MemoryEntry:
    key: str
    data: bytes
    content_type: str
    metadata: Dict[str, str] = field(default_factory=dict)
    modified_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _match_child(directory: Path, name: str) -> Path:
    """``directory / name``, or an existing entry whose name differs only in case."""
    exact = directory / name
    if exact.exists() or not directory.is_dir():
        return exact
    wanted = name.casefold()
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.name.casefold() == wanted:
                    return directory / entry.name
    except FileNotFoundError:
        pass
    return exact


def _metadata_path(object_path: Path) -> Path:
    return object_path.with_name(object_path.name + METADATA_SUFFIX)


def _atomic_write(path: Path, content: bytes) -> None:
    temp_path = path.with_name(path.name + ".tmp")
    temp_path.write_bytes(content)
    os.replace(temp_path, path)


def _read_metadata(object_path: Path) -> Optional[dict]:
    """Read a sidecar; an unreadable sidecar is treated as absent."""
    try:
        document = json.loads(_metadata_path(object_path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable metadata for {object_path}: {e}")
        return None
    return document if isinstance(document, dict) else None


def _content_type_of(document: Optional[dict]) -> str:
    content_type = (document or {}).get("contentType") or ""
    return content_type.strip() or DEFAULT_CONTENT_TYPE


def _hash_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest().lower()


def create_object_store(uri: str) -> ObjectStore:
    """Factory function to create the appropriate ObjectStore from a URI.

    Args:
        uri: Store URI (e.g., "file:///var/lib/launcher/storage", "file://./storage",
            "memory://")

    Returns:
        ObjectStore instance for the given URI scheme

    Raises:
        ValueError: If URI scheme is not supported
    """
    parsed = urlparse(uri)

    if parsed.scheme == "file":
        # file://./storage -> netloc "." + path "/storage"
        path = f"{parsed.netloc}{parsed.path}" if parsed.netloc else parsed.path
        if not path:
            raise ValueError(f"file:// URI needs a path: {uri}")
        return FileObjectStore(Path(path))

    elif parsed.scheme == "memory":
        return MemoryObjectStore()

    else:
        raise ValueError(
            f"Unsupported storage scheme: {parsed.scheme!r}. "
            f"Supported: file://, memory://"
        )
