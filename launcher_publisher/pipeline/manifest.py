"""
Manifest document assembly.

The manifest is the installer-facing description of one build. It is
serialized as compact camelCase JSON; optional fields that have no value are
left out instead of being written as null.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .loaders import LaunchProfile

MANIFEST_CONTENT_TYPE = "application/json"

_CONTENT_TYPES = {
    ".json": "application/json",
    ".txt": "text/plain",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".jar": "application/java-archive",
    ".jar2": "application/java-archive",
    ".zip": "application/zip",
}


def infer_content_type(path: str) -> str:
    """Map a file extension to the content type uploaded with it."""
    return _CONTENT_TYPES.get(PurePosixPath(path).suffix.lower(), "application/octet-stream")


def file_key(slug: str, build_id: str, relative_path: str) -> str:
    return f"clients/{slug}/{build_id}/{relative_path}"


def build_manifest_key(slug: str, build_id: str) -> str:
    return f"manifests/{slug}/{build_id}.json"


def latest_manifest_key(slug: str) -> str:
    return f"manifests/{slug}/latest.json"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class ManifestFile(_CamelModel):
    """One published file. ``sha256`` is the hash of exactly the uploaded bytes."""

    path: str
    sha256: str
    size: int = Field(..., ge=0)
    s3_key: str = Field(..., alias="s3Key")


class Manifest(_CamelModel):
    """Installer-facing description of a build."""

    profile_slug: str
    build_id: str
    loader_type: str
    mc_version: str
    client_version: str
    created_at_utc: datetime
    jvm_args_default: str
    game_args_default: str
    java_runtime: Optional[str] = None
    java_runtime_artifact_key: Optional[str] = None
    java_runtime_artifact_sha256: Optional[str] = None
    java_runtime_artifact_size_bytes: Optional[int] = None
    java_runtime_artifact_content_type: Optional[str] = None
    files: List[ManifestFile]
    launch_mode: str = "jar"
    launch_main_class: Optional[str] = None
    launch_classpath: Optional[List[str]] = None

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes) -> "Manifest":
        return cls.model_validate_json(data)


@dataclass(frozen=True)
class RuntimeArtifact:
    """Bundled Java runtime published separately from the build files."""

    key: Optional[str] = None
    sha256: Optional[str] = None
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None


class ManifestAssembler:
    """Builds a Manifest from profile metadata and the ordered file list."""

    def assemble(
        self,
        *,
        profile_slug: str,
        build_id: str,
        loader_type: str,
        mc_version: str,
        client_version: str,
        jvm_args_default: str,
        game_args_default: str,
        files: Sequence[ManifestFile],
        launch_profile: LaunchProfile,
        java_runtime: Optional[str] = None,
        runtime_artifact: Optional[RuntimeArtifact] = None,
        created_at: Optional[datetime] = None,
    ) -> Manifest:
        """Assemble the manifest; file order is kept exactly as given.

        Raises:
            ValueError: If two files share a path (case-insensitive)
        """
        seen = set()
        for manifest_file in files:
            folded = manifest_file.path.casefold()
            if folded in seen:
                raise ValueError(f"Duplicate manifest path '{manifest_file.path}'.")
            seen.add(folded)

        runtime = runtime_artifact or RuntimeArtifact()
        is_main_class = launch_profile.mode == "mainclass"

        return Manifest(
            profile_slug=profile_slug,
            build_id=build_id,
            loader_type=loader_type,
            mc_version=mc_version,
            client_version=client_version,
            created_at_utc=created_at or datetime.now(timezone.utc),
            jvm_args_default=jvm_args_default,
            game_args_default=game_args_default,
            java_runtime=java_runtime or None,
            java_runtime_artifact_key=runtime.key or None,
            java_runtime_artifact_sha256=runtime.sha256 or None,
            java_runtime_artifact_size_bytes=runtime.size_bytes or None,
            java_runtime_artifact_content_type=runtime.content_type or None,
            files=list(files),
            launch_mode=launch_profile.mode,
            launch_main_class=launch_profile.main_class if is_main_class else None,
            launch_classpath=list(launch_profile.classpath) if is_main_class else None,
        )
