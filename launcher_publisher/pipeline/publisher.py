"""
Artifact publisher: turns a profile's source tree into a published build.

Flow of ``rebuild_profile``:
1. Validate the request and resolve every value (no side effects yet)
2. Start a running build in the ledger
3. Resolve source layers and list files
4. Read, hash and upload each file (bounded thread pool)
5. Assemble the manifest and upload it under the build key, then latest.json
6. Commit the build and the profile pointers in one transaction

Any failure in steps 3-5 marks the build failed and leaves the profile's
pointers and latest.json untouched. A failed commit in step 6 also marks the
build failed, but latest.json has already moved by then.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import Settings
from ..db.models import BuildModel, ProfileModel, ServerModel, generate_ulid
from ..db.services import BuildLedger
from ..errors import (
    BuildCancelledError,
    BuildFailedError,
    NotFoundError,
    PersistenceError,
    PublisherError,
    SourceNotFoundError,
    StorageError,
    ValidationError,
)
from ..schemas import ProfileRebuildRequest
from ..storage import SHA256_METADATA_KEY, ObjectStore, sha256_hex
from .loaders import (
    LaunchProfile,
    normalize_loader,
    normalize_relative_path,
    require_supported_loader,
    resolve_launch_profile,
)
from .manifest import (
    MANIFEST_CONTENT_TYPE,
    ManifestAssembler,
    ManifestFile,
    RuntimeArtifact,
    build_manifest_key,
    file_key,
    infer_content_type,
    latest_manifest_key,
)
from .scanner import ContentScanner, ServerRef, SourceEntry

logger = structlog.get_logger()

DEFAULT_MC_VERSION = "1.21.1"
HARD_DEFAULT_JVM_ARGS = "-Xms1024M -Xmx2048M"


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a rebuild."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise BuildCancelledError()


def _resolve_value(*candidates: Optional[str]) -> str:
    """First non-blank candidate, trimmed."""
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


def _resolve_runtime_path(preferred: Optional[str], fallback: Optional[str]) -> Optional[str]:
    selected = _resolve_value(preferred, fallback)
    if not selected:
        return None
    if Path(selected).is_absolute() or selected.startswith(("/", "\\")):
        raise ValidationError(
            "javaRuntimePath must be relative to the instance directory.",
            field="javaRuntimePath",
        )
    return normalize_relative_path(selected, "javaRuntimePath") or None


def _resolve_runtime_key(preferred: Optional[str], fallback: Optional[str]) -> Optional[str]:
    selected = _resolve_value(preferred, fallback)
    normalized = selected.replace("\\", "/").lstrip("/")
    return normalized or None


@dataclass(frozen=True)
class _ResolvedRebuild:
    """Values fixed during validation, before the build row exists."""

    loader_type: str
    mc_version: str
    client_version: str
    jvm_args: str
    game_args: str
    java_runtime: Optional[str]
    runtime_artifact: RuntimeArtifact
    launch_profile: LaunchProfile
    source_sub_path: Optional[str]
    servers: List[ServerRef]


class ArtifactPublisher:
    """Builds and publishes one profile at a time.

    Collaborators are injected so tests can swap the object store and the
    source root; nothing here reads global settings.
    """

    def __init__(
        self,
        db: Session,
        store: ObjectStore,
        settings: Settings,
        scanner: Optional[ContentScanner] = None,
        assembler: Optional[ManifestAssembler] = None,
    ):
        self.db = db
        self.store = store
        self.settings = settings
        self.scanner = scanner or ContentScanner(Path(settings.source_root))
        self.assembler = assembler or ManifestAssembler()
        self.ledger = BuildLedger(
            db,
            history_max=settings.build_history_max,
            stale_after_seconds=settings.stale_build_seconds,
            error_message_max_length=settings.error_message_max_length,
        )

    def rebuild_profile(
        self,
        profile_id: str,
        request: Optional[ProfileRebuildRequest] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BuildModel:
        """Rebuild and publish a profile.

        Returns:
            The completed build

        Raises:
            NotFoundError: If the profile does not exist
            ValidationError: If the request is invalid (no build is created)
            BuildConflictError: If the profile already has a running build
            BuildFailedError: If the build was started and then failed; the
                build row is in the failed state and ``cause`` holds the reason
            PersistenceError: If the outcome could not be recorded
        """
        request = request or ProfileRebuildRequest()
        cancel_token = cancel_token or CancellationToken()

        profile = self.db.get(ProfileModel, profile_id)
        if profile is None:
            raise NotFoundError("Profile", profile_id)

        resolved = self._resolve(profile, request)
        build = self.ledger.start_build(
            profile_id=profile.id,
            loader_type=resolved.loader_type,
            mc_version=resolved.mc_version,
            client_version=resolved.client_version,
            build_id=generate_ulid(),
        )
        build_id = build.id
        slug = profile.slug
        build_logger = logger.bind(build_id=build_id, profile_slug=slug)
        build_logger.info(
            "build_started",
            loader_type=resolved.loader_type,
            mc_version=resolved.mc_version,
            client_version=resolved.client_version,
        )

        skipped = 0
        try:
            directories = self.scanner.resolve_source_directories(
                slug,
                resolved.loader_type,
                resolved.mc_version,
                servers=resolved.servers,
                source_sub_path=resolved.source_sub_path,
            )
            entries = self.scanner.scan(directories)
            if not entries:
                raise SourceNotFoundError(
                    f"Source directory for profile '{slug}' does not contain files.",
                    profile_slug=slug,
                )
            build_logger.info("source_scanned", directories=len(directories), files=len(entries))

            files, skipped = self._publish_files(slug, build_id, entries, cancel_token, build_logger)
            if not files:
                raise SourceNotFoundError(
                    f"All {len(entries)} source file(s) of profile '{slug}' vanished during the build.",
                    profile_slug=slug,
                )

            cancel_token.raise_if_cancelled()
            manifest = self.assembler.assemble(
                profile_slug=slug,
                build_id=build_id,
                loader_type=resolved.loader_type,
                mc_version=resolved.mc_version,
                client_version=resolved.client_version,
                jvm_args_default=resolved.jvm_args,
                game_args_default=resolved.game_args,
                files=files,
                launch_profile=resolved.launch_profile,
                java_runtime=resolved.java_runtime,
                runtime_artifact=resolved.runtime_artifact,
                created_at=datetime.now(timezone.utc),
            )
            manifest_bytes = manifest.to_json_bytes()
            manifest_key = build_manifest_key(slug, build_id)
            latest_key = latest_manifest_key(slug)

            cancel_token.raise_if_cancelled()
            self._upload(manifest_key, manifest_bytes, MANIFEST_CONTENT_TYPE)
            self._upload(latest_key, manifest_bytes, MANIFEST_CONTENT_TYPE)
        except PublisherError as e:
            self._record_failure(build_id, e, skipped, build_logger)
            raise BuildFailedError(build_id, e) from e
        except ValueError as e:
            # Manifest assembly or key normalization rejected the input
            cause = ValidationError(str(e))
            self._record_failure(build_id, cause, skipped, build_logger)
            raise BuildFailedError(build_id, cause) from e
        except OSError as e:
            cause = StorageError(f"I/O failure while publishing: {e}")
            self._record_failure(build_id, cause, skipped, build_logger)
            raise BuildFailedError(build_id, cause) from e
        except Exception as e:
            cause = PublisherError(f"{type(e).__name__}: {e}")
            self._record_failure(build_id, cause, skipped, build_logger)
            raise BuildFailedError(build_id, cause) from e

        try:
            completed = self.ledger.commit_success(
                build_id,
                files_count=len(files),
                total_size_bytes=sum(f.size for f in files),
                skipped_files_count=skipped,
                manifest_key=manifest_key,
                latest_manifest_key=latest_key,
                publish_to_servers=request.publish_to_servers,
            )
        except PersistenceError as e:
            # latest.json already moved; the row must still leave running
            build_logger.error("build_commit_failed", message=e.message)
            try:
                self.ledger.fail_build(build_id, e.message, skipped_files_count=skipped)
            except PersistenceError as fail_error:
                build_logger.error("build_fail_record_failed", message=fail_error.message)
            raise
        build_logger.info(
            "build_completed",
            files=completed.files_count,
            total_size_bytes=completed.total_size_bytes,
            skipped=skipped,
        )
        return completed

    def _resolve(self, profile: ProfileModel, request: ProfileRebuildRequest) -> _ResolvedRebuild:
        servers = list(
            self.db.scalars(
                select(ServerModel)
                .where(ServerModel.profile_id == profile.id)
                .order_by(ServerModel.order, ServerModel.name)
            ).all()
        )
        first_server = servers[0] if servers else None

        loader_type = normalize_loader(
            _resolve_value(
                request.loader_type,
                first_server.loader_type if first_server else None,
            )
        )
        require_supported_loader(loader_type)
        mc_version = _resolve_value(
            request.mc_version,
            first_server.mc_version if first_server else None,
            DEFAULT_MC_VERSION,
        )

        source_sub_path = None
        if request.source_sub_path.strip():
            source_sub_path = normalize_relative_path(request.source_sub_path, "sourceSubPath")

        client_version = _resolve_value(request.client_version) or datetime.now(
            timezone.utc
        ).strftime("%Y%m%d%H%M")

        runtime_key = _resolve_runtime_key(
            request.java_runtime_artifact_key, profile.bundled_runtime_key
        )

        return _ResolvedRebuild(
            loader_type=loader_type,
            mc_version=mc_version,
            client_version=client_version,
            jvm_args=_resolve_value(
                request.jvm_args_default,
                profile.jvm_args_default,
                self.settings.default_jvm_args,
                HARD_DEFAULT_JVM_ARGS,
            ),
            game_args=_resolve_value(
                request.game_args_default,
                profile.game_args_default,
                self.settings.default_game_args,
            ),
            java_runtime=_resolve_runtime_path(request.java_runtime_path, profile.bundled_java_path),
            runtime_artifact=self._resolve_runtime_artifact(runtime_key, profile),
            launch_profile=resolve_launch_profile(
                loader_type,
                request.launch_mode,
                request.launch_main_class,
                request.launch_classpath,
            ),
            source_sub_path=source_sub_path,
            servers=[ServerRef(id=s.id, name=s.name, order=s.order) for s in servers],
        )

    def _resolve_runtime_artifact(
        self, runtime_key: Optional[str], profile: ProfileModel
    ) -> RuntimeArtifact:
        """Runtime metadata from the profile, completed from the object store."""
        if not runtime_key:
            return RuntimeArtifact()

        from_profile = RuntimeArtifact()
        profile_key = _resolve_runtime_key(profile.bundled_runtime_key, None)
        if profile_key and profile_key.casefold() == runtime_key.casefold():
            from_profile = RuntimeArtifact(
                key=runtime_key,
                sha256=(profile.bundled_runtime_sha256 or "").strip().lower() or None,
                size_bytes=profile.bundled_runtime_size_bytes or None,
                content_type=(profile.bundled_runtime_content_type or "").strip() or None,
            )
            if from_profile.sha256 and from_profile.size_bytes and from_profile.content_type:
                return from_profile

        stored = self.store.get_metadata(runtime_key)
        if stored is None:
            return RuntimeArtifact(
                key=runtime_key,
                sha256=from_profile.sha256,
                size_bytes=from_profile.size_bytes,
                content_type=from_profile.content_type,
            )
        return RuntimeArtifact(
            key=runtime_key,
            sha256=from_profile.sha256 or (stored.sha256 or "").strip().lower() or None,
            size_bytes=from_profile.size_bytes or stored.size_bytes or None,
            content_type=from_profile.content_type or (stored.content_type or "").strip() or None,
        )

    def _publish_files(
        self,
        slug: str,
        build_id: str,
        entries: Sequence[SourceEntry],
        cancel_token: CancellationToken,
        build_logger,
    ) -> Tuple[List[ManifestFile], int]:
        """Read, hash and upload every entry; results keep scan order.

        Returns:
            (manifest files, number of entries skipped because they vanished)
        """

        abort = threading.Event()

        def publish(entry: SourceEntry) -> Optional[ManifestFile]:
            if abort.is_set():
                return None
            cancel_token.raise_if_cancelled()
            try:
                data = entry.absolute_path.read_bytes()
            except (FileNotFoundError, NotADirectoryError):
                build_logger.warning("source_file_vanished", path=entry.relative_path)
                return None

            sha = sha256_hex(data)
            key = file_key(slug, build_id, entry.relative_path)
            cancel_token.raise_if_cancelled()
            self._upload(
                key,
                data,
                infer_content_type(entry.relative_path),
                {SHA256_METADATA_KEY: sha},
            )
            return ManifestFile(path=entry.relative_path, sha256=sha, size=len(data), s3_key=key)

        workers = max(1, min(self.settings.upload_workers, len(entries)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="publish") as pool:
            futures = [pool.submit(publish, entry) for entry in entries]
            try:
                # Collected in submission order, so the manifest keeps scan order
                results = [future.result() for future in futures]
            except BaseException:
                abort.set()
                for future in futures:
                    future.cancel()
                raise

        files = [result for result in results if result is not None]
        return files, len(results) - len(files)

    def _upload(self, key: str, data: bytes, content_type: str, metadata=None) -> None:
        try:
            self.store.upload(key, data, content_type, metadata)
        except StorageError:
            raise
        except OSError as e:
            raise StorageError(f"Failed to upload '{key}': {e}") from e

    def _record_failure(
        self,
        build_id: str,
        error: PublisherError,
        skipped: int,
        build_logger,
    ) -> None:
        build_logger.error("build_failed", error=error.code, message=error.message)
        self.ledger.fail_build(build_id, error.message, skipped_files_count=skipped)
