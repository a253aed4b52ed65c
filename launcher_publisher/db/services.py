"""
Database services for Launcher Publisher.
"""

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import (
    BuildConflictError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .history import CappedLog
from .models import (
    BuildModel,
    PreflightRunModel,
    ProfileModel,
    ServerModel,
    generate_ulid,
    utc_now,
)

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,62}[a-z0-9])?$")

# Allowed status transitions; terminal states have no outgoing edges
_TRANSITIONS = {
    "pending": {"running", "failed"},
    "running": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ProfileService:
    """Service for managing profiles and their servers."""

    def __init__(self, db: Session):
        self.db = db

    def create_profile(self, name: str, slug: str, **kwargs) -> ProfileModel:
        """Create a new profile."""
        slug = (slug or "").strip().lower()
        if not SLUG_PATTERN.match(slug):
            raise ValidationError(
                f"Slug '{slug}' must be lowercase letters, digits and dashes.",
                field="slug",
            )
        if not (name or "").strip():
            raise ValidationError("Profile name is required.", field="name")
        if self.get_by_slug(slug) is not None:
            raise ConflictError(f"Profile with slug '{slug}' already exists.", slug=slug)

        profile = ProfileModel(
            id=generate_ulid(),
            name=name.strip(),
            slug=slug,
            description=kwargs.get("description", ""),
            enabled=kwargs.get("enabled", True),
            jvm_args_default=kwargs.get("jvm_args_default", ""),
            game_args_default=kwargs.get("game_args_default", ""),
            bundled_java_path=kwargs.get("bundled_java_path", ""),
            bundled_runtime_key=kwargs.get("bundled_runtime_key", ""),
            bundled_runtime_sha256=kwargs.get("bundled_runtime_sha256", ""),
            bundled_runtime_size_bytes=kwargs.get("bundled_runtime_size_bytes", 0),
            bundled_runtime_content_type=kwargs.get("bundled_runtime_content_type", ""),
            created_at=utc_now(),
        )
        self.db.add(profile)
        self._commit()
        self.db.refresh(profile)
        return profile

    def get_profile(self, profile_id: str) -> Optional[ProfileModel]:
        """Get a profile by ID."""
        return self.db.get(ProfileModel, profile_id)

    def get_by_slug(self, slug: str) -> Optional[ProfileModel]:
        """Get a profile by slug."""
        return self.db.scalars(
            select(ProfileModel).where(ProfileModel.slug == slug)
        ).first()

    def require_profile(self, profile_id: str) -> ProfileModel:
        profile = self.get_profile(profile_id)
        if profile is None:
            raise NotFoundError("Profile", profile_id)
        return profile

    def list_servers(self, profile_id: str) -> List[ServerModel]:
        return list(
            self.db.scalars(
                select(ServerModel)
                .where(ServerModel.profile_id == profile_id)
                .order_by(ServerModel.order, ServerModel.name)
            ).all()
        )

    def add_server(self, profile_id: str, name: str, address: str, **kwargs) -> ServerModel:
        """Attach a server to a profile."""
        self.require_profile(profile_id)
        server = ServerModel(
            id=generate_ulid(),
            profile_id=profile_id,
            name=name,
            address=address,
            port=kwargs.get("port", 25565),
            loader_type=kwargs.get("loader_type", "vanilla"),
            mc_version=kwargs.get("mc_version", "1.21.1"),
            enabled=kwargs.get("enabled", True),
            order=kwargs.get("order", 100),
        )
        self.db.add(server)
        self._commit()
        self.db.refresh(server)
        return server

    def rename_slug(self, profile_id: str, new_slug: str) -> ProfileModel:
        """Change a profile's slug; refused once any build references it."""
        profile = self.require_profile(profile_id)
        has_builds = self.db.scalars(
            select(BuildModel.id).where(BuildModel.profile_id == profile_id).limit(1)
        ).first()
        if has_builds is not None:
            raise ConflictError(
                f"Slug of profile '{profile.slug}' is referenced by builds and cannot change.",
                profile_id=profile_id,
            )
        new_slug = (new_slug or "").strip().lower()
        if not SLUG_PATTERN.match(new_slug):
            raise ValidationError(f"Invalid slug '{new_slug}'.", field="slug")
        if new_slug != profile.slug and self.get_by_slug(new_slug) is not None:
            raise ConflictError(f"Profile with slug '{new_slug}' already exists.", slug=new_slug)
        profile.slug = new_slug
        self._commit()
        self.db.refresh(profile)
        return profile

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile together with its builds and servers."""
        profile = self.require_profile(profile_id)
        self.db.delete(profile)
        self._commit()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(f"Write rejected by a database constraint: {e.orig}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Database write failed: {e}") from e


class BuildLedger:
    """Durable record of build attempts and the profile's latest pointer.

    The ledger is the only writer of build status. It guarantees:
    - at most one running build per profile (checked here and backed by a
      partial unique index)
    - no status change once a build is completed or failed
    - ``manifest_key`` and ``files_count`` are set only when completing
    """

    def __init__(
        self,
        db: Session,
        history_max: int = 50,
        stale_after_seconds: int = 3600,
        error_message_max_length: int = 2000,
    ):
        self.db = db
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.error_message_max_length = error_message_max_length
        self.history = CappedLog(
            BuildModel,
            BuildModel.created_at,
            history_max,
            partition_column=BuildModel.profile_id,
        )

    def start_build(
        self,
        profile_id: str,
        loader_type: str,
        mc_version: str,
        client_version: str,
        build_id: Optional[str] = None,
    ) -> BuildModel:
        """Insert a new running build for a profile.

        Raises:
            BuildConflictError: If the profile already has a running build
            PersistenceError: If the insert fails for any other reason
        """
        self.reap_stale_builds(profile_id=profile_id)

        running = self.get_running_build(profile_id)
        if running is not None:
            raise BuildConflictError(profile_id, running.id)

        build = BuildModel(
            id=build_id or generate_ulid(),
            profile_id=profile_id,
            loader_type=loader_type,
            mc_version=mc_version,
            client_version=client_version,
            status="running",
            skipped_files_count=0,
            created_at=utc_now(),
        )
        try:
            evicted = self.history.append(self.db, build)
        except IntegrityError as e:
            # Lost the race against a concurrent start for the same profile
            running = self.get_running_build(profile_id)
            raise BuildConflictError(profile_id, running.id if running else None) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record build start: {e}") from e

        logger.info(
            f"Build {build.id} started for profile {profile_id} "
            f"(evicted {evicted} old build(s))"
        )
        return build

    def commit_success(
        self,
        build_id: str,
        files_count: int,
        total_size_bytes: int,
        skipped_files_count: int,
        manifest_key: str,
        latest_manifest_key: str,
        publish_to_servers: bool = False,
    ) -> BuildModel:
        """Complete a build and move the profile's pointers in one transaction.

        Raises:
            InvalidTransitionError: If the build is no longer running
            PersistenceError: If the transaction fails
        """
        build = self.require_build(build_id)
        self._check_transition(build, "completed")
        profile = self.db.get(ProfileModel, build.profile_id)
        if profile is None:
            raise NotFoundError("Profile", build.profile_id)

        build.status = "completed"
        build.files_count = files_count
        build.total_size_bytes = total_size_bytes
        build.skipped_files_count = skipped_files_count
        build.manifest_key = manifest_key
        build.error_message = None
        build.finished_at = utc_now()

        profile.latest_build_id = build.id
        profile.latest_manifest_key = latest_manifest_key
        profile.latest_client_version = build.client_version

        if publish_to_servers:
            self.db.execute(
                update(ServerModel)
                .where(ServerModel.profile_id == profile.id)
                .values(build_id=build.id)
                .execution_options(synchronize_session="fetch")
            )

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to record completed build {build_id}: {e}") from e

        self.db.refresh(build)
        return build

    def fail_build(
        self,
        build_id: str,
        error_message: str,
        skipped_files_count: Optional[int] = None,
    ) -> BuildModel:
        """Mark a build failed with a bounded error message.

        Raises:
            InvalidTransitionError: If the build already reached a terminal state
            PersistenceError: If the update fails
        """
        try:
            # Discard whatever the failed step left pending in the session
            self.db.rollback()
            build = self.require_build(build_id)
            self._check_transition(build, "failed")

            build.status = "failed"
            build.error_message = self._truncate(error_message)
            build.files_count = None
            build.manifest_key = None
            build.finished_at = utc_now()
            if skipped_files_count is not None:
                build.skipped_files_count = skipped_files_count
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to record failed build {build_id}: {e}") from e

        self.db.refresh(build)
        return build

    def reap_stale_builds(
        self,
        profile_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Fail running builds older than the staleness window.

        A process that died mid-build leaves its row running; without this the
        profile could never be rebuilt again.
        """
        cutoff = (now or utc_now()) - self.stale_after
        query = select(BuildModel).where(BuildModel.status == "running")
        if profile_id is not None:
            query = query.where(BuildModel.profile_id == profile_id)

        reaped = 0
        for build in self.db.scalars(query).all():
            if _as_utc(build.created_at) >= cutoff:
                continue
            build.status = "failed"
            build.error_message = self._truncate(
                "Build abandoned: still running after "
                f"{int(self.stale_after.total_seconds())}s."
            )
            build.finished_at = utc_now()
            reaped += 1

        if reaped:
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                raise PersistenceError(f"Failed to reap stale builds: {e}") from e
            logger.warning(f"Reaped {reaped} stale running build(s)")
        return reaped

    def get_build(self, build_id: str) -> Optional[BuildModel]:
        """Get a build by ID."""
        return self.db.get(BuildModel, build_id)

    def require_build(self, build_id: str) -> BuildModel:
        build = self.get_build(build_id)
        if build is None:
            raise NotFoundError("Build", build_id)
        return build

    def get_running_build(self, profile_id: str) -> Optional[BuildModel]:
        return self.db.scalars(
            select(BuildModel).where(
                BuildModel.profile_id == profile_id,
                BuildModel.status == "running",
            )
        ).first()

    def get_latest_build(
        self, profile_id: str, status: Optional[str] = "completed"
    ) -> Optional[BuildModel]:
        """Newest build of a profile, by default the newest completed one."""
        query = select(BuildModel).where(BuildModel.profile_id == profile_id)
        if status:
            query = query.where(BuildModel.status == status)
        return self.db.scalars(
            query.order_by(desc(BuildModel.created_at), desc(BuildModel.id)).limit(1)
        ).first()

    def get_latest_pointer(self, profile_id: str) -> Dict[str, Any]:
        """The profile's latest pointer fields, as read by installers."""
        profile = self.db.get(ProfileModel, profile_id)
        if profile is None:
            raise NotFoundError("Profile", profile_id)
        return {
            "profile_id": profile.id,
            "profile_slug": profile.slug,
            "latest_build_id": profile.latest_build_id,
            "latest_manifest_key": profile.latest_manifest_key,
            "latest_client_version": profile.latest_client_version,
        }

    def list_builds(self, profile_id: str, limit: int = 20, offset: int = 0) -> List[BuildModel]:
        """Builds of a profile, newest first."""
        return self.history.recent(self.db, limit, partition_value=profile_id, offset=offset)

    def _check_transition(self, build: BuildModel, new_status: str) -> None:
        if new_status not in _TRANSITIONS.get(build.status, set()):
            raise InvalidTransitionError(build.id, build.status, new_status)

    def _truncate(self, message: str) -> str:
        message = message or "Unknown error."
        if len(message) > self.error_message_max_length:
            return message[: self.error_message_max_length]
        return message


class PreflightRunService:
    """Stored runs of the setup-wizard preflight checks, capped in size."""

    MAX_CHECKS_PER_RUN = 20
    ALLOWED_STATUSES = frozenset({"passed", "failed", "skipped"})

    def __init__(self, db: Session, max_stored_runs: int = 200):
        self.db = db
        self.history = CappedLog(PreflightRunModel, PreflightRunModel.ran_at, max_stored_runs)

    def create_run(self, checks: Iterable[Any], actor: Optional[str] = None) -> Dict[str, Any]:
        """Store a run; rejects empty or oversized check lists before writing.

        Raises:
            ValidationError: If no valid checks remain or too many are given
        """
        raw_checks = list(checks or [])
        if len(raw_checks) > self.MAX_CHECKS_PER_RUN:
            raise ValidationError(
                f"No more than {self.MAX_CHECKS_PER_RUN} checks are allowed per run.",
                field="checks",
            )
        normalized = self.normalize_checks(raw_checks)
        if not normalized:
            raise ValidationError(
                "At least one pre-flight check is required.", field="checks"
            )

        actor = (actor or "").strip() or "admin"
        run = PreflightRunModel(
            id=generate_ulid(),
            actor=actor[:64],
            passed_count=sum(1 for check in normalized if check["status"] == "passed"),
            total_count=len(normalized),
            checks_json=json.dumps(normalized),
            ran_at=utc_now(),
        )
        try:
            trimmed = self.history.append(self.db, run)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store preflight run: {e}") from e

        logger.info(
            f"Stored preflight run {run.id} ({run.passed_count}/{run.total_count} passed, "
            f"trimmed {trimmed})"
        )
        return self._to_dict(run)

    def list_runs(self, limit: int = 8) -> List[Dict[str, Any]]:
        """Newest runs first; ``limit`` is clamped to 1..50."""
        take = max(1, min(int(limit), 50))
        return [self._to_dict(run) for run in self.history.recent(self.db, take)]

    def clear(self) -> int:
        try:
            return self.history.clear(self.db)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to clear preflight runs: {e}") from e

    @classmethod
    def normalize_checks(cls, checks: Iterable[Any]) -> List[Dict[str, str]]:
        """Keep well-formed checks, trimming and bounding their fields."""
        result: List[Dict[str, str]] = []
        for check in checks:
            if hasattr(check, "model_dump"):
                check = check.model_dump()
            if not isinstance(check, dict):
                continue
            check_id = str(check.get("id") or "").strip()
            label = str(check.get("label") or "").strip()
            status = str(check.get("status") or "").strip().lower()
            message = str(check.get("message") or "").strip()

            if not check_id or len(check_id) > 64:
                continue
            if not label or len(label) > 128:
                continue
            if status not in cls.ALLOWED_STATUSES:
                continue

            result.append(
                {
                    "id": check_id,
                    "label": label,
                    "status": status,
                    "message": (message or "-")[:1024],
                }
            )
        return result

    @staticmethod
    def parse_checks(raw: Optional[str]) -> List[Dict[str, Any]]:
        """Decode a stored check list; anything malformed reads as empty."""
        if not raw or not raw.strip():
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            return []
        if not isinstance(parsed, list) or not all(isinstance(item, dict) for item in parsed):
            return []
        return parsed

    def _to_dict(self, run: PreflightRunModel) -> Dict[str, Any]:
        return {
            "id": run.id,
            "actor": run.actor,
            "passed_count": run.passed_count,
            "total_count": run.total_count,
            "ran_at": _as_utc(run.ran_at).isoformat() if run.ran_at else None,
            "checks": self.parse_checks(run.checks_json),
        }
