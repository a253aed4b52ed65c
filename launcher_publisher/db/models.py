"""
SQLAlchemy models for Launcher Publisher.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from ulid import ULID

from .base import Base


BUILD_STATUSES = ("pending", "running", "completed", "failed")

build_status_enum = Enum(*BUILD_STATUSES, name="build_status")


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def generate_ulid() -> str:
    """Generate a ULID for row ids.

    ULIDs sort by creation time, which history trimming uses as a tie-breaker.
    """
    return str(ULID())


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite drops tzinfo; all stored timestamps are UTC
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class ProfileModel(Base):
    """A named distribution target and its current build pointers."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    name = Column(String(128), nullable=False)
    slug = Column(String(64), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False, default="")
    enabled = Column(Boolean, nullable=False, default=True)

    # Launch defaults
    jvm_args_default = Column(String(2048), nullable=False, default="")
    game_args_default = Column(String(2048), nullable=False, default="")

    # Bundled runtime reference
    bundled_java_path = Column(String(512), nullable=False, default="")
    bundled_runtime_key = Column(String(512), nullable=False, default="")
    bundled_runtime_sha256 = Column(String(64), nullable=False, default="")
    bundled_runtime_size_bytes = Column(BigInteger, nullable=False, default=0)
    bundled_runtime_content_type = Column(String(128), nullable=False, default="")

    # Pointers to the current build
    latest_build_id = Column(String(36), nullable=False, default="")
    latest_manifest_key = Column(String(512), nullable=False, default="")
    latest_client_version = Column(String(64), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    servers = relationship(
        "ServerModel",
        back_populates="profile",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    builds = relationship(
        "BuildModel",
        back_populates="profile",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "enabled": self.enabled,
            "jvm_args_default": self.jvm_args_default,
            "game_args_default": self.game_args_default,
            "bundled_java_path": self.bundled_java_path,
            "bundled_runtime_key": self.bundled_runtime_key,
            "bundled_runtime_sha256": self.bundled_runtime_sha256,
            "bundled_runtime_size_bytes": self.bundled_runtime_size_bytes,
            "bundled_runtime_content_type": self.bundled_runtime_content_type,
            "latest_build_id": self.latest_build_id,
            "latest_manifest_key": self.latest_manifest_key,
            "latest_client_version": self.latest_client_version,
            "created_at": _iso(self.created_at),
        }


class ServerModel(Base):
    """A game server that launches a specific build of its profile."""

    __tablename__ = "servers"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    profile_id = Column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(128), nullable=False)
    address = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False, default=25565)
    loader_type = Column(String(32), nullable=False, default="vanilla")
    mc_version = Column(String(32), nullable=False, default="1.21.1")
    build_id = Column(String(36), nullable=False, default="")
    enabled = Column(Boolean, nullable=False, default=True)
    order = Column(Integer, nullable=False, default=100)

    profile = relationship("ProfileModel", back_populates="servers")

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "name": self.name,
            "address": self.address,
            "port": self.port,
            "loader_type": self.loader_type,
            "mc_version": self.mc_version,
            "build_id": self.build_id,
            "enabled": self.enabled,
            "order": self.order,
        }


class BuildModel(Base):
    """One attempt to materialize a profile's distribution."""

    __tablename__ = "builds"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    profile_id = Column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    loader_type = Column(String(32), nullable=False)
    mc_version = Column(String(32), nullable=False)
    client_version = Column(String(64), nullable=False, default="")

    status = Column(build_status_enum, nullable=False, default="pending", index=True)

    # Populated only on the completed path
    files_count = Column(Integer, nullable=True)
    total_size_bytes = Column(BigInteger, nullable=True)
    manifest_key = Column(String(512), nullable=True)

    # Source files that vanished between listing and read
    skipped_files_count = Column(Integer, nullable=False, default=0)

    # Populated only on the failed path
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    profile = relationship("ProfileModel", back_populates="builds")

    __table_args__ = (
        Index("ix_builds_profile_created", "profile_id", "created_at"),
        # At most one running build per profile
        Index(
            "ux_builds_profile_running",
            "profile_id",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "loader_type": self.loader_type,
            "mc_version": self.mc_version,
            "client_version": self.client_version,
            "status": self.status,
            "files_count": self.files_count,
            "total_size_bytes": self.total_size_bytes,
            "skipped_files_count": self.skipped_files_count,
            "manifest_key": self.manifest_key,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
            "finished_at": _iso(self.finished_at),
        }


class PreflightRunModel(Base):
    """A stored run of the setup-wizard preflight checks."""

    __tablename__ = "preflight_runs"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    actor = Column(String(64), nullable=False, default="admin")
    passed_count = Column(Integer, nullable=False, default=0)
    total_count = Column(Integer, nullable=False, default=0)
    # Serialized check list; kept as raw text so a bad row never breaks reads
    checks_json = Column(Text, nullable=False, default="[]")
    ran_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
