"""
Source tree scanning for profile builds.

A profile's sources live under ``{source_root}/{slug}`` and may be split into
layers that are merged in order:

    common/
    loaders/{loader}/common/
    loaders/{loader}/{mc_version}/
    servers/{server-id or server-name}/<same three layers>

Later layers override earlier ones for the same relative path. The scan only
lists files; reading them (and tolerating files that vanish in between) is
the publisher's job.

Policy
------
- Symlinks are skipped.
- Paths compare case-insensitively; the result is sorted by relative path.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import SourceNotFoundError, ValidationError
from .loaders import normalize_relative_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEntry:
    """A file discovered during scanning.

    Attributes:
        relative_path: Forward-slash path relative to its layer directory
        absolute_path: Where to read the bytes from
    """

    relative_path: str
    absolute_path: Path


@dataclass(frozen=True)
class ServerRef:
    """The parts of a server row that select its source overlay."""

    id: str
    name: str
    order: int = 100


def normalize_server_name(raw_name: Optional[str]) -> str:
    """Turn a display name into a directory name: 'My Server #1' -> 'my-server-1'."""
    if not raw_name or not raw_name.strip():
        return "server"
    normalized = re.sub(r"[^0-9a-z]", "-", raw_name.strip().lower())
    normalized = re.sub(r"-{2,}", "-", normalized).strip("-")
    return normalized or "server"


def _layer_directories(root: Path, loader_type: str, mc_version: str) -> List[Path]:
    candidates = [
        root / "common",
        root / "loaders" / loader_type / "common",
        root / "loaders" / loader_type / mc_version,
    ]
    return [candidate for candidate in candidates if candidate.is_dir()]


def _contains_files(path: Path) -> bool:
    for _, _, file_names in os.walk(path):
        if file_names:
            return True
    return False


class ContentScanner:
    """Resolves a profile's source layers and lists the files in them."""

    def __init__(self, source_root: Path):
        self.source_root = Path(source_root)

    def profile_root(self, slug: str) -> Path:
        return (self.source_root / slug).resolve()

    def resolve_source_directories(
        self,
        slug: str,
        loader_type: str,
        mc_version: str,
        servers: Sequence[ServerRef] = (),
        source_sub_path: Optional[str] = None,
    ) -> List[Path]:
        """Pick the directories whose files make up the build.

        Raises:
            SourceNotFoundError: If the profile root or the requested sub path
                does not exist
            ValidationError: If several servers have their own sources and no
                profile-level layer exists to fall back on
        """
        profile_root = self.profile_root(slug)
        if not profile_root.is_dir():
            raise SourceNotFoundError(
                f"Source directory '{profile_root}' does not exist.",
                profile_slug=slug,
            )

        if source_sub_path and source_sub_path.strip():
            relative = normalize_relative_path(source_sub_path, "sourceSubPath")
            target = (profile_root / relative).resolve()
            if target != profile_root and profile_root not in target.parents:
                raise ValidationError(
                    "sourceSubPath escapes the profile source directory.",
                    field="sourceSubPath",
                )
            if not target.is_dir():
                raise SourceNotFoundError(
                    f"Source directory '{target}' does not exist.",
                    profile_slug=slug,
                )
            return [target]

        selected = _layer_directories(profile_root, loader_type, mc_version)

        populated = []
        for server in sorted(servers, key=lambda s: (s.order, s.name.casefold())):
            layers = self._server_layers(profile_root, loader_type, mc_version, server)
            if layers and any(_contains_files(layer) for layer in layers):
                populated.append((server, layers))

        if len(populated) == 1:
            server, layers = populated[0]
            logger.info(
                f"Using server-specific sources for server {server.id} ({server.name})"
            )
            selected.extend(layers)
        elif len(populated) > 1:
            logger.info(
                f"Multiple server-specific source directories under {profile_root}; "
                f"using profile-level directories only"
            )
            if not selected:
                raise ValidationError(
                    f"Multiple populated server source directories detected for "
                    f"profile '{slug}'. Specify sourceSubPath to select one server folder.",
                    field="sourceSubPath",
                )

        return selected or [profile_root]

    def _server_layers(
        self,
        profile_root: Path,
        loader_type: str,
        mc_version: str,
        server: ServerRef,
    ) -> List[Path]:
        layers: List[Path] = []
        seen = set()
        for root in (
            profile_root / "servers" / server.id,
            profile_root / "servers" / normalize_server_name(server.name),
        ):
            if not root.is_dir():
                continue
            for layer in _layer_directories(root, loader_type, mc_version):
                folded = str(layer).casefold()
                if folded not in seen:
                    seen.add(folded)
                    layers.append(layer)
        return layers

    def scan(self, directories: Iterable[Path]) -> List[SourceEntry]:
        """List every file under ``directories``.

        Returns:
            Entries deduplicated by case-insensitive relative path (later
            directories win), sorted by relative path
        """
        merged: Dict[str, SourceEntry] = {}
        for directory in directories:
            for entry in self._walk(Path(directory)):
                merged[entry.relative_path.casefold()] = entry

        return sorted(merged.values(), key=lambda e: (e.relative_path.casefold(), e.relative_path))

    def _walk(self, directory: Path) -> Iterable[SourceEntry]:
        for directory_path, directory_names, file_names in os.walk(
            directory, topdown=True, followlinks=False
        ):
            directory_names.sort()
            current = Path(directory_path)
            for file_name in sorted(file_names):
                absolute_path = current / file_name
                if absolute_path.is_symlink():
                    logger.debug(f"Skipping symlink {absolute_path}")
                    continue
                relative_path = absolute_path.relative_to(directory).as_posix()
                yield SourceEntry(relative_path=relative_path, absolute_path=absolute_path)
