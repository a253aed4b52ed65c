"""
Loader catalog and launch profile resolution.

A launch profile tells the installer how to start the client: either run a
single jar, or run a main class with a classpath built from glob entries.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import ValidationError

SUPPORTED_LOADERS = frozenset(
    {"vanilla", "forge", "fabric", "quilt", "neoforge", "liteloader"}
)
DEFAULT_LOADER = "vanilla"

DEFAULT_MAIN_CLASSES = {
    "forge": "cpw.mods.modlauncher.Launcher",
    "neoforge": "cpw.mods.modlauncher.Launcher",
    "fabric": "net.fabricmc.loader.impl.launch.knot.KnotClient",
    "quilt": "org.quiltmc.loader.impl.launch.knot.KnotClient",
}
DEFAULT_CLASSPATH = ("libraries/**/*.jar", "*.jar")

_CLASSPATH_SEPARATORS = re.compile(r"[\r\n;,]+")


def supported_loaders() -> List[str]:
    return sorted(SUPPORTED_LOADERS)


def normalize_loader(loader_type: Optional[str], fallback: str = DEFAULT_LOADER) -> str:
    """Trim and lower-case a loader name; blank values use ``fallback``."""
    if not loader_type or not loader_type.strip():
        return fallback
    return loader_type.strip().lower()


def require_supported_loader(loader_type: str) -> str:
    if loader_type not in SUPPORTED_LOADERS:
        raise ValidationError(
            f"Unsupported loader type '{loader_type}'. "
            f"Allowed: {', '.join(supported_loaders())}.",
            field="loaderType",
        )
    return loader_type


@dataclass(frozen=True)
class LaunchProfile:
    mode: str
    main_class: str = ""
    classpath: List[str] = field(default_factory=list)


def normalize_relative_path(raw: str, field_name: str) -> str:
    """Normalize a user-supplied relative path to forward slashes.

    Raises:
        ValidationError: If the path is absolute or climbs out with '..'
    """
    # Leading slashes are dropped; drive letters cannot be made relative
    normalized = raw.replace("\\", "/").strip().lstrip("/")
    if re.match(r"^[A-Za-z]:", normalized):
        raise ValidationError(f"{field_name} '{raw}' must be relative.", field=field_name)
    segments = [segment for segment in normalized.split("/") if segment]
    if any(segment == ".." for segment in segments):
        raise ValidationError(f"{field_name} '{raw}' cannot contain '..'.", field=field_name)
    return "/".join(segments)


def parse_classpath(raw: Optional[str]) -> List[str]:
    """Split a classpath string on newlines, ';' or ',' and dedupe case-insensitively."""
    if not raw or not raw.strip():
        return []
    entries: List[str] = []
    seen = set()
    for part in _CLASSPATH_SEPARATORS.split(raw):
        part = part.strip()
        if not part:
            continue
        entry = normalize_relative_path(part, "launchClasspath")
        if entry and entry.casefold() not in seen:
            seen.add(entry.casefold())
            entries.append(entry)
    return entries


def resolve_launch_profile(
    loader_type: str,
    launch_mode: Optional[str] = None,
    main_class: Optional[str] = None,
    raw_classpath: Optional[str] = None,
) -> LaunchProfile:
    """Resolve the launch profile for a rebuild request.

    ``auto`` picks ``mainclass`` for loaders that have a known entry point and
    ``jar`` for the rest.
    """
    mode = (launch_mode or "").strip().lower()
    main_class = (main_class or "").strip()
    classpath = parse_classpath(raw_classpath)

    if mode in ("", "auto"):
        if loader_type in DEFAULT_MAIN_CLASSES:
            return LaunchProfile(
                mode="mainclass",
                main_class=main_class or DEFAULT_MAIN_CLASSES[loader_type],
                classpath=classpath or list(DEFAULT_CLASSPATH),
            )
        return LaunchProfile(mode="jar")

    if mode == "jar":
        return LaunchProfile(mode="jar")

    if mode in ("mainclass", "main-class"):
        if not main_class:
            raise ValidationError(
                "launchMainClass is required when launchMode is 'mainclass'.",
                field="launchMainClass",
            )
        if not classpath:
            raise ValidationError(
                "launchClasspath is required when launchMode is 'mainclass'.",
                field="launchClasspath",
            )
        return LaunchProfile(mode="mainclass", main_class=main_class, classpath=classpath)

    raise ValidationError(
        "launchMode must be one of: auto, jar, mainclass.", field="launchMode"
    )
