"""Build pipeline: scan sources, upload files, assemble and publish manifests."""

from .manifest import Manifest, ManifestAssembler, ManifestFile
from .publisher import ArtifactPublisher, CancellationToken
from .scanner import ContentScanner, SourceEntry

__all__ = [
    "ArtifactPublisher",
    "CancellationToken",
    "ContentScanner",
    "Manifest",
    "ManifestAssembler",
    "ManifestFile",
    "SourceEntry",
]
