"""
Launcher Publisher

Builds launcher profiles from source trees and publishes them to object
storage with a manifest for installers.
"""

import importlib.metadata

__version__ = importlib.metadata.version("launcher-publisher")

from .errors import PublisherError
from .pipeline.publisher import ArtifactPublisher, CancellationToken
from .storage import ObjectStore, create_object_store

__all__ = [
    "ArtifactPublisher",
    "CancellationToken",
    "ObjectStore",
    "PublisherError",
    "create_object_store",
]
