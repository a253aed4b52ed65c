"""
Database package for Launcher Publisher.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .history import CappedLog
from .models import BuildModel, PreflightRunModel, ProfileModel, ServerModel

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "CappedLog",
    "BuildModel",
    "PreflightRunModel",
    "ProfileModel",
    "ServerModel",
]
