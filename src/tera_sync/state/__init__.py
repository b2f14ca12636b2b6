"""
State handling for TERA file sync.

This package holds the wire codec, the store adapters that wrap the host's
state container, the file locator that maps storage keys to project files,
and the configuration and status models.
"""

from .adapters import (
    GenericStoreAdapter,
    ModuleStoreAdapter,
    PatchStoreAdapter,
    StoreAdapter,
    create_adapter,
)
from .codec import decode, encode
from .locator import FileLocator
from .models import FileMetadata, SaveOutcome, SaveStatus, SyncConfig

__all__ = [
    "GenericStoreAdapter",
    "ModuleStoreAdapter",
    "PatchStoreAdapter",
    "StoreAdapter",
    "create_adapter",
    "decode",
    "encode",
    "FileLocator",
    "FileMetadata",
    "SaveOutcome",
    "SaveStatus",
    "SyncConfig",
]
