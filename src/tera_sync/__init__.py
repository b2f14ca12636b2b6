"""
tera-file-sync: keep an in-memory state container in sync with a JSON file
stored in a TERA project.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from .common.retry import RetryPolicy
from .common.tera_api import TeraFilesClient
from .errors import (
    AuthenticationError,
    CodecError,
    ConfigurationError,
    DecodingError,
    EncodingError,
    NotFoundError,
    TeraApiError,
    TeraSyncError,
    TransientRemoteError,
)
from .state.adapters import create_adapter
from .state.models import FileMetadata, SaveOutcome, SaveStatus, SyncConfig
from .sync.engine import TeraFileSync


def create_tera_sync(
    config: Optional[Union[SyncConfig, Dict[str, Any]]],
    store: Any,
    *,
    files_client: Optional[TeraFilesClient] = None,
) -> TeraFileSync:
    """
    Create a sync engine for `store`.

    `store` may be a module store, a patch store, an object exposing
    get_state/replace_state/update_save_status/subscribe, or a ready-made
    StoreAdapter. Unsupported stores and invalid options raise
    ConfigurationError.
    """
    return TeraFileSync(config, create_adapter(store), files_client=files_client)


__all__ = [
    "create_tera_sync",
    "TeraFileSync",
    "SyncConfig",
    "SaveStatus",
    "SaveOutcome",
    "FileMetadata",
    "RetryPolicy",
    "TeraFilesClient",
    "TeraSyncError",
    "ConfigurationError",
    "CodecError",
    "EncodingError",
    "DecodingError",
    "TeraApiError",
    "TransientRemoteError",
    "NotFoundError",
    "AuthenticationError",
]
