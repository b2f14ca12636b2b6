"""
Store adapters: one capability set over several state-container shapes.

Every adapter offers get_state / replace_state / update_save_status /
subscribe plus setup / destroy. `create_adapter` picks the variant by probing
the container's attributes once, richest shape first.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from ..errors import ConfigurationError
from .models import SaveStatus


logger = logging.getLogger(__name__)

# Namespace registered on module stores to hold the mirrored save status
SYNC_MODULE = "__tera_file_sync"
# State field patch stores must declare for the mirrored save status
STATUS_FIELD = "save_status"

MutationCallback = Callable[..., None]
Unsubscribe = Callable[[], None]

MODULE_STORE_CAPABILITIES = (
    "commit",
    "subscribe",
    "has_module",
    "register_module",
    "unregister_module",
    "replace_state",
)
PATCH_STORE_CAPABILITIES = ("patch", "subscribe")
GENERIC_STORE_CAPABILITIES = ("get_state", "replace_state", "update_save_status", "subscribe")


def _noop() -> None:
    return None


def _has_callables(obj: Any, names: tuple) -> bool:
    return all(callable(getattr(obj, name, None)) for name in names)


class StoreAdapter:
    """
    Base adapter. Subclasses bind one container shape.

    The mirrored save status is written by `update_save_status`; while that
    write is in progress `_writing_status` is set and mutations delivered by the
    container are not forwarded, so the mirror never counts as a user change.
    """

    def __init__(self, store: Any) -> None:
        self._store = store
        self._unsubscribe: Unsubscribe = _noop
        self._writing_status = False

    def setup(self) -> None:
        pass

    def get_state(self) -> Dict[str, Any]:
        raise NotImplementedError

    def replace_state(self, new_state: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _write_status(self, status: SaveStatus) -> None:
        raise NotImplementedError

    def _subscribe(self, handler: MutationCallback) -> Optional[Unsubscribe]:
        raise NotImplementedError

    def update_save_status(self, status: SaveStatus) -> None:
        self._writing_status = True
        try:
            self._write_status(status)
        finally:
            self._writing_status = False

    def subscribe(self, on_mutation: MutationCallback) -> Unsubscribe:
        """Forward container mutations to `on_mutation`, skipping our own status writes."""

        def _handler(*args: Any, **kwargs: Any) -> None:
            if self._writing_status:
                return
            on_mutation(*args, **kwargs)

        # Replace (not stack) any previous subscription
        self._unsubscribe()
        unsubscribe = self._subscribe(_handler)
        self._unsubscribe = unsubscribe if callable(unsubscribe) else _noop
        return self.unsubscribe

    def unsubscribe(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, _noop
        unsubscribe()

    def destroy(self) -> None:
        self.unsubscribe()


class ModuleStoreAdapter(StoreAdapter):
    """
    Stores built from namespaced modules: `state`, `commit(type, payload)`,
    `subscribe(handler)`, module registration and `replace_state(state)`.
    The save status lives in a dedicated `__tera_file_sync` module.
    """

    def setup(self) -> None:
        if self._store.has_module(SYNC_MODULE):
            logger.debug("Store module %s already registered.", SYNC_MODULE)
            return

        def _update(state: Dict[str, Any], status: SaveStatus) -> None:
            state[STATUS_FIELD] = status

        self._store.register_module(
            SYNC_MODULE,
            {
                "namespaced": True,
                "state": {STATUS_FIELD: SaveStatus.SAVED},
                "mutations": {"update_save_status": _update},
                "getters": {"get_save_status": lambda state: state[STATUS_FIELD]},
            },
        )

    def get_state(self) -> Dict[str, Any]:
        return {k: v for k, v in self._store.state.items() if k != SYNC_MODULE}

    def replace_state(self, new_state: Dict[str, Any]) -> None:
        merged = dict(self._store.state)
        merged.update({k: v for k, v in new_state.items() if k != SYNC_MODULE})
        self._store.replace_state(merged)

    def _write_status(self, status: SaveStatus) -> None:
        # Module is gone after destroy(); a save still in flight has nowhere to mirror to
        if not self._store.has_module(SYNC_MODULE):
            return
        self._store.commit(f"{SYNC_MODULE}/update_save_status", status)

    def _subscribe(self, handler: MutationCallback) -> Optional[Unsubscribe]:
        return self._store.subscribe(handler)

    def destroy(self) -> None:
        super().destroy()
        if self._store.has_module(SYNC_MODULE):
            self._store.unregister_module(SYNC_MODULE)
            logger.debug("Unregistered store module %s.", SYNC_MODULE)


class PatchStoreAdapter(StoreAdapter):
    """
    Stores updated through `patch(partial_state)` that expose `state` and
    `subscribe(callback)`. The state must declare a `save_status` field.
    """

    def setup(self) -> None:
        if STATUS_FIELD not in self._store.state:
            raise ConfigurationError(
                f"Patch store must have a '{STATUS_FIELD}' field in its state for TERA file sync to work."
            )

    def get_state(self) -> Dict[str, Any]:
        return {k: v for k, v in self._store.state.items() if k != STATUS_FIELD}

    def replace_state(self, new_state: Dict[str, Any]) -> None:
        self._store.patch({k: v for k, v in new_state.items() if k != STATUS_FIELD})

    def _write_status(self, status: SaveStatus) -> None:
        self._store.patch({STATUS_FIELD: status})

    def _subscribe(self, handler: MutationCallback) -> Optional[Unsubscribe]:
        return self._store.subscribe(handler)


class GenericStoreAdapter(StoreAdapter):
    """Proxies the four operations to the container's own functions."""

    def __init__(self, store: Any) -> None:
        missing = [name for name in GENERIC_STORE_CAPABILITIES if not callable(getattr(store, name, None))]
        if missing:
            raise ConfigurationError(
                "The provided store object must have callable "
                + ", ".join(f"'{name}'" for name in missing)
            )
        super().__init__(store)

    def get_state(self) -> Dict[str, Any]:
        return self._store.get_state()

    def replace_state(self, new_state: Dict[str, Any]) -> None:
        self._store.replace_state(new_state)

    def _write_status(self, status: SaveStatus) -> None:
        self._store.update_save_status(status)

    def _subscribe(self, handler: MutationCallback) -> Optional[Unsubscribe]:
        return self._store.subscribe(handler)


def create_adapter(store: Any) -> StoreAdapter:
    """Pick the adapter matching `store`'s shape; the caller runs `setup()`."""
    if isinstance(store, StoreAdapter):
        adapter = store
    elif store is not None and _has_callables(store, MODULE_STORE_CAPABILITIES) and hasattr(store, "state"):
        logger.debug("Detected module store. Using ModuleStoreAdapter.")
        adapter = ModuleStoreAdapter(store)
    elif store is not None and _has_callables(store, PATCH_STORE_CAPABILITIES) and isinstance(
        getattr(store, "store_id", None), str
    ):
        logger.debug("Detected patch store. Using PatchStoreAdapter.")
        adapter = PatchStoreAdapter(store)
    elif store is not None and any(callable(getattr(store, n, None)) for n in GENERIC_STORE_CAPABILITIES):
        logger.debug("Detected custom store object. Using GenericStoreAdapter.")
        adapter = GenericStoreAdapter(store)
    else:
        raise ConfigurationError(
            "Could not determine store type. Provide a module store, a patch store, "
            "or an object with get_state/replace_state/update_save_status/subscribe."
        )
    return adapter


__all__ = [
    "StoreAdapter",
    "ModuleStoreAdapter",
    "PatchStoreAdapter",
    "GenericStoreAdapter",
    "create_adapter",
    "SYNC_MODULE",
    "STATUS_FIELD",
]
