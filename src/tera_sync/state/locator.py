from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

from ..common.environment import TeraEnvironment
from ..common.retry import log_failed_attempt, run_with_retry
from .adapters import StoreAdapter
from .codec import encode
from .models import SyncConfig


logger = logging.getLogger(__name__)

ContentReader = Callable[[str], Awaitable[Optional[Any]]]


class FileLocator:
    """
    Maps a storage key to the project file that holds the synchronized state.

    Usage
    - `await storage_key()` derives the key: the configured prefix, or
      "<prefix>-<userId>" when per-user state is enabled (user id cached).
    - `await resolve(key)` returns the mapped file name from `project.temp`,
      provisioning a new file on first use.
    - `await repoint(key, file_name)` is the only way to change an existing
      mapping (used when the user loads a different file).

    Provisioning creates the file, writes the encoded current state into it and
    persists "temp.<key>". The mapping is recorded only after all three steps
    succeed, so a failed attempt leaves nothing behind and the next call starts
    over.
    """

    def __init__(
        self,
        adapter: StoreAdapter,
        config: SyncConfig,
        environment: Callable[[], TeraEnvironment],
        *,
        read_content: Optional[ContentReader] = None,
    ) -> None:
        self._adapter = adapter
        self._config = config
        self._environment = environment
        self._read_content = read_content
        self._user_id: Optional[Union[str, int]] = None
        self._provision_lock = asyncio.Lock()

    @property
    def user_id(self) -> Optional[Union[str, int]]:
        return self._user_id

    async def storage_key(self) -> str:
        prefix = self._config.key_prefix
        if not self._config.is_separate_state_for_each_user:
            return prefix
        if self._user_id is None:
            user = await self._environment().get_user()
            self._user_id = user.id
            logger.debug("User ID initialized: %s", self._user_id)
        return f"{prefix}-{self._user_id}"

    def lookup(self, key: str) -> Optional[str]:
        """Return the file mapped to `key` without provisioning anything."""
        temp = self._project_temp()
        file_name = temp.get(key)
        if file_name is None:
            return None
        if not isinstance(file_name, str):
            raise TypeError(f"Mapped file name for {key!r} is not a string: {file_name!r}")
        return file_name

    async def resolve(self, key: str) -> str:
        file_name = self.lookup(key)
        if file_name is not None:
            return file_name

        async with self._provision_lock:
            # Another caller may have finished provisioning while we waited
            file_name = self.lookup(key)
            if file_name is None:
                file_name = await self._provision(key)
        return file_name

    async def repoint(self, key: str, file_name: str) -> None:
        env = self._environment()
        await env.set_project_state(f"temp.{key}", file_name)
        self._project_temp()[key] = file_name
        logger.debug("Storage key %s now points to %s", key, file_name)

    # -------- Internal --------
    def _project_temp(self) -> dict:
        project = self._environment().project
        if getattr(project, "temp", None) is None:
            logger.warning("project.temp is missing; creating it.")
            project.temp = {}
        return project.temp

    @staticmethod
    def _new_file_name(prefix: str) -> str:
        return f"data-{prefix}-{uuid4().hex}.json"

    async def _initial_content(self, key: str) -> Any:
        if (
            self._config.user_state_migration == "copy_shared"
            and self._config.is_separate_state_for_each_user
            and self._read_content is not None
        ):
            shared_key = self._config.key_prefix
            shared_file = self.lookup(shared_key) if shared_key != key else None
            if shared_file:
                content = await self._read_content(shared_file)
                if content is not None:
                    logger.debug("Seeding %s from shared file %s", key, shared_file)
                    return content
        return encode(self._adapter.get_state())

    async def _provision(self, key: str) -> str:
        env = self._environment()
        policy = self._config.provision_retry
        file_name = self._new_file_name(self._config.key_prefix)
        logger.debug("No existing file for key %s, creating %s", key, file_name)

        new_file = await run_with_retry(
            lambda: env.create_project_file(file_name),
            policy,
            on_failed_attempt=log_failed_attempt("Create file"),
        )
        content = await self._initial_content(key)
        await run_with_retry(
            lambda: new_file.set_contents(content),
            policy,
            on_failed_attempt=log_failed_attempt("Set contents"),
        )
        await run_with_retry(
            lambda: env.set_project_state(f"temp.{key}", file_name),
            policy,
            on_failed_attempt=log_failed_attempt("Set storage key"),
        )

        self._project_temp()[key] = file_name
        return file_name


__all__ = ["FileLocator"]
