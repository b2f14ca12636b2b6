from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Union

from ..common.environment import (
    REQUIRED_ENVIRONMENT_METHODS,
    HostInstance,
    TeraEnvironment,
    maybe_await,
)
from ..common.retry import log_failed_attempt, run_with_retry
from ..common.tera_api import TeraFilesClient
from ..errors import ConfigurationError, NotFoundError
from ..state.adapters import StoreAdapter
from ..state.codec import decode, encode
from ..state.locator import FileLocator
from ..state.models import FileMetadata, SaveOutcome, SaveStatus, SyncConfig


logger = logging.getLogger(__name__)

INITIAL_ALERT = (
    "This TERA tool no longer automatically saves progress, use Ctrl+S, or click "
    "save in the top right corner, to save progress."
)
SAVE_FAILED_NOTICE = "Failed to save state to file, hit F12 for debug information."
LOAD_FAILED_NOTICE = "Failed to load state from file, using default state"
PROMPT_FAILED_NOTICE = "Failed to load data from the selected file."
EMPTY_FILE_NOTICE = "The selected file is empty."


class TeraFileSync:
    """
    Keeps a state container in sync with a JSON file in the TERA project.

    Lifecycle
    - construct with a config and a store adapter (see `create_tera_sync`);
    - `set_host(host)` once the host component exists;
    - `await set_tera_ready()` once its `tera` environment is usable. Only then
      are dirty tracking and autosave active and the file loaded;
    - `destroy()` when the host goes away.

    Save status: SAVED -> UNSAVED on a container mutation, UNSAVED -> SAVING ->
    SAVED on a successful save, SAVING -> UNSAVED when a save fails. At most one
    save runs at a time; a concurrent request is skipped rather than queued.
    Public operations report failures through their return value and a user
    notice instead of raising.
    """

    def __init__(
        self,
        config: Optional[Union[SyncConfig, Dict[str, Any]]],
        adapter: StoreAdapter,
        *,
        files_client: Optional[TeraFilesClient] = None,
    ) -> None:
        self.config = SyncConfig.build(config)
        if not isinstance(adapter, StoreAdapter):
            raise ConfigurationError("A valid store adapter must be provided.")
        self._adapter = adapter
        self._adapter.setup()

        self._host: Any = None
        self._files_client = files_client
        self._owns_files_client = files_client is None
        self._locator = FileLocator(
            adapter,
            self.config,
            self._environment,
            read_content=self._read_file_content,
        )
        self._save_status = SaveStatus.SAVED
        self._save_in_progress = False
        self._tera_ready = False
        self._has_shown_initial_alert = False
        self._autosave_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self.initialized = False

    # -------- Properties --------
    @property
    def save_status(self) -> SaveStatus:
        return self._save_status

    @property
    def has_unsaved_changes(self) -> bool:
        return self._save_status is SaveStatus.UNSAVED

    @property
    def adapter(self) -> StoreAdapter:
        return self._adapter

    # -------- Public API --------
    def set_host(self, host: HostInstance) -> None:
        """Attach the host component whose `tera` attribute is the environment."""
        if host is None:
            raise ConfigurationError("Host instance is required")
        tera = getattr(host, "tera", None)
        if tera is None:
            raise ConfigurationError("Host instance must have a 'tera' attribute")
        for name in REQUIRED_ENVIRONMENT_METHODS:
            if not callable(getattr(tera, name, None)):
                raise ConfigurationError(f"tera.{name} must be callable")
        self._host = host

    async def set_tera_ready(self) -> None:
        """Mark the environment ready: load state, then start tracking and autosave."""
        if self._host is None:
            raise ConfigurationError("Host instance must be set before calling set_tera_ready.")
        if self._tera_ready:
            logger.debug("set_tera_ready called again, ignoring")
            return
        self.set_host(self._host)
        # No-op unless destroy() tore the bookkeeping down before a re-ready
        self._adapter.setup()
        self._tera_ready = True
        await self._initialize_state()
        self._setup_autosave()
        self._setup_state_change_tracking()

    async def save_state(self) -> bool:
        return await self.save() is SaveOutcome.SAVED

    async def save(self) -> SaveOutcome:
        """Save the current state, returning the detailed outcome."""
        if self._save_in_progress:
            logger.debug("Save already in progress, skipping")
            return SaveOutcome.SKIPPED
        if self._host is None:
            logger.debug("No host instance, cannot save")
            return SaveOutcome.FAILED

        # Claimed before the hook runs so an async hook cannot admit a second save
        self._save_in_progress = True
        allowed = False
        try:
            allowed = await self._before_save_allows()
        finally:
            if not allowed:
                self._save_in_progress = False
        if not allowed:
            return SaveOutcome.VETOED

        file_name = ""
        try:
            self._update_save_status(SaveStatus.SAVING)
            await self._progress("Saving tool data")
            document = encode(self._adapter.get_state())

            async def _write() -> None:
                nonlocal file_name
                file_name = await self._locator.resolve(await self._locator.storage_key())
                await self._client().save_file_content(self._project_id(), file_name, document)

            await run_with_retry(
                _write,
                self.config.remote_retry,
                on_failed_attempt=log_failed_attempt("Save"),
            )
            self._update_save_status(SaveStatus.SAVED)
            logger.debug("State saved to file: %s", file_name)
            return SaveOutcome.SAVED
        except Exception:
            logger.exception("Failed to save state to file %s", file_name or "<unresolved>")
            self._update_save_status(SaveStatus.UNSAVED)
            await self._notify(SAVE_FAILED_NOTICE)
            return SaveOutcome.FAILED
        finally:
            self._save_in_progress = False
            await self._progress(None)

    async def load_and_apply_state_from_file(self) -> bool:
        """Load the mapped file and replace the container state with it."""
        if self._host is None:
            logger.error("State load failed: TERA API not available")
            return False

        await self._progress("Loading tool data")
        try:
            try:
                content = await self._load_state_from_file()
            except Exception:
                logger.exception("Failed to load state from file")
                await self._notify(LOAD_FAILED_NOTICE)
                self._update_save_status(SaveStatus.UNSAVED)
                return False

            if content is None:
                logger.debug("No file data found to load. Using default state.")
                self._update_save_status(SaveStatus.UNSAVED)
                return True

            try:
                state = decode(content)
                self._adapter.replace_state(state)
            except Exception:
                logger.exception("State load and apply failed")
                await self._notify("Error loading state from file.")
                self._update_save_status(SaveStatus.UNSAVED)
                return False

            logger.debug("Store state replaced from file data.")
            self._update_save_status(SaveStatus.SAVED)
            return True
        finally:
            await self._progress(None)

    async def prompt_for_new_json_file(self) -> None:
        """Let the user pick a JSON file, load it and make it the save target."""
        if self._host is None:
            return
        try:
            project_file = await self._environment().select_project_file(
                title="Load JSON file",
                show_hidden_files=True,
            )
            if not project_file:
                logger.debug("User cancelled file selection.")
                return

            data = await run_with_retry(
                lambda: project_file.get_contents(format="json"),
                self.config.remote_retry,
                on_failed_attempt=log_failed_attempt("Load prompted file"),
            )
            if not data:
                logger.debug("Selected file is empty.")
                await self._notify(EMPTY_FILE_NOTICE)
                return

            state = decode(data)
            key = await self._locator.storage_key()
            # Pointer moves only once the container holds the picked file's data
            previous = self._adapter.get_state()
            self._adapter.replace_state(state)
            try:
                await self._locator.repoint(key, project_file.path)
            except Exception:
                self._adapter.replace_state(previous)
                raise
            logger.debug("Store initialized from prompted file %s", project_file.path)
            self._update_save_status(SaveStatus.SAVED)
        except Exception:
            logger.exception("Failed to set state from prompted JSON file")
            await self._notify(PROMPT_FAILED_NOTICE)
            self._update_save_status(SaveStatus.UNSAVED)

    async def get_file_metadata(self) -> Optional[FileMetadata]:
        """Metadata of the mapped file, or None if there is no file yet."""
        if self._host is None:
            return None
        try:
            file_name = self._locator.lookup(await self._locator.storage_key())
            if not file_name:
                logger.debug("Cannot get metadata, no storage file name available.")
                return None
            file_obj = await self._environment().get_project_file(file_name, cache=False)
            if not file_obj:
                logger.debug("Could not retrieve file metadata for %s.", file_name)
                return None
            return FileMetadata(modified=_to_datetime(file_obj.modified))
        except NotFoundError:
            logger.debug("State file not found, no metadata available.")
            return None
        except Exception:
            logger.exception("Failed to get file metadata")
            return None

    def destroy(self) -> None:
        """Stop autosave and dirty tracking. Saves already running finish normally."""
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            self._autosave_task = None
        self._adapter.destroy()
        self.initialized = False
        self._tera_ready = False

    async def aclose(self) -> None:
        """`destroy()`, then wait for spawned saves and close the HTTP client we created."""
        self.destroy()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self._owns_files_client and self._files_client is not None:
            await self._files_client.aclose()
            self._files_client = None

    # -------- Internal --------
    def _environment(self) -> TeraEnvironment:
        if self._host is None:
            raise ConfigurationError("Host instance is not set")
        return self._host.tera

    def _project_id(self) -> str:
        project = getattr(self._environment(), "project", None)
        project_id = getattr(project, "id", None)
        if not project_id:
            raise ConfigurationError("TERA project context is missing.")
        return str(project_id)

    def _client(self) -> TeraFilesClient:
        if self._files_client is None:
            env = self._environment()
            self._files_client = TeraFilesClient(env.get_token)
        return self._files_client

    async def _read_file_content(self, file_name: str) -> Optional[Any]:
        return await run_with_retry(
            lambda: self._client().get_file_content(self._project_id(), file_name),
            self.config.remote_retry,
            on_failed_attempt=log_failed_attempt("Read shared file"),
        )

    async def _load_state_from_file(self) -> Optional[Any]:
        file_name = ""

        async def _read() -> Optional[Any]:
            nonlocal file_name
            file_name = await self._locator.resolve(await self._locator.storage_key())
            logger.debug("Loading state from file: %s", file_name)
            return await self._client().get_file_content(self._project_id(), file_name)

        try:
            content = await run_with_retry(
                _read,
                self.config.remote_retry,
                on_failed_attempt=log_failed_attempt("Load"),
            )
        except NotFoundError:
            logger.debug("State file not found, will be created on first save")
            return None
        if not content:
            logger.debug("File not found or empty")
            return None
        return content

    def _update_save_status(self, status: SaveStatus) -> None:
        logger.debug("Updating save status: %s", status.value)
        self._save_status = status
        try:
            self._adapter.update_save_status(status)
        except Exception:
            # The mirror is display-only; the engine's own status stays authoritative
            logger.exception("Failed to mirror save status into the store")

    async def _before_save_allows(self) -> bool:
        try:
            verdict = await maybe_await(self.config.on_before_save())
        except Exception:
            logger.exception("on_before_save hook raised; save aborted")
            return False
        if verdict is not True:
            logger.debug("Save prevented by on_before_save hook. Reason: %r", verdict)
            if isinstance(verdict, str) and verdict:
                await self._notify(verdict)
            return False
        return True

    async def _notify(self, message: str) -> None:
        notify = getattr(self._host, "notify", None)
        if not callable(notify):
            logger.warning("Notice: %s", message)
            return
        try:
            await maybe_await(notify(message))
        except Exception:
            logger.exception("Host notify failed for message: %s", message)

    async def _progress(self, title: Optional[str]) -> None:
        env = getattr(self._host, "tera", None)
        ui_progress = getattr(env, "ui_progress", None)
        if not callable(ui_progress):
            return
        options: Union[Dict[str, Any], bool] = (
            {"title": title, "backdrop": "static"} if title else False
        )
        try:
            await maybe_await(ui_progress(options))
        except Exception:
            logger.exception("ui_progress failed")

    async def _initialize_state(self) -> None:
        if not self._tera_ready or self._host is None:
            logger.debug("TERA not ready, skipping initialization")
            return
        try:
            if self.config.load_immediately:
                logger.debug("Initializing with immediate load from file.")
                await self.load_and_apply_state_from_file()
            else:
                logger.debug("Skipping immediate load. State will be considered unsaved until loaded.")
                self._update_save_status(SaveStatus.UNSAVED)
            await self._show_initial_alert()
        finally:
            self.initialized = True

    async def _show_initial_alert(self) -> None:
        if self.config.show_initial_alert and not self._has_shown_initial_alert:
            self._has_shown_initial_alert = True
            await self._notify(INITIAL_ALERT)

    def _setup_autosave(self) -> None:
        minutes = self.config.auto_save_interval_minutes
        if minutes <= 0:
            logger.debug("Auto-save disabled")
            return
        if self._autosave_task is not None:
            self._autosave_task.cancel()
        logger.debug("Setting up auto-save every %s minutes", minutes)
        self._autosave_task = asyncio.create_task(self._autosave_loop(minutes * 60.0))

    async def _autosave_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._autosave_tick()

    def _autosave_tick(self) -> Optional[asyncio.Task]:
        if not self._tera_ready:
            return None
        if self._save_status is SaveStatus.SAVED:
            logger.debug("Auto-save skipped - no changes detected")
            return None
        logger.debug("Auto-save triggered")
        # Spawned separately so cancelling the timer never aborts a running save
        task = asyncio.create_task(self.save())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _setup_state_change_tracking(self) -> None:
        self._adapter.subscribe(self._on_mutation)

    def _on_mutation(self, *_args: Any, **_kwargs: Any) -> None:
        if not self._tera_ready or self._save_status is SaveStatus.SAVING:
            return
        if self._save_status is not SaveStatus.UNSAVED:
            self._update_save_status(SaveStatus.UNSAVED)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Millisecond epoch timestamps, as produced by Date.getTime()
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


__all__ = ["TeraFileSync"]
