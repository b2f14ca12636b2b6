from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..common.retry import PROVISION_POLICY, REMOTE_POLICY, RetryPolicy
from ..errors import ConfigurationError


# Environment variable names for convenience configuration
ENV_KEY_PREFIX = "TERA_SYNC_KEY_PREFIX"
ENV_SEPARATE_USER_STATE = "TERA_SYNC_SEPARATE_USER_STATE"
ENV_AUTOSAVE_MINUTES = "TERA_SYNC_AUTOSAVE_MINUTES"
ENV_LOAD_IMMEDIATELY = "TERA_SYNC_LOAD_IMMEDIATELY"


class SaveStatus(str, Enum):
    """Save status of the synchronized state; values double as UI labels."""

    SAVED = "Saved"
    UNSAVED = "Unsaved changes"
    SAVING = "Saving..."


class SaveOutcome(str, Enum):
    """Detailed result of a single save request."""

    SAVED = "saved"
    FAILED = "failed"
    VETOED = "vetoed"
    SKIPPED = "skipped"


class FileMetadata(BaseModel):
    modified: datetime


def _allow_save() -> Union[bool, str]:
    return True


class SyncConfig(BaseModel):
    """
    Settings for a TeraFileSync instance.

    Fields
    - key_prefix: prefix for the storage key and the generated file name,
      usually the tool name (e.g., "wordFreq" -> "data-wordFreq-<id>.json").
    - is_separate_state_for_each_user: keep one file per user instead of one
      per project. The storage key becomes "<prefix>-<userId>".
    - auto_save_interval_minutes: autosave period; 0 disables autosave.
    - show_initial_alert: show a one-off notice about manual saving once the
      environment is ready.
    - load_immediately: load the file as soon as the environment is ready.
    - on_before_save: veto hook, plain or `async def`. `True` lets the save
      proceed; a non-empty string aborts it and is shown to the user; anything
      else aborts silently.
    - user_state_migration: what a fresh per-user file starts from. "fresh"
      uses the current container state, "copy_shared" seeds it from the
      project-wide file when one is mapped.
    - provision_retry / remote_retry: retry schedules for file provisioning
      and for load/save calls.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    key_prefix: str = ""
    is_separate_state_for_each_user: bool = False
    auto_save_interval_minutes: float = Field(default=15, ge=0)
    show_initial_alert: bool = False
    load_immediately: bool = True
    on_before_save: Callable[[], Any] = _allow_save
    user_state_migration: Literal["fresh", "copy_shared"] = "fresh"
    provision_retry: RetryPolicy = PROVISION_POLICY
    remote_retry: RetryPolicy = REMOTE_POLICY

    @field_validator("key_prefix", mode="before")
    @classmethod
    def _prefix_is_str(cls, v: Any) -> Any:
        if not isinstance(v, str):
            raise ValueError("key_prefix must be a string")
        return v

    @field_validator(
        "is_separate_state_for_each_user",
        "show_initial_alert",
        "load_immediately",
        mode="before",
    )
    @classmethod
    def _strict_bool(cls, v: Any) -> Any:
        if not isinstance(v, bool):
            raise ValueError("must be a boolean")
        return v

    @classmethod
    def build(cls, config: Optional[Union["SyncConfig", Dict[str, Any]]] = None) -> "SyncConfig":
        """Validate user options, reporting problems as ConfigurationError."""
        if isinstance(config, SyncConfig):
            return config
        try:
            return cls.model_validate(config or {})
        except ValidationError as ve:
            raise ConfigurationError(f"Invalid sync configuration: {ve}") from ve

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls, **overrides: Any) -> "SyncConfig":
        values: Dict[str, Any] = {}
        prefix = os.environ.get(ENV_KEY_PREFIX)
        if prefix:
            values["key_prefix"] = prefix
        separate = os.environ.get(ENV_SEPARATE_USER_STATE)
        if separate:
            values["is_separate_state_for_each_user"] = _parse_flag(ENV_SEPARATE_USER_STATE, separate)
        minutes = os.environ.get(ENV_AUTOSAVE_MINUTES)
        if minutes:
            values["auto_save_interval_minutes"] = minutes
        load = os.environ.get(ENV_LOAD_IMMEDIATELY)
        if load:
            values["load_immediately"] = _parse_flag(ENV_LOAD_IMMEDIATELY, load)
        values.update(overrides)
        return cls.build(values)


def _parse_flag(name: str, raw: str) -> bool:
    val = raw.strip().lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean flag, got {raw!r}")


__all__ = ["SaveStatus", "SaveOutcome", "FileMetadata", "SyncConfig"]
