"""
Interfaces of the host collaborators consumed by the sync engine.

The engine never imports the host framework; it only relies on these shapes.
Any object providing the listed attributes works (structural typing).
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Dict, Optional, Protocol, Union


class TeraUser(Protocol):
    id: Union[str, int]


class TeraProject(Protocol):
    id: Union[str, int]
    # key -> file name mapping, persisted by set_project_state("temp.<key>")
    temp: Dict[str, Any]


class TeraProjectFile(Protocol):
    path: str
    modified: Any

    async def get_contents(self, *, format: str = "json") -> Any: ...

    async def set_contents(self, data: Any) -> None: ...


class TeraEnvironment(Protocol):
    """The `tera` API object of a host instance."""

    project: TeraProject

    async def get_user(self) -> TeraUser: ...

    def get_token(self) -> Union[str, Awaitable[str], None]: ...

    async def get_project_file(self, file_name: str, *, cache: bool = True) -> Optional[TeraProjectFile]: ...

    async def create_project_file(self, file_name: str) -> TeraProjectFile: ...

    async def set_project_state(self, key: str, value: Any) -> None: ...

    async def select_project_file(self, *, title: str, show_hidden_files: bool) -> Optional[TeraProjectFile]: ...

    async def ui_progress(self, options: Union[Dict[str, Any], bool]) -> None: ...


class HostInstance(Protocol):
    """A host component exposing the `tera` environment (and optionally `notify`)."""

    tera: TeraEnvironment


# Methods set_host() verifies on the environment before accepting a host
REQUIRED_ENVIRONMENT_METHODS = (
    "get_user",
    "get_token",
    "get_project_file",
    "create_project_file",
    "set_project_state",
    "ui_progress",
)


async def maybe_await(value: Any) -> Any:
    """Resolve `value` if the host returned an awaitable, else pass it through."""
    if inspect.isawaitable(value):
        return await value
    return value


__all__ = [
    "TeraUser",
    "TeraProject",
    "TeraProjectFile",
    "TeraEnvironment",
    "HostInstance",
    "REQUIRED_ENVIRONMENT_METHODS",
    "maybe_await",
]
