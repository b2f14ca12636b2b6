import os
import sys
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest


def pytest_configure():
    # Ensure `src/` is importable for `tera_sync.*` imports without installing
    root = os.path.abspath(os.path.dirname(__file__) + "/..")
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


# --- Host environment fakes ---

class FakeProjectFile:
    def __init__(self, path: str, *, contents: Any = None, modified: Any = "2025-01-02T03:04:05Z") -> None:
        self.path = path
        self.modified = modified
        self.contents = contents
        self.fail_set = 0
        self.fail_get = 0
        self.get_calls = 0

    async def get_contents(self, *, format: str = "json") -> Any:
        self.get_calls += 1
        if self.fail_get > 0:
            self.fail_get -= 1
            raise RuntimeError("read failed")
        return self.contents

    async def set_contents(self, data: Any) -> None:
        if self.fail_set > 0:
            self.fail_set -= 1
            raise RuntimeError("write failed")
        self.contents = data


class FakeTera:
    """In-memory stand-in for the host's `tera` environment."""

    def __init__(self, *, project_id: str = "proj-1", user_id: Any = "u1", token: Optional[str] = "tok") -> None:
        self.project = SimpleNamespace(id=project_id, temp={})
        self.user_id = user_id
        self.token = token
        self.files: Dict[str, FakeProjectFile] = {}
        self.project_state: Dict[str, Any] = {}
        self.progress: List[Any] = []
        self.selected: Optional[FakeProjectFile] = None
        self.fail_create = 0
        self.fail_set_state = 0
        self.create_calls = 0
        self.user_calls = 0

    async def get_user(self):
        self.user_calls += 1
        return SimpleNamespace(id=self.user_id)

    def get_token(self) -> Optional[str]:
        return self.token

    async def get_project_file(self, file_name: str, *, cache: bool = True):
        return self.files.get(file_name)

    async def create_project_file(self, file_name: str) -> FakeProjectFile:
        self.create_calls += 1
        if self.fail_create > 0:
            self.fail_create -= 1
            raise RuntimeError("create failed")
        f = FakeProjectFile(file_name)
        self.files[file_name] = f
        return f

    async def set_project_state(self, key: str, value: Any) -> None:
        if self.fail_set_state > 0:
            self.fail_set_state -= 1
            raise RuntimeError("set state failed")
        self.project_state[key] = value

    async def select_project_file(self, *, title: str, show_hidden_files: bool):
        return self.selected

    async def ui_progress(self, options: Any) -> None:
        self.progress.append(options)


class FakeHost:
    def __init__(self, tera: Optional[FakeTera] = None) -> None:
        self.tera = tera or FakeTera()
        self.notices: List[str] = []

    def notify(self, message: str) -> None:
        self.notices.append(message)


class FakeFilesClient:
    """Duck-typed TeraFilesClient backed by a dict."""

    def __init__(self) -> None:
        self.remote: Dict[str, Any] = {}
        self.save_calls: List[tuple] = []
        self.get_calls: List[tuple] = []
        self.fail_saves = 0
        self.fail_gets = 0
        self.get_error: Optional[Exception] = None
        self.save_hook: Optional[Callable[[], Any]] = None

    async def get_file_content(self, project_id: str, file_path: str) -> Any:
        self.get_calls.append((project_id, file_path))
        if self.get_error is not None:
            raise self.get_error
        if self.fail_gets > 0:
            self.fail_gets -= 1
            raise RuntimeError("get failed")
        return self.remote.get(file_path)

    async def save_file_content(self, project_id: str, file_path: str, content: Any) -> None:
        self.save_calls.append((project_id, file_path, content))
        if self.save_hook is not None:
            await self.save_hook()
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise RuntimeError("save failed")
        self.remote[file_path] = content


# --- Store fakes, one per supported container shape ---

class FakeModuleStore:
    """Module-registry store: state dict, commit/subscribe, namespaced modules."""

    def __init__(self, state: Optional[Dict[str, Any]] = None) -> None:
        self.state: Dict[str, Any] = dict(state or {})
        self._modules: Dict[str, Dict[str, Any]] = {}
        self._subscribers: List[Callable] = []
        self.register_calls = 0

    def has_module(self, path: str) -> bool:
        return path in self._modules

    def register_module(self, path: str, module: Dict[str, Any]) -> None:
        self.register_calls += 1
        self._modules[path] = module
        self.state[path] = dict(module["state"])

    def unregister_module(self, path: str) -> None:
        self._modules.pop(path, None)
        self.state.pop(path, None)

    def commit(self, mutation_type: str, payload: Any = None) -> None:
        if "/" in mutation_type:
            namespace, name = mutation_type.split("/", 1)
            self._modules[namespace]["mutations"][name](self.state[namespace], payload)
        else:
            self.state[mutation_type] = payload
        mutation = {"type": mutation_type, "payload": payload}
        for sub in list(self._subscribers):
            sub(mutation, self.state)

    def subscribe(self, handler: Callable) -> Callable[[], None]:
        self._subscribers.append(handler)
        return lambda: self._subscribers.remove(handler)

    def replace_state(self, state: Dict[str, Any]) -> None:
        self.state = state


class FakePatchStore:
    """Patch-based store: store_id, state, patch(), subscribe()."""

    def __init__(self, state: Optional[Dict[str, Any]] = None, store_id: str = "main") -> None:
        self.store_id = store_id
        self.state: Dict[str, Any] = dict(state or {})
        self._subscribers: List[Callable] = []

    def patch(self, partial: Dict[str, Any]) -> None:
        self.state.update(partial)
        for sub in list(self._subscribers):
            sub({"type": "patch", "payload": partial}, self.state)

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)


class FakeGenericStore:
    """Aggregator exposing the four generic operations."""

    def __init__(self, state: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = dict(state or {})
        self.status: Any = None
        self._subscribers: List[Callable] = []

    def get_state(self) -> Dict[str, Any]:
        return dict(self.data)

    def replace_state(self, new_state: Dict[str, Any]) -> None:
        self.data = dict(new_state)
        self._emit()

    def update_save_status(self, status: Any) -> None:
        self.status = status
        self._emit()

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value
        self._emit()

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def _emit(self) -> None:
        for sub in list(self._subscribers):
            sub()


@pytest.fixture
def tera() -> FakeTera:
    return FakeTera()


@pytest.fixture
def host(tera: FakeTera) -> FakeHost:
    return FakeHost(tera)


@pytest.fixture
def files_client() -> FakeFilesClient:
    return FakeFilesClient()
