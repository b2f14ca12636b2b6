from __future__ import annotations

import re
from collections import OrderedDict

import pytest

from conftest import FakeGenericStore, FakeTera
from tera_sync.common.retry import RetryPolicy
from tera_sync.state.adapters import GenericStoreAdapter
from tera_sync.state.locator import FileLocator
from tera_sync.state.models import SyncConfig


FAST = RetryPolicy(attempts=2, initial_delay=0.0, backoff_factor=1.0)


def _locator(tera: FakeTera, store=None, **config) -> FileLocator:
    cfg = SyncConfig.build({"provision_retry": FAST, "remote_retry": FAST, **config})
    adapter = GenericStoreAdapter(store or FakeGenericStore())
    return FileLocator(adapter, cfg, lambda: tera)


@pytest.mark.asyncio
async def test_fresh_key_provisions_file_once():
    tera = FakeTera()
    store = FakeGenericStore({"counts": OrderedDict([("the", 3)])})
    locator = _locator(tera, store, key_prefix="wordFreq")

    key = await locator.storage_key()
    assert key == "wordFreq"

    file_name = await locator.resolve(key)
    assert re.fullmatch(r"data-wordFreq-[0-9a-f]{32}\.json", file_name)
    assert tera.files[file_name].contents == {"counts": {"__isMap": True, "the": 3}}
    assert tera.project_state == {"temp.wordFreq": file_name}
    assert tera.project.temp["wordFreq"] == file_name

    again = await locator.resolve(key)
    assert again == file_name
    assert tera.create_calls == 1


@pytest.mark.asyncio
async def test_existing_mapping_is_reused():
    tera = FakeTera()
    tera.project.temp["tool"] = "data-tool-existing.json"
    locator = _locator(tera, key_prefix="tool")

    assert await locator.resolve("tool") == "data-tool-existing.json"
    assert tera.create_calls == 0


@pytest.mark.asyncio
async def test_failed_mapping_write_leaves_no_mapping_and_next_call_reprovisions():
    tera = FakeTera()
    # Exhaust both provisioning attempts of the mapping write
    tera.fail_set_state = 2
    locator = _locator(tera, key_prefix="tool")

    with pytest.raises(RuntimeError):
        await locator.resolve("tool")
    assert "tool" not in tera.project.temp
    assert locator.lookup("tool") is None
    assert tera.create_calls == 1

    file_name = await locator.resolve("tool")
    assert tera.create_calls == 2
    assert tera.project.temp["tool"] == file_name


@pytest.mark.asyncio
async def test_create_is_retried_under_provisioning_policy():
    tera = FakeTera()
    tera.fail_create = 1
    locator = _locator(tera, key_prefix="tool")

    file_name = await locator.resolve("tool")
    assert tera.create_calls == 2
    assert file_name in tera.files


@pytest.mark.asyncio
async def test_per_user_key_resolves_user_once():
    tera = FakeTera(user_id=42)
    locator = _locator(tera, key_prefix="tool", is_separate_state_for_each_user=True)

    assert await locator.storage_key() == "tool-42"
    assert await locator.storage_key() == "tool-42"
    assert tera.user_calls == 1
    assert locator.user_id == 42


@pytest.mark.asyncio
async def test_copy_shared_migration_seeds_user_file_from_project_file():
    tera = FakeTera(user_id="u9")
    tera.project.temp["tool"] = "data-tool-shared.json"

    async def read_content(name):
        assert name == "data-tool-shared.json"
        return {"words": ["shared"]}

    cfg = SyncConfig.build(
        {
            "key_prefix": "tool",
            "is_separate_state_for_each_user": True,
            "user_state_migration": "copy_shared",
            "provision_retry": FAST,
        }
    )
    locator = FileLocator(
        GenericStoreAdapter(FakeGenericStore({"words": ["local"]})),
        cfg,
        lambda: tera,
        read_content=read_content,
    )

    file_name = await locator.resolve(await locator.storage_key())
    assert tera.files[file_name].contents == {"words": ["shared"]}


@pytest.mark.asyncio
async def test_fresh_migration_ignores_shared_file():
    tera = FakeTera(user_id="u9")
    tera.project.temp["tool"] = "data-tool-shared.json"
    locator = _locator(
        tera,
        FakeGenericStore({"words": ["local"]}),
        key_prefix="tool",
        is_separate_state_for_each_user=True,
    )

    file_name = await locator.resolve(await locator.storage_key())
    assert file_name != "data-tool-shared.json"
    assert tera.files[file_name].contents == {"words": ["local"]}


@pytest.mark.asyncio
async def test_repoint_updates_remote_and_local_mapping():
    tera = FakeTera()
    tera.project.temp["tool"] = "old.json"
    locator = _locator(tera, key_prefix="tool")

    await locator.repoint("tool", "picked.json")

    assert tera.project_state["temp.tool"] == "picked.json"
    assert await locator.resolve("tool") == "picked.json"
