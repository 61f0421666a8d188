"""Tests for the accessor helpers and the in-memory accessor."""

import asyncio

import pytest

from gateway.accessor import AccessorNotSupported, DataAccessor, MemoryAccessor, call_accessor
from tests.conftest import SEED


def test_call_accessor_sync_and_async():
    def sync_method(a, b):
        return a + b

    async def async_method(a, b):
        return a * b

    assert asyncio.run(call_accessor(sync_method, 2, 3)) == 5
    assert asyncio.run(call_accessor(async_method, 2, 3)) == 6


def test_optional_methods_default_to_unsupported():
    class Minimal(DataAccessor):
        get_projects = get_project = get_chapter_content = lambda self, *a: None
        save_chapter_content = get_settings = save_settings = lambda self, *a: None

    with pytest.raises(AccessorNotSupported):
        Minimal().get_recent_projects()
    with pytest.raises(AccessorNotSupported):
        Minimal().get_tutorial_files()


def test_seed_is_copied():
    accessor = MemoryAccessor(SEED)
    accessor.save_chapter_content("novel", "ch1", "changed")
    assert SEED["projects"]["novel"]["chapters"]["ch1"]["content"] != "changed"


def test_saving_new_chapter_creates_it():
    accessor = MemoryAccessor(SEED)
    accessor.save_chapter_content("novel", "ch3", "new")
    assert accessor.get_chapter_content("novel", "ch3") == {"id": "ch3", "content": "new"}
    assert [c["id"] for c in accessor.get_project("novel")["chapters"]] == ["ch1", "ch2", "ch3"]


def test_unknown_project_raises():
    with pytest.raises(KeyError):
        MemoryAccessor().get_project("nope")


def test_from_yaml(tmp_path):
    path = tmp_path / "seed.yaml"
    path.write_text(
        "projects:\n  p1:\n    name: Draft\n    chapters:\n      c1: {content: hello}\n",
        encoding="utf-8",
    )
    accessor = MemoryAccessor.from_yaml(str(path))
    assert accessor.get_projects() == [{"id": "p1", "name": "Draft", "chapterCount": 1}]
    assert accessor.get_chapter_content("p1", "c1")["content"] == "hello"


def test_from_missing_yaml_is_empty(tmp_path):
    assert MemoryAccessor.from_yaml(str(tmp_path / "none.yaml")).get_projects() == []
