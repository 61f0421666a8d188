"""
Remote Gateway - Data Accessor Bridge
=======================================
The contract through which the gateway reaches the host application's
projects and settings. The gateway itself stores nothing: every read and
write is delegated to an accessor supplied by the hosting process.

Implementations may define their methods as plain functions or as
coroutines. Plain functions are run in the threadpool so slow disk or
IPC access never blocks the event loop (see call_accessor).

Two optional methods, get_recent_projects() and get_tutorial_files(),
back the /api/recent-projects and /api/tutorial routes. Hosts that do
not support them simply leave the base implementations in place.

MemoryAccessor is a dict-backed implementation used by the standalone
CLI (seeded from a YAML file) and by the test suite.
"""

import copy
import inspect
import os
import threading
from abc import ABC, abstractmethod
from typing import Any

import yaml
from starlette.concurrency import run_in_threadpool


class AccessorNotSupported(Exception):
    """Raised by optional accessor methods the host does not implement."""


class DataAccessor(ABC):
    """Abstract data accessor implemented by the hosting application."""

    @abstractmethod
    def get_projects(self) -> Any: ...

    @abstractmethod
    def get_project(self, project_id: str) -> Any: ...

    @abstractmethod
    def get_chapter_content(self, project_id: str, chapter_id: str) -> Any: ...

    @abstractmethod
    def save_chapter_content(self, project_id: str, chapter_id: str, content: Any) -> Any: ...

    @abstractmethod
    def get_settings(self) -> Any: ...

    @abstractmethod
    def save_settings(self, settings: dict) -> Any: ...

    def get_recent_projects(self) -> Any:
        raise AccessorNotSupported("Recent projects are not available")

    def get_tutorial_files(self) -> Any:
        raise AccessorNotSupported("Tutorial files are not available")


async def call_accessor(method, *args) -> Any:
    """
    Invoke an accessor method without blocking the event loop.

    Coroutine functions are awaited directly; everything else runs in
    Starlette's threadpool.
    """
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    result = await run_in_threadpool(method, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


class MemoryAccessor(DataAccessor):
    """
    In-memory accessor backed by plain dicts.

    Data layout:
        {
            "projects": {
                "<project_id>": {
                    "id": ..., "name": ...,
                    "chapters": {"<chapter_id>": {"title": ..., "content": ...}}
                }
            },
            "settings": {...},
            "recent": ["<project_id>", ...],
            "tutorials": [{"name": ..., "content": ...}]
        }

    Writes are last-write-wins.
    """

    def __init__(self, data: dict | None = None):
        data = copy.deepcopy(data) if data else {}
        self._lock = threading.Lock()
        self._projects: dict[str, dict] = {
            str(pid): project for pid, project in (data.get("projects") or {}).items()
        }
        for pid, project in self._projects.items():
            project.setdefault("id", pid)
            project.setdefault("chapters", {})
        self._settings: dict = data.get("settings") or {}
        self._recent: list[str] = [str(p) for p in data.get("recent") or []]
        self._tutorials: list[dict] = data.get("tutorials") or []

    @classmethod
    def from_yaml(cls, path: str) -> "MemoryAccessor":
        """
        Load seed data from a YAML file. A missing file gives an empty store.
        """
        if not os.path.exists(path):
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            return cls(yaml.safe_load(f) or {})

    def get_projects(self) -> list[dict]:
        with self._lock:
            return [
                {
                    "id": pid,
                    "name": project.get("name", pid),
                    "chapterCount": len(project["chapters"]),
                }
                for pid, project in self._projects.items()
            ]

    def get_project(self, project_id: str) -> dict:
        with self._lock:
            project = self._require_project(project_id)
            result = {k: v for k, v in project.items() if k != "chapters"}
            result["chapters"] = [
                {"id": cid, "title": chapter.get("title", cid)}
                for cid, chapter in project["chapters"].items()
            ]
            return result

    def get_chapter_content(self, project_id: str, chapter_id: str) -> dict:
        with self._lock:
            project = self._require_project(project_id)
            chapter = project["chapters"].get(chapter_id)
            if chapter is None:
                raise KeyError(f"Chapter '{chapter_id}' not found")
            return {"id": chapter_id, "content": chapter.get("content", "")}

    def save_chapter_content(self, project_id: str, chapter_id: str, content: Any) -> None:
        with self._lock:
            project = self._require_project(project_id)
            chapter = project["chapters"].setdefault(chapter_id, {"title": chapter_id})
            chapter["content"] = content
            if project_id in self._recent:
                self._recent.remove(project_id)
            self._recent.insert(0, project_id)

    def get_settings(self) -> dict:
        with self._lock:
            return copy.deepcopy(self._settings)

    def save_settings(self, settings: dict) -> None:
        with self._lock:
            self._settings.update(copy.deepcopy(settings))

    def get_recent_projects(self) -> list[dict]:
        with self._lock:
            return [
                {"id": pid, "name": self._projects[pid].get("name", pid)}
                for pid in self._recent if pid in self._projects
            ]

    def get_tutorial_files(self) -> dict:
        with self._lock:
            return {"files": copy.deepcopy(self._tutorials)}

    def _require_project(self, project_id: str) -> dict:
        project = self._projects.get(project_id)
        if project is None:
            raise KeyError(f"Project '{project_id}' not found")
        return project
