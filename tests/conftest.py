"""
Shared pytest fixtures for grimoire tests.

Provides temporary repositories, candidate factories and fake suggestion
providers so no test touches the user's data directory or the network.
"""

import threading
from pathlib import Path
from typing import Any, Optional

import pytest

from grimoire.repository import Repository


class FakeSuggestionProvider:
    """Deterministic provider: echoes the request back in upper case."""

    def __init__(self, reply: Optional[str] = None):
        self.reply = reply
        self.calls: list[tuple[str, str]] = []

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> Optional[str]:
        self.calls.append((system, user))
        if self.reply is not None:
            return self.reply
        return user.split("Content to process:\n", 1)[-1].upper()


class BlockingSuggestionProvider(FakeSuggestionProvider):
    """Provider that waits for ``release`` before answering."""

    def __init__(self, reply: str = "suggested"):
        super().__init__(reply)
        self.started = threading.Event()
        self.release = threading.Event()

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> Optional[str]:
        self.started.set()
        self.release.wait(5)
        return super().generate(system, user, max_tokens=max_tokens)


class FailingSuggestionProvider:
    """Provider whose API call always fails."""

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> Optional[str]:
        raise ConnectionError("API unreachable")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point GRIMOIRE_HOME at a temp directory and clear store overrides."""
    home = tmp_path / "home"
    monkeypatch.setenv("GRIMOIRE_HOME", str(home))
    monkeypatch.delenv("GRIMOIRE_STORE_PATH", raising=False)
    monkeypatch.delenv("GRIMOIRE_VERBOSE", raising=False)
    return home


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "store" / "grimoire.db"


@pytest.fixture
def repo(db_path):
    """A fresh repository, closed after the test."""
    repository = Repository(db_path)
    yield repository
    repository.close()


def prompt_fields(name: str = "foo", content: str = "bar", **extra: Any) -> dict[str, Any]:
    return {"category": "prompt", "name": name, "content": content, **extra}


def agent_fields(
    name: str = "planner",
    description: str = "Plans the work",
    content: str = "You plan software changes step by step.",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "category": "agent", "name": name, "description": description,
        "content": content, **extra,
    }


def skill_fields(
    name: str = "pdf-tools",
    description: str = "Work with PDF files",
    content: str = "Use pdftotext to extract text.",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "category": "skill", "name": name, "description": description,
        "content": content, **extra,
    }


def command_fields(
    name: str = "deploy",
    content: str = "Deploy $ARGUMENTS to staging.",
    **extra: Any,
) -> dict[str, Any]:
    return {"category": "command", "name": name, "content": content, **extra}


@pytest.fixture
def fake_provider():
    return FakeSuggestionProvider()
