# tests/conftest.py
"""Pytest configuration with shared fixtures for the Magi tests.

Curses calls that need an initialised screen are replaced per test, so
UI components can be built against a mocked ``stdscr``. Repository tests
run real ``git`` inside a temporary directory with a fixed identity and no
user/system configuration.
"""

from __future__ import annotations

import curses
import os
import subprocess
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import MagicMock

import pytest

from magi.utils.utils import DEFAULT_CONFIG, deep_merge


# --- Automatic mocking of curses functions ---
@pytest.fixture(autouse=True)
def mock_curses_functions(monkeypatch: pytest.MonkeyPatch) -> Generator[MagicMock, None, None]:
    """Replace curses functions that fail without `initscr()`.

    Yields:
        MagicMock: The window returned by the patched `curses.newwin`.
    """
    popup_window = MagicMock()
    monkeypatch.setattr(curses, "has_colors", lambda: True)
    monkeypatch.setattr(curses, "start_color", lambda: None)
    monkeypatch.setattr(curses, "use_default_colors", lambda: None)
    monkeypatch.setattr(curses, "init_pair", lambda *args: None)
    monkeypatch.setattr(curses, "color_pair", lambda n: n << 8)
    monkeypatch.setattr(curses, "curs_set", lambda visibility: None)
    monkeypatch.setattr(curses, "doupdate", lambda: None)
    monkeypatch.setattr(curses, "endwin", lambda: None)
    monkeypatch.setattr(curses, "newwin", MagicMock(return_value=popup_window))
    yield popup_window


# --- Base fixtures for curses and configuration ---
@pytest.fixture
def mock_stdscr() -> MagicMock:
    """A mock `stdscr` with a 24x80 terminal."""
    stdscr = MagicMock()
    stdscr.getmaxyx.return_value = (24, 80)
    return stdscr


@pytest.fixture
def mock_config(tmp_path: Path) -> dict[str, Any]:
    """The embedded defaults, with logs redirected into the test directory."""
    return deep_merge(DEFAULT_CONFIG, {"logging": {"directory": str(tmp_path / "logs")}})


# --- Repository fixtures ---
GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "author@example.com",
    "GIT_COMMITTER_NAME": "Test Author",
    "GIT_COMMITTER_EMAIL": "author@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


@pytest.fixture
def git_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate git from the developer's global configuration."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    for key, value in GIT_ENV.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def run_git() -> Callable[..., str]:
    """Run git in a directory and return stdout; fails the test on error."""

    def _run(repo: Path, *args: str, input_text: str | None = None) -> str:
        res = subprocess.run(
            ["git", *args],
            cwd=repo,
            input=input_text,
            capture_output=True,
            text=True,
            env={**os.environ, "LC_ALL": "C"},
        )
        assert res.returncode == 0, f"git {' '.join(args)} failed: {res.stderr}"
        return res.stdout

    return _run


@pytest.fixture
def git_repo(tmp_path: Path, git_env: None, run_git: Callable[..., str]) -> Path:
    """An empty repository on branch ``main`` with autocrlf disabled."""
    repo = tmp_path / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    run_git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo, "config", "core.autocrlf", "false")
    run_git(repo, "config", "commit.gpgsign", "false")
    return repo


@pytest.fixture
def commit_file(run_git: Callable[..., str]) -> Callable[[Path, str, str], None]:
    """Write ``content`` to ``name`` and commit it."""

    def _commit(repo: Path, name: str, content: str) -> None:
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content.encode("utf-8"))
        run_git(repo, "add", "--", name)
        run_git(repo, "commit", "-q", "-m", f"add {name}")

    return _commit
