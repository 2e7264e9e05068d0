"""Pytest fixtures for pyro-pkg tests."""
import os
import subprocess
from pathlib import Path
from typing import Callable, Dict

import pytest

from pyro_pkg.resolve import init_project
from pyro_pkg.source import PackageCache


def _git(repo_path: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo_path,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def _make_repo(repo_path: Path, files: Dict[str, str]) -> str:
    """Create a git repository with one commit; return its SHA."""
    repo_path.mkdir(parents=True)
    _git(repo_path, "init", "--quiet")
    _git(repo_path, "config", "user.email", "test@example.com")
    _git(repo_path, "config", "user.name", "Test User")
    _git(repo_path, "config", "commit.gpgsign", "false")
    for name, content in files.items():
        path = repo_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    _git(repo_path, "add", ".")
    _git(repo_path, "commit", "--quiet", "-m", "Initial commit")
    return _git(repo_path, "rev-parse", "HEAD")


@pytest.fixture
def git_repo_fixture(tmp_path: Path) -> Dict[str, object]:
    """Create dummy-pkg: a one-commit repository.

    Returns dict with:
        - path: Path to repo
        - head_sha: SHA of the only commit
        - locator: file:// locator for the repo
    """
    repo_path = tmp_path / "dummy-pkg"
    head_sha = _make_repo(
        repo_path,
        {"main.pyro": "def hello(): print('Hello from dummy package')\n"},
    )
    return {
        "path": repo_path,
        "head_sha": head_sha,
        "locator": f"file://{repo_path}",
    }


@pytest.fixture
def other_repo_fixture(tmp_path: Path) -> Dict[str, object]:
    """Create other-pkg: a second independent repository with nested files."""
    repo_path = tmp_path / "other-pkg"
    head_sha = _make_repo(
        repo_path,
        {
            "lib.pyro": "def add(a, b): return a + b\n",
            "util/strings.pyro": "def shout(s): return s.upper()\n",
        },
    )
    return {
        "path": repo_path,
        "head_sha": head_sha,
        "locator": f"file://{repo_path}",
    }


@pytest.fixture
def raw_name_repo_fixture(tmp_path: Path) -> Dict[str, object]:
    """Create latin1-pkg: a repository with a file name that is not valid UTF-8."""
    repo_path = tmp_path / "latin1-pkg"
    head_sha = _make_repo(
        repo_path,
        {
            "main.pyro": "import caf\n",
            os.fsdecode(b"caf\xe9.pyro"): "x = 1\n",
        },
    )
    return {
        "path": repo_path,
        "head_sha": head_sha,
        "locator": f"file://{repo_path}",
    }


@pytest.fixture
def git_commit() -> Callable[..., str]:
    """Return a helper that commits a file change and returns the new SHA."""

    def commit(repo_path: Path, name: str, content: str, message: str = "Update") -> str:
        (repo_path / name).write_text(content)
        _git(repo_path, "add", name)
        _git(repo_path, "commit", "--quiet", "-m", message)
        return _git(repo_path, "rev-parse", "HEAD")

    return commit


@pytest.fixture
def git_head() -> Callable[[Path], str]:
    """Return a helper that reads HEAD of a repository."""
    return lambda repo_path: _git(repo_path, "rev-parse", "HEAD")


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def cache(cache_dir: Path) -> PackageCache:
    return PackageCache(cache_dir)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """An initialized 'consumer' project."""
    path = tmp_path / "consumer"
    init_project(path, "consumer")
    return path


@pytest.fixture
def remote_locator(monkeypatch, git_repo_fixture) -> str:
    """A host/org/repo locator whose clone URL points at dummy-pkg.

    Exercises the remote fetcher without network access.
    """
    locator = "example.com/pyro/dummy-pkg"
    target = f"file://{git_repo_fixture['path']}"
    monkeypatch.setattr(
        "pyro_pkg.source.fetcher.clone_url",
        lambda value: target if value == locator else f"https://{value}",
    )
    return locator
