"""Tests for content checksums and file discovery."""
import os
import shutil
import sys

import pytest

from pyro_pkg.core.cancel import CancelToken
from pyro_pkg.core.errors import HashError, OperationCancelledError
from pyro_pkg.integrity import compute_checksum, discover_files


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "tree"
    (root / "src").mkdir(parents=True)
    (root / "main.pyro").write_text("import util\n")
    (root / "src" / "util.pyro").write_text("def f(): return 1\n")
    return root


def test_checksum_is_deterministic(tree):
    """Test: hashing an unmodified tree twice gives the same checksum."""
    first = compute_checksum(tree)
    second = compute_checksum(tree)

    assert first == second
    assert len(first) == 64
    assert all(c in "0123456789abcdef" for c in first)


def test_checksum_changes_when_bytes_change(tree):
    before = compute_checksum(tree)
    (tree / "src" / "util.pyro").write_text("def f(): return 2\n")

    assert compute_checksum(tree) != before


def test_checksum_changes_when_file_renamed(tree):
    """Test: paths are part of the digest, not just contents."""
    before = compute_checksum(tree)
    (tree / "main.pyro").rename(tree / "entry.pyro")

    assert compute_checksum(tree) != before


def test_checksum_changes_when_file_added(tree):
    before = compute_checksum(tree)
    (tree / "empty.pyro").write_text("")

    assert compute_checksum(tree) != before


def test_checksum_ignores_file_mode(tree):
    before = compute_checksum(tree)
    os.chmod(tree / "main.pyro", 0o755)

    assert compute_checksum(tree) == before


def test_checksum_ignores_git_metadata(git_repo_fixture, tmp_path):
    """Test: .git contents do not contribute to the checksum.

    Given: a git repository and a plain copy of its files without .git
    When: both are hashed
    Then: checksums are equal
    """
    repo = git_repo_fixture["path"]
    copy = tmp_path / "plain-copy"
    shutil.copytree(repo, copy, ignore=shutil.ignore_patterns(".git"))

    assert not (copy / ".git").exists()
    assert compute_checksum(repo) == compute_checksum(copy)


def test_discover_files_sorted_posix_and_skips_vcs_dirs(tree):
    (tree / ".git").mkdir()
    (tree / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (tree / "vendor" / ".hg").mkdir(parents=True)
    (tree / "vendor" / ".hg" / "store").write_text("x")
    (tree / "vendor" / "dep.pyro").write_text("pass\n")

    files = discover_files(tree)

    assert files == ["main.pyro", "src/util.pyro", "vendor/dep.pyro"]


def test_checksum_rejects_missing_directory(tmp_path):
    with pytest.raises(HashError):
        compute_checksum(tmp_path / "does-not-exist")


def test_checksum_observes_cancellation(tree):
    token = CancelToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        compute_checksum(tree, cancel=token)


# macOS and Windows refuse file names that are not valid UTF-8
raw_names = pytest.mark.skipif(
    sys.platform in ("darwin", "win32"),
    reason="filesystem requires UTF-8 file names",
)


@raw_names
def test_checksum_accepts_non_utf8_file_name(tree):
    """Test: a file name that is not valid UTF-8 is hashed by its raw bytes.

    Given: a tree containing b"caf\\xe9.pyro" (Latin-1 e-acute)
    When: the tree is hashed
    Then: a checksum is returned, and it differs from the UTF-8 spelling
    """
    raw = tree / os.fsdecode(b"caf\xe9.pyro")
    raw.write_text("x = 1\n")

    latin1 = compute_checksum(tree)
    raw.rename(tree / "café.pyro")
    utf8 = compute_checksum(tree)

    assert len(latin1) == 64
    assert latin1 != utf8
