"""End-to-end tests for pyro package commands."""
import pytest
from click.testing import CliRunner

from pyro_pkg.cli import main


@pytest.fixture
def runner():
    return CliRunner()


def _init(runner, project_dir):
    return runner.invoke(main, ["mod", "init", "consumer", "--project-dir", str(project_dir)])


def _get(runner, project_dir, cache_dir, locator):
    return runner.invoke(main, [
        "get", locator,
        "--project-dir", str(project_dir),
        "--cache-dir", str(cache_dir),
    ])


def _sync(runner, project_dir, cache_dir, command="sync"):
    return runner.invoke(main, [
        command,
        "--project-dir", str(project_dir),
        "--cache-dir", str(cache_dir),
        "--jobs", "2",
    ])


class TestModInit:
    """Tests for 'pyro mod init'."""

    def test_init_creates_manifest_lock_and_scaffold(self, runner, tmp_path):
        project_dir = tmp_path / "consumer"

        result = _init(runner, project_dir)

        assert result.exit_code == 0, result.output
        assert "Project initialized: consumer" in result.output
        assert 'name = "consumer"' in (project_dir / "pyro.mod").read_text()
        assert (project_dir / "pyro.lock").exists()
        assert (project_dir / "src" / "main.pyro").exists()

    def test_init_twice_keeps_manifest(self, runner, tmp_path):
        project_dir = tmp_path / "consumer"
        _init(runner, project_dir)
        (project_dir / "pyro.mod").write_text(
            (project_dir / "pyro.mod").read_text() + "# edited\n"
        )

        result = _init(runner, project_dir)

        assert result.exit_code == 0
        assert (project_dir / "pyro.mod").read_text().endswith("# edited\n")


class TestGetCommand:
    """Tests for 'pyro get'."""

    def test_get_records_dependency(self, runner, tmp_path, git_repo_fixture, cache_dir):
        """The shipped acceptance scenario, driven through the CLI."""
        project_dir = tmp_path / "consumer"
        _init(runner, project_dir)
        locator = git_repo_fixture["locator"]

        result = _get(runner, project_dir, cache_dir, locator)

        assert result.exit_code == 0, result.output
        assert "Package added:" in result.output
        assert locator in (project_dir / "pyro.mod").read_text()
        lock_text = (project_dir / "pyro.lock").read_text()
        assert git_repo_fixture["head_sha"] in lock_text
        assert "checksum" in lock_text

    def test_get_fetch_failure_exit_code_3(self, runner, tmp_path, cache_dir):
        project_dir = tmp_path / "consumer"
        _init(runner, project_dir)
        before = (project_dir / "pyro.mod").read_text()

        result = _get(runner, project_dir, cache_dir, f"file://{tmp_path / 'missing'}")

        assert result.exit_code == 3
        assert (project_dir / "pyro.mod").read_text() == before

    def test_get_without_init_exit_code_6(self, runner, tmp_path, git_repo_fixture, cache_dir):
        result = _get(runner, tmp_path / "nothing", cache_dir, git_repo_fixture["locator"])

        assert result.exit_code == 6


class TestSyncCommand:
    """Tests for 'pyro sync' and its 'install' alias."""

    @pytest.fixture
    def locked_project(self, runner, tmp_path, git_repo_fixture, cache_dir):
        project_dir = tmp_path / "consumer"
        _init(runner, project_dir)
        result = _get(runner, project_dir, cache_dir, git_repo_fixture["locator"])
        assert result.exit_code == 0, result.output
        return project_dir

    @pytest.mark.parametrize("command", ["sync", "install"])
    def test_sync_success(self, runner, locked_project, cache_dir, command):
        result = _sync(runner, locked_project, cache_dir, command)

        assert result.exit_code == 0, result.output
        assert "1 dependencies verified" in result.output

    def test_sync_integrity_mismatch_exit_code_8(self, runner, locked_project, cache_dir, git_repo_fixture):
        (git_repo_fixture["path"] / "main.pyro").write_text("tampered\n")

        result = _sync(runner, locked_project, cache_dir)

        assert result.exit_code == 8
        assert "integrity_mismatch" in result.output

    def test_sync_inconsistent_lock_exit_code_7(self, runner, locked_project, cache_dir):
        (locked_project / "pyro.lock").write_text("")

        result = _sync(runner, locked_project, cache_dir)

        assert result.exit_code == 7

    def test_sync_malformed_lock_exit_code_6(self, runner, locked_project, cache_dir):
        (locked_project / "pyro.lock").write_text("[[package]\n")

        result = _sync(runner, locked_project, cache_dir)

        assert result.exit_code == 6
