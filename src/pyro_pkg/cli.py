"""Pyro CLI - package management commands."""
import logging
import sys
from pathlib import Path

import click

from pyro_pkg.core.cancel import CancelToken
from pyro_pkg.core.config import Settings
from pyro_pkg.core.errors import (
    ConfigError,
    FetchError,
    HashError,
    InconsistentLockError,
    InvalidLocatorError,
    ManifestNotFoundError,
    OperationCancelledError,
    ParseError,
    PyroError,
    SyncError,
    WriteError,
)
from pyro_pkg.resolve import DependencyState, Resolver, init_project
from pyro_pkg.source import PackageCache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(name)s: %(message)s",
)
logger = logging.getLogger("pyro_pkg")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_FETCH = 3
EXIT_HASH = 4
EXIT_WRITE = 5
EXIT_PARSE = 6
EXIT_INCONSISTENT = 7
EXIT_INTEGRITY = 8

MAIN_SCAFFOLD = '''def main():
    print("Hello, Pyro!")

main()
'''


def _exit_code(error: PyroError) -> int:
    if isinstance(error, (FetchError, InvalidLocatorError)):
        return EXIT_FETCH
    if isinstance(error, HashError):
        return EXIT_HASH
    if isinstance(error, WriteError):
        return EXIT_WRITE
    if isinstance(error, (ParseError, ManifestNotFoundError, ConfigError)):
        return EXIT_PARSE
    if isinstance(error, InconsistentLockError):
        return EXIT_INCONSISTENT
    if isinstance(error, SyncError):
        states = {outcome.state for outcome in error.report.failures}
        if DependencyState.INTEGRITY_MISMATCH in states:
            return EXIT_INTEGRITY
        return EXIT_FETCH
    return EXIT_FAILURE


def _resolver(cache_dir, jobs) -> Resolver:
    settings = Settings.from_env()
    root = cache_dir if cache_dir is not None else settings.package_cache_dir
    workers = jobs if jobs is not None else settings.worker_threads
    return Resolver(PackageCache(root), max_workers=workers)


project_dir_option = click.option(
    "--project-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Directory containing pyro.mod (default: current directory)",
)
cache_dir_option = click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Package cache root (default: $PYRO_CACHE_DIR or ~/.pyro/pkg)",
)


@click.group()
@click.version_option(package_name="pyro-pkg")
def main():
    """Pyro package manager."""
    pass


@main.group("mod")
def mod():
    """Module (project) management commands."""
    pass


@mod.command("init")
@click.argument("name")
@project_dir_option
@click.option(
    "--no-scaffold",
    is_flag=True,
    help="Do not create src/main.pyro",
)
def mod_init(name: str, project_dir: Path, no_scaffold: bool):
    """Initialize a new project with an empty pyro.mod and pyro.lock.

    Examples:
        pyro mod init consumer
    """
    try:
        manifest, _ = init_project(project_dir, name)
        if not no_scaffold:
            main_path = project_dir / "src" / "main.pyro"
            if not main_path.exists():
                main_path.parent.mkdir(parents=True, exist_ok=True)
                main_path.write_text(MAIN_SCAFFOLD, encoding="utf-8")
                click.echo(f"Created {main_path}")
    except PyroError as e:
        logger.error(f"init failed at stage '{e.stage}': {e}")
        sys.exit(_exit_code(e))
    except OSError as e:
        logger.error(f"init failed at stage 'write': {e}")
        sys.exit(EXIT_WRITE)

    click.echo(f"[OK] Project initialized: {manifest.name}")
    sys.exit(EXIT_OK)


@main.command()
@click.argument("locator")
@project_dir_option
@cache_dir_option
def get(locator: str, project_dir: Path, cache_dir: Path):
    """Add a dependency, or refresh it to its latest revision.

    LOCATOR is a remote repository (host/org/repo) or a local repository
    (file:///abs/path). It is recorded verbatim in pyro.mod.

    Examples:
        pyro get github.com/pyro-lang/json
        pyro get file:///tmp/dummy-pkg

    Exit codes:
        0: Success
        1: Generic runtime failure
        2: Invalid CLI usage
        3: Fetch failed
        4: Hashing failed
        5: Writing pyro.mod or pyro.lock failed
        6: pyro.mod or pyro.lock missing or malformed
    """
    try:
        resolver = _resolver(cache_dir, None)
        entry = resolver.get(project_dir, locator)
    except PyroError as e:
        logger.error(f"get {locator} failed at stage '{e.stage}': {e}")
        sys.exit(_exit_code(e))
    except Exception as e:
        logger.error(f"get {locator} failed: {e}")
        sys.exit(EXIT_FAILURE)

    click.echo(f"[OK] Package added: {entry.locator}")
    click.echo(f"  Commit: {entry.resolved_revision[:12]}")
    click.echo(f"  Checksum: {entry.checksum[:12]}")
    sys.exit(EXIT_OK)


@main.command()
@project_dir_option
@cache_dir_option
@click.option(
    "--jobs",
    "-j",
    type=click.IntRange(min=1),
    default=None,
    help="Parallel fetches (default: $PYRO_WORKER_THREADS or CPU count)",
)
def sync(project_dir: Path, cache_dir: Path, jobs: int):
    """Fetch every locked dependency and verify its checksum.

    Exit codes:
        0: Success
        3: A dependency failed to fetch
        6: pyro.mod or pyro.lock missing or malformed
        7: pyro.mod and pyro.lock disagree
        8: A dependency's content does not match pyro.lock
    """
    token = CancelToken()
    try:
        resolver = _resolver(cache_dir, jobs)
        report = resolver.sync(project_dir, cancel=token)
    except SyncError as e:
        for outcome in e.report.outcomes:
            click.echo(f"  {outcome.state.value:<20} {outcome.locator}")
        for outcome in e.report.failures:
            logger.error(f"{outcome.locator}: {outcome.error}")
        sys.exit(_exit_code(e))
    except OperationCancelledError as e:
        logger.error(str(e))
        sys.exit(130)
    except PyroError as e:
        logger.error(f"sync failed at stage '{e.stage}': {e}")
        sys.exit(_exit_code(e))
    except Exception as e:
        logger.error(f"sync failed: {e}")
        sys.exit(EXIT_FAILURE)

    for outcome in report.outcomes:
        click.echo(f"  {outcome.state.value:<20} {outcome.locator}")
    click.echo(f"[OK] {len(report.verified)} dependencies verified")
    sys.exit(EXIT_OK)


main.add_command(sync, name="install")


if __name__ == "__main__":
    main()
