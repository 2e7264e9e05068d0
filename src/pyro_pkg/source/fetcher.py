"""Source fetchers: make a locator's tree available locally and pin its revision."""
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from pyro_pkg.core.cancel import CancelToken
from pyro_pkg.core.errors import FetchError, OperationCancelledError
from pyro_pkg.source.locator import LOCAL_SCHEME, clone_url, is_local, validate_locator

logger = logging.getLogger(__name__)

# Interval at which a running git process is checked for cancellation
_POLL_SECONDS = 0.2


class FetchResult(BaseModel):
    """Where a fetched tree lives and which revision it is at."""

    path: str = Field(..., description="Absolute path to the working tree")
    revision: str = Field(..., description="Commit id checked out in the tree")


def _git_env() -> dict:
    env = dict(os.environ)
    # Never block on a credential prompt; auth failures surface as FetchError
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _run_git(
    args: List[str],
    locator: str,
    cwd: Optional[Path] = None,
    cancel: Optional[CancelToken] = None,
) -> str:
    """Run a git command and return its stripped stdout.

    The process is polled so a cancelled token terminates it instead of
    waiting for a hung network operation.

    Raises:
        FetchError: If git is missing or exits non-zero
        OperationCancelledError: If cancel is triggered while git runs
    """
    command = ["git", *args]
    try:
        proc = subprocess.Popen(
            command,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=_git_env(),
        )
    except OSError as e:
        raise FetchError(f"Cannot run git for {locator}: {e}", locator=locator) from e

    while True:
        try:
            stdout, stderr = proc.communicate(timeout=_POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.cancelled:
                proc.kill()
                proc.communicate()
                raise OperationCancelledError(f"fetch of {locator} cancelled")

    if proc.returncode != 0:
        raise FetchError(
            f"git {' '.join(args)} failed for {locator}: {stderr.strip()}",
            locator=locator,
        )
    return stdout.strip()


class RemoteSource(BaseModel):
    """A git repository reached over the network.

    ``fetch`` updates an existing working copy at ``dest`` in place. Without
    one it clones into a temporary directory beside ``dest`` and moves the
    finished tree into place, so ``dest`` never holds a half-cloned tree.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    locator: str

    @property
    def url(self) -> str:
        return clone_url(self.locator)

    def fetch(
        self,
        dest: Path,
        revision: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> FetchResult:
        """Clone or update the repository at dest.

        Args:
            dest: Final location of the working tree
            revision: Exact commit to check out; default branch tip if None
            cancel: Optional cancellation token

        Returns:
            FetchResult with dest and the checked-out commit id

        Raises:
            FetchError: On network, authentication, unknown remote or
                unknown revision
        """
        dest = Path(dest)
        if (dest / ".git").is_dir():
            try:
                resolved = self._update(dest, revision, cancel)
            except FetchError as e:
                logger.warning(f"Updating {dest} failed, cloning afresh: {e}")
            else:
                logger.info(f"Resolved {self.locator} → {resolved[:12]}")
                return FetchResult(path=str(dest.absolute()), revision=resolved)

        resolved = self._clone(dest, revision, cancel)
        logger.info(f"Resolved {self.locator} → {resolved[:12]}")
        return FetchResult(path=str(dest.absolute()), revision=resolved)

    def _update(self, dest: Path, revision: Optional[str], cancel: Optional[CancelToken]) -> str:
        """Fetch into an existing working copy and force it to the target commit."""
        # Pinned to dest's own repository; git must not fall back to a parent one
        root = dest.absolute()
        scope = ["--git-dir", str(root / ".git"), "--work-tree", str(root)]

        def git(*args: str) -> str:
            return _run_git([*scope, *args], self.locator, cwd=dest, cancel=cancel)

        git("remote", "set-url", "origin", self.url)
        if revision is None:
            logger.info(f"Fetching {self.url}")
            git("fetch", "--quiet", "origin", "HEAD")
            target = "FETCH_HEAD"
        else:
            target = revision
            try:
                git("cat-file", "-e", f"{revision}^{{commit}}")
            except FetchError:
                logger.info(f"Fetching {self.url}")
                git("fetch", "--quiet", "origin")

        logger.info(f"Checking out {target[:12]} in {dest}")
        git("-c", "advice.detachedHead=false", "checkout", "--quiet", "--force", "--detach", target)
        # Untracked and ignored files are not part of the revision
        git("clean", "--quiet", "-ffdx")
        return git("rev-parse", "HEAD")

    def _clone(self, dest: Path, revision: Optional[str], cancel: Optional[CancelToken]) -> str:
        """Clone into a temp dir beside dest, then move the tree into place."""
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            tmpdir = tempfile.mkdtemp(prefix=".pyro-fetch-", dir=dest.parent)
        except OSError as e:
            raise FetchError(f"Cannot prepare {dest.parent}: {e}", locator=self.locator) from e

        try:
            tmp_path = Path(tmpdir) / "repo"

            logger.info(f"Cloning {self.url}")
            _run_git(
                ["clone", "--quiet", self.url, str(tmp_path)],
                self.locator,
                cancel=cancel,
            )

            if revision is not None:
                logger.info(f"Checking out {revision[:12]}")
                _run_git(
                    ["-c", "advice.detachedHead=false", "checkout", "--quiet", "--detach", revision],
                    self.locator,
                    cwd=tmp_path,
                    cancel=cancel,
                )

            resolved = _run_git(["rev-parse", "HEAD"], self.locator, cwd=tmp_path, cancel=cancel)

            if cancel is not None:
                cancel.raise_if_cancelled(f"fetch of {self.locator}")

            # Remove the previous revision of this locator, then install
            if dest.exists():
                shutil.rmtree(dest)
            shutil.move(str(tmp_path), str(dest))
        except OSError as e:
            raise FetchError(f"Cannot install {self.locator} into {dest}: {e}", locator=self.locator) from e
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)

        return resolved


class LocalSource(BaseModel):
    """A git repository on the local filesystem, used in place."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    locator: str

    @property
    def path(self) -> Path:
        return Path(self.locator[len(LOCAL_SCHEME):])

    def fetch(
        self,
        dest: Optional[Path] = None,
        revision: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> FetchResult:
        """Report the repository's path and current HEAD without copying.

        dest is ignored. When revision is given and HEAD differs, the local
        tree cannot be moved to it without touching the user's repository,
        so the fetch fails.

        Raises:
            FetchError: If the path has no .git metadata, has no commits, or
                is not at the requested revision
        """
        path = self.path
        if not (path / ".git").exists():
            raise FetchError(
                f"No git repository at {path} (locator {self.locator})",
                locator=self.locator,
            )

        resolved = _run_git(["rev-parse", "HEAD"], self.locator, cwd=path, cancel=cancel)
        if revision is not None and resolved != revision:
            raise FetchError(
                f"Local repository {path} is at {resolved[:12]}, pyro.lock pins {revision[:12]}",
                locator=self.locator,
            )

        logger.info(f"Using local {path} at {resolved[:12]}")
        return FetchResult(path=str(path.absolute()), revision=resolved)


Source = Union[RemoteSource, LocalSource]


def select_source(locator: str) -> Source:
    """Pick the fetcher variant for a locator by its scheme prefix."""
    validate_locator(locator)
    if is_local(locator):
        return LocalSource(locator=locator)
    return RemoteSource(locator=locator)
