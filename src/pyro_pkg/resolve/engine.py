"""Resolution engine: add dependencies with get, restore them with sync."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from pyro_pkg.core.cancel import CancelToken
from pyro_pkg.core.config import LOCKFILE_FILENAME, MANIFEST_FILENAME
from pyro_pkg.core.errors import (
    InconsistentLockError,
    IntegrityError,
    OperationCancelledError,
    PyroError,
    SyncError,
)
from pyro_pkg.integrity.checksum import compute_checksum
from pyro_pkg.project.lockfile import LockEntry, Lockfile
from pyro_pkg.project.manifest import Manifest
from pyro_pkg.source.cache import PackageCache
from pyro_pkg.source.fetcher import select_source

logger = logging.getLogger(__name__)


class DependencyState(str, Enum):
    """Lifecycle of one dependency during sync."""

    UNRESOLVED = "unresolved"
    FETCHING = "fetching"
    VERIFIED = "verified"
    FETCH_FAILED = "fetch_failed"
    INTEGRITY_MISMATCH = "integrity_mismatch"


FAILED_STATES = {DependencyState.FETCH_FAILED, DependencyState.INTEGRITY_MISMATCH}


class SyncOutcome(BaseModel):
    """Terminal state of one dependency after sync."""

    locator: str
    state: DependencyState
    revision: Optional[str] = None
    local_path: Optional[str] = None
    error: Optional[str] = Field(default=None, description="Failure message, if any")


class SyncReport(BaseModel):
    """Outcomes of a sync, sorted by locator."""

    outcomes: List[SyncOutcome] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.state == DependencyState.VERIFIED for o in self.outcomes)

    @property
    def failures(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if o.state in FAILED_STATES]

    @property
    def verified(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if o.state == DependencyState.VERIFIED]

    def get(self, locator: str) -> Optional[SyncOutcome]:
        for outcome in self.outcomes:
            if outcome.locator == locator:
                return outcome
        return None


class Project:
    """A project directory holding pyro.mod and pyro.lock."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.root / LOCKFILE_FILENAME


def init_project(project_dir: Path, name: str) -> Tuple[Manifest, Lockfile]:
    """Create an empty manifest and lockfile.

    An existing pyro.mod is left as it is; a missing pyro.lock is created
    empty only when pyro.mod lists no dependencies, so the pair stays
    consistent.

    Returns:
        (manifest, lockfile) as they are on disk afterwards
    """
    project = Project(project_dir)

    if project.manifest_path.exists():
        logger.info(f"{project.manifest_path} already exists, skipping creation")
        manifest = Manifest.load(project.manifest_path)
        lockfile = Lockfile.load(project.lock_path)
        if not project.lock_path.exists() and not manifest.dependencies:
            lockfile.save(project.lock_path)
        return manifest, lockfile

    manifest = Manifest.new(name)
    lockfile = Lockfile()
    manifest.save(project.manifest_path)
    lockfile.save(project.lock_path)
    logger.info(f"Initialized project {name} in {project.root}")
    return manifest, lockfile


class Resolver:
    """Orchestrates fetchers, the package cache, checksums and the project files.

    Args:
        cache: Package cache shared by every operation of this resolver
        max_workers: Upper bound on concurrent fetches during sync
    """

    def __init__(self, cache: PackageCache, max_workers: int = 4):
        self.cache = cache
        self.max_workers = max(1, max_workers)

    def get(
        self,
        project_dir: Path,
        locator: str,
        cancel: Optional[CancelToken] = None,
    ) -> LockEntry:
        """Add or refresh one dependency.

        Always refetches the locator's current tip, hashes it, then records
        it in pyro.mod (if new) and pyro.lock. pyro.mod is written first;
        both writes are atomic. Nothing is written if fetching or hashing
        fails.

        Returns:
            The lock entry now recorded for locator

        Raises:
            ManifestNotFoundError: If the project has no pyro.mod
            ParseError: If pyro.mod or pyro.lock is malformed
            FetchError: If the source cannot be fetched
            HashError: If the fetched tree cannot be hashed
            WriteError: If pyro.mod or pyro.lock cannot be written
        """
        project = Project(project_dir)
        manifest = Manifest.load(project.manifest_path)
        lockfile = Lockfile.load(project.lock_path)

        source = select_source(locator)
        logger.info(f"Getting package: {locator} ({source.kind})")

        cached = self.cache.ensure(source, refresh=True, cancel=cancel)
        checksum = compute_checksum(Path(cached.local_path), cancel=cancel)

        entry = LockEntry(
            locator=locator,
            resolved_revision=cached.checked_out_revision,
            checksum=checksum,
        )
        previous = lockfile.get(locator)
        if previous is not None and previous.resolved_revision != entry.resolved_revision:
            logger.info(
                f"Updating {locator}: {previous.resolved_revision[:12]} → {entry.resolved_revision[:12]}"
            )

        manifest = manifest.add_dependency(locator)
        lockfile = lockfile.upsert(entry).prune(manifest.locators)

        manifest.save(project.manifest_path)
        lockfile.save(project.lock_path)

        logger.info(f"Package {locator} added at {entry.resolved_revision[:12]}")
        return entry

    def sync(
        self,
        project_dir: Path,
        cancel: Optional[CancelToken] = None,
    ) -> SyncReport:
        """Materialize every locked dependency and verify its checksum.

        Dependencies are processed concurrently and independently; every one
        is attempted even when others fail.

        Returns:
            SyncReport in which every dependency is verified

        Raises:
            ManifestNotFoundError: If the project has no pyro.mod
            ParseError: If pyro.mod or pyro.lock is malformed
            InconsistentLockError: If pyro.mod and pyro.lock list different locators
            SyncError: If any dependency failed to fetch or verify; carries the report
            OperationCancelledError: If cancelled or interrupted
        """
        token = cancel if cancel is not None else CancelToken()
        project = Project(project_dir)
        manifest = Manifest.load(project.manifest_path)
        lockfile = Lockfile.load(project.lock_path)

        declared = set(manifest.locators)
        locked = set(lockfile.entries)
        if declared != locked:
            raise InconsistentLockError(missing=declared - locked, stale=locked - declared)

        entries = [lockfile.entries[locator] for locator in lockfile.locators()]
        logger.info(f"Syncing {len(entries)} dependencies")
        if not entries:
            return SyncReport()

        outcomes: Dict[str, SyncOutcome] = {}
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(entries)),
            thread_name_prefix="pyro-sync",
        )
        try:
            futures = {executor.submit(self._sync_one, entry, token): entry for entry in entries}
            for future in as_completed(futures):
                entry = futures[future]
                try:
                    outcome = future.result()
                except OperationCancelledError as e:
                    outcome = SyncOutcome(
                        locator=entry.locator,
                        state=DependencyState.UNRESOLVED,
                        error=str(e),
                    )
                outcomes[entry.locator] = outcome
        except KeyboardInterrupt:
            token.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            raise OperationCancelledError("sync interrupted") from None
        finally:
            executor.shutdown(wait=True)

        report = SyncReport(outcomes=[outcomes[locator] for locator in sorted(outcomes)])

        if token.cancelled:
            raise OperationCancelledError(
                f"sync cancelled; {len(report.verified)} of {len(entries)} dependencies verified"
            )
        if report.failures:
            for outcome in report.failures:
                logger.error(f"{outcome.locator}: {outcome.state.value}: {outcome.error}")
            raise SyncError(report)

        logger.info(f"All {len(entries)} dependencies verified")
        return report

    def _sync_one(self, entry: LockEntry, cancel: CancelToken) -> SyncOutcome:
        """Fetch (if needed) and verify one locked dependency."""
        locator = entry.locator
        if cancel.cancelled:
            return SyncOutcome(
                locator=locator,
                state=DependencyState.UNRESOLVED,
                error="cancelled before start",
            )

        logger.debug(f"{locator}: {DependencyState.FETCHING.value}")
        try:
            source = select_source(locator)
            cached = self.cache.ensure(source, revision=entry.resolved_revision, cancel=cancel)
            if cached.checked_out_revision != entry.resolved_revision:
                return SyncOutcome(
                    locator=locator,
                    state=DependencyState.FETCH_FAILED,
                    revision=cached.checked_out_revision,
                    error=(
                        f"cache holds {cached.checked_out_revision[:12]}, "
                        f"pyro.lock pins {entry.resolved_revision[:12]}"
                    ),
                )
            checksum = compute_checksum(Path(cached.local_path), cancel=cancel)
        except OperationCancelledError:
            raise
        except PyroError as e:
            logger.error(f"{locator}: {e.stage} failed: {e}")
            return SyncOutcome(
                locator=locator,
                state=DependencyState.FETCH_FAILED,
                error=f"{e.stage}: {e}",
            )
        except Exception as e:
            logger.error(f"{locator}: unexpected failure: {e}")
            return SyncOutcome(
                locator=locator,
                state=DependencyState.FETCH_FAILED,
                error=f"{type(e).__name__}: {e}",
            )

        if checksum != entry.checksum:
            mismatch = IntegrityError(locator, expected=entry.checksum, actual=checksum)
            logger.error(str(mismatch))
            return SyncOutcome(
                locator=locator,
                state=DependencyState.INTEGRITY_MISMATCH,
                revision=cached.checked_out_revision,
                local_path=cached.local_path,
                error=str(mismatch),
            )

        logger.info(f"Verified {locator} at {entry.resolved_revision[:12]}")
        return SyncOutcome(
            locator=locator,
            state=DependencyState.VERIFIED,
            revision=cached.checked_out_revision,
            local_path=cached.local_path,
        )
