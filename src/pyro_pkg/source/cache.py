"""Package cache: one working tree per locator under a configurable root."""
import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from pyro_pkg.core.cancel import CancelToken
from pyro_pkg.core.errors import WriteError
from pyro_pkg.core.fsio import atomic_write_text
from pyro_pkg.source.fetcher import Source
from pyro_pkg.source.locator import cache_key

logger = logging.getLogger(__name__)

ENTRY_FILENAME = "entry.json"
TREE_DIRNAME = "repo"


class CacheEntry(BaseModel):
    """The tree currently materialized for a locator.

    Rebuildable at any time from pyro.lock; losing it only costs a refetch.
    """

    locator: str = Field(..., description="Dependency locator")
    local_path: str = Field(..., description="Absolute path to the working tree")
    checked_out_revision: str = Field(..., description="Commit id of the working tree")
    source_kind: Literal["remote", "local"] = Field(..., description="Fetcher variant used")
    fetched_at: str = Field(..., description="ISO8601 timestamp of fetch")

    def save(self, path: Path) -> None:
        """Write entry to JSON file atomically."""
        atomic_write_text(Path(path), self.model_dump_json(indent=2) + "\n")

    @classmethod
    def load(cls, path: Path) -> "CacheEntry":
        """Load entry from JSON file."""
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


class PackageCache:
    """On-disk store mapping each locator to its most recently fetched tree.

    Each locator owns the slot ``<root>/<cache_key(locator)>``, holding the
    tree (remote sources only) and ``entry.json``. The cache keeps at most
    one revision per locator; refetching replaces the slot's contents.

    Safe for concurrent use from threads. Concurrent ``ensure`` calls for the
    same locator share a single fetch; different locators never wait on each
    other.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, Future] = {}

    def slot(self, locator: str) -> Path:
        return self.root / cache_key(locator)

    def lookup(self, locator: str) -> Optional[CacheEntry]:
        """Return the current entry for locator, or None if nothing usable is cached."""
        with self._lock:
            return self._current(locator)

    def forget(self, locator: str) -> None:
        """Drop the in-memory entry so the next lookup re-reads the slot."""
        with self._lock:
            self._entries.pop(locator, None)

    def ensure(
        self,
        source: Source,
        refresh: bool = False,
        revision: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> CacheEntry:
        """Return a cache entry for source.locator, fetching if needed.

        Args:
            source: Fetcher for the locator
            refresh: Fetch even if an entry exists. Local sources are always
                re-read, since their HEAD can move outside the cache
            revision: Exact commit required; an entry at another revision
                is refetched at this one
            cancel: Optional cancellation token passed to the fetcher

        Returns:
            The stored CacheEntry

        Raises:
            FetchError: If the fetch fails; the locator is then uncached
            WriteError: If entry metadata cannot be written
        """
        locator = source.locator

        with self._lock:
            future = self._inflight.get(locator)
            owner = future is None
            if owner:
                if not refresh and source.kind == "remote":
                    entry = self._current(locator)
                    if entry is not None and (
                        revision is None or entry.checked_out_revision == revision
                    ):
                        logger.info(f"Using cached {locator} at {entry.checked_out_revision[:12]}")
                        return entry
                future = Future()
                self._inflight[locator] = future

        if not owner:
            logger.info(f"Waiting for in-flight fetch of {locator}")
            return future.result()

        try:
            entry = self._fetch(source, revision, cancel)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(entry)
            return entry
        finally:
            with self._lock:
                self._inflight.pop(locator, None)

    def _fetch(
        self,
        source: Source,
        revision: Optional[str],
        cancel: Optional[CancelToken],
    ) -> CacheEntry:
        slot = self.slot(source.locator)
        # The tree may change from here on; until the new entry is saved the
        # locator reads as absent and the next ensure fetches again
        with self._lock:
            self._discard(source.locator)
        result = source.fetch(slot / TREE_DIRNAME, revision=revision, cancel=cancel)

        entry = CacheEntry(
            locator=source.locator,
            local_path=result.path,
            checked_out_revision=result.revision,
            source_kind=source.kind,
            fetched_at=datetime.now(timezone.utc).isoformat(),
        )
        entry.save(slot / ENTRY_FILENAME)

        with self._lock:
            self._entries[source.locator] = entry
        return entry

    def _current(self, locator: str) -> Optional[CacheEntry]:
        # Caller holds self._lock
        entry = self._entries.get(locator)
        if entry is None:
            entry = self._load_entry(locator)
        if entry is None:
            return None
        if not Path(entry.local_path).exists():
            logger.info(f"Cached tree for {locator} is gone; it will be refetched")
            try:
                self._discard(locator)
            except WriteError as e:
                logger.warning(str(e))
            return None
        self._entries[locator] = entry
        return entry

    def _discard(self, locator: str) -> None:
        # Caller holds self._lock
        self._entries.pop(locator, None)
        path = self.slot(locator) / ENTRY_FILENAME
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise WriteError(f"Cannot remove stale cache entry {path}: {e}", locator=locator) from e

    def _load_entry(self, locator: str) -> Optional[CacheEntry]:
        path = self.slot(locator) / ENTRY_FILENAME
        if not path.exists():
            return None
        try:
            entry = CacheEntry.load(path)
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable cache entry {path}: {e}")
            return None
        if entry.locator != locator:
            logger.warning(f"Ignoring cache entry {path} recorded for {entry.locator}")
            return None
        return entry
