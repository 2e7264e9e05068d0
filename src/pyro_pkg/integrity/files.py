"""File discovery for source tree checksums."""
import logging
from pathlib import Path
from typing import List, Optional

from pyro_pkg.core.cancel import CancelToken

logger = logging.getLogger(__name__)

# Version-control metadata never contributes to a checksum
EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
}


def discover_files(tree_root: Path, cancel: Optional[CancelToken] = None) -> List[str]:
    """Discover every regular file under tree_root.

    Args:
        tree_root: Root directory to search
        cancel: Optional token checked while walking

    Returns:
        Sorted list of POSIX-style paths relative to tree_root

    Filtering rules:
        - Skip anything below a .git/, .hg/ or .svn/ directory at any depth
        - Symlinks to files are followed, symlinked directories are not
        - Sorted by relative path string for deterministic ordering
    """
    tree_root = Path(tree_root)

    if not tree_root.is_dir():
        raise ValueError(f"tree_root must be a directory: {tree_root}")

    files = []

    for path in tree_root.rglob("*"):
        if cancel is not None:
            cancel.raise_if_cancelled("file discovery")

        relative = path.relative_to(tree_root)
        if any(part in EXCLUDED_DIRS for part in relative.parts):
            continue

        if path.is_file():
            files.append(relative.as_posix())

    files.sort()

    logger.debug(f"Discovered {len(files)} files in {tree_root}")

    return files
