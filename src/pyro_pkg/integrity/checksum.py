"""Deterministic content checksum over a source tree."""
import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from pyro_pkg.core.cancel import CancelToken
from pyro_pkg.core.errors import HashError
from pyro_pkg.integrity.files import discover_files

logger = logging.getLogger(__name__)

_READ_SIZE = 1 << 16


def compute_checksum(tree_root: Path, cancel: Optional[CancelToken] = None) -> str:
    """Compute the SHA-256 checksum of a source tree.

    The digest is a pure function of relative file paths and file bytes.
    Each file contributes ``<posix path>\\0<size>\\0<bytes>`` in sorted path
    order, so it does not depend on git object ids, platform path separators
    or file modes. Version-control metadata directories are skipped.

    Args:
        tree_root: Directory to hash
        cancel: Optional token checked before each file

    Returns:
        64-character lowercase hex digest

    Raises:
        HashError: If tree_root is not a directory or a file cannot be read
        OperationCancelledError: If cancel is triggered
    """
    tree_root = Path(tree_root)
    if not tree_root.is_dir():
        raise HashError(f"Cannot hash {tree_root}: not a directory")

    hasher = hashlib.sha256()
    try:
        relative_paths = discover_files(tree_root, cancel=cancel)
        for relative in relative_paths:
            if cancel is not None:
                cancel.raise_if_cancelled("checksum")
            path = tree_root / relative
            size = path.stat().st_size
            # fsencode keeps names that are not valid UTF-8 as their raw bytes
            hasher.update(os.fsencode(relative) + f"\0{size}\0".encode("ascii"))
            with open(path, "rb") as f:
                for block in iter(lambda: f.read(_READ_SIZE), b""):
                    hasher.update(block)
    except OSError as e:
        raise HashError(f"Cannot hash {tree_root}: {e}") from e

    checksum = hasher.hexdigest()
    logger.info(f"Checksum {checksum[:12]} over {len(relative_paths)} files in {tree_root}")
    return checksum
