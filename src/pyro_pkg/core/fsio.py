"""Atomic file replacement for manifest, lockfile and cache metadata."""
import logging
import os
import stat
import tempfile
from pathlib import Path

from pyro_pkg.core.errors import WriteError

logger = logging.getLogger(__name__)


def _read_umask() -> int:
    # os.umask can only be read by setting it; done once at import
    mask = os.umask(0o022)
    os.umask(mask)
    return mask


_UMASK = _read_umask()


def _target_mode(path: Path) -> int:
    """Mode the written file should end up with.

    An existing file keeps its permission bits; a new one gets the mode
    open() would have given it under the process umask.
    """
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return 0o666 & ~_UMASK


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path via a sibling temp file and os.replace.

    A crash mid-write leaves either the old file or the new one, never a
    truncated mix. Permission bits of an existing file are preserved.

    Raises:
        WriteError: If the directory or file cannot be written
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        mode = _target_mode(path)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_name = f.name
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise WriteError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    logger.debug(f"Wrote {path}")
