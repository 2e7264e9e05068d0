"""Content integrity: deterministic checksums over source trees."""
from pyro_pkg.integrity.checksum import compute_checksum
from pyro_pkg.integrity.files import discover_files

__all__ = [
    "compute_checksum",
    "discover_files",
]
