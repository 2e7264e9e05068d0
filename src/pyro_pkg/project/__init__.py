"""Project files: pyro.mod manifest and pyro.lock lockfile."""
from pyro_pkg.project.lockfile import LockEntry, Lockfile
from pyro_pkg.project.manifest import Manifest

__all__ = [
    "LockEntry",
    "Lockfile",
    "Manifest",
]
