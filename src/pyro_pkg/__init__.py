"""Pyro package manager: manifest, lockfile and dependency resolution."""

__version__ = "0.1.0"
