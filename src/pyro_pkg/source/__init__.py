"""Dependency sources: fetching, locators and the package cache."""
from pyro_pkg.source.cache import CacheEntry, PackageCache
from pyro_pkg.source.fetcher import FetchResult, LocalSource, RemoteSource, select_source

__all__ = [
    "CacheEntry",
    "FetchResult",
    "LocalSource",
    "PackageCache",
    "RemoteSource",
    "select_source",
]
