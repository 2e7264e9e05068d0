"""Resolution engine: get and sync."""
from pyro_pkg.resolve.engine import (
    DependencyState,
    Project,
    Resolver,
    SyncOutcome,
    SyncReport,
    init_project,
)

__all__ = [
    "DependencyState",
    "Project",
    "Resolver",
    "SyncOutcome",
    "SyncReport",
    "init_project",
]
