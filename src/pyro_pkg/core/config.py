"""Environment-driven settings for the package manager."""
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from pyro_pkg.core.errors import ConfigError

MANIFEST_FILENAME = "pyro.mod"
LOCKFILE_FILENAME = "pyro.lock"


def _default_workers() -> int:
    return os.cpu_count() or 1


class Settings(BaseModel):
    """Process-wide configuration.

    Resolved from the environment:
    - PYRO_HOME: per-user toolchain directory (default ~/.pyro)
    - PYRO_CACHE_DIR: package cache root (default $PYRO_HOME/pkg)
    - PYRO_WORKER_THREADS: parallel fetches during sync (default: CPU count)
    """

    home: Path = Field(default_factory=lambda: Path.home() / ".pyro")
    cache_dir: Optional[Path] = Field(default=None, description="Package cache root")
    worker_threads: int = Field(default_factory=_default_workers, ge=1)

    @field_validator("home", "cache_dir")
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return v
        return Path(v).expanduser()

    @property
    def package_cache_dir(self) -> Path:
        return self.cache_dir if self.cache_dir is not None else self.home / "pkg"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Raises:
            ConfigError: If a variable has an invalid value
        """
        env = os.environ if environ is None else environ
        values = {}
        if env.get("PYRO_HOME"):
            values["home"] = env["PYRO_HOME"]
        if env.get("PYRO_CACHE_DIR"):
            values["cache_dir"] = env["PYRO_CACHE_DIR"]
        if env.get("PYRO_WORKER_THREADS"):
            values["worker_threads"] = env["PYRO_WORKER_THREADS"]
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(f"Invalid environment configuration: {e}") from e
