"""Lockfile (pyro.lock): exact revision and checksum per locator."""
import logging
import tomllib
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pyro_pkg.core.errors import ParseError
from pyro_pkg.core.fsio import atomic_write_text

logger = logging.getLogger(__name__)

LOCK_HEADER = "# This file is generated by pyro. Do not edit it by hand.\n"

_HEX = set("0123456789abcdef")


class LockEntry(BaseModel):
    """Pinned state of one dependency.

    Serialized as a ``[[package]]`` table with ``name``, ``source`` and
    ``checksum`` keys.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "file:///tmp/dummy-pkg",
                "source": "abc123def456abc123def456abc123def456abc1",
                "checksum": "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
            }
        },
    )

    locator: str = Field(..., alias="name", min_length=1, description="Dependency locator")
    resolved_revision: str = Field(..., alias="source", description="Pinned commit id")
    checksum: str = Field(..., description="SHA-256 content checksum of the tree")

    @field_validator("resolved_revision")
    @classmethod
    def validate_commit_sha(cls, v: str) -> str:
        """Ensure resolved_revision looks like a git commit id (SHA-1 or SHA-256)."""
        if len(v) < 7 or len(v) > 64:
            raise ValueError(
                f"source must be 7-64 hex characters; got '{v}' (len={len(v)})"
            )
        if not all(c in _HEX for c in v.lower()):
            raise ValueError(f"source must be hexadecimal; got '{v}'")
        return v

    @field_validator("checksum")
    @classmethod
    def validate_checksum(cls, v: str) -> str:
        if len(v) != 64 or not all(c in _HEX for c in v):
            raise ValueError(f"checksum must be 64 lowercase hex characters; got '{v}'")
        return v

    def to_table(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


class Lockfile(BaseModel):
    """All lock entries of a project, keyed by locator.

    Operations return new Lockfile values; the original is left unchanged.
    Rendering sorts entries by locator so saving the same entries always
    produces the same bytes.
    """

    entries: Dict[str, LockEntry] = Field(default_factory=dict)

    def locators(self) -> List[str]:
        return sorted(self.entries)

    def get(self, locator: str) -> Optional[LockEntry]:
        return self.entries.get(locator)

    def upsert(self, entry: LockEntry) -> "Lockfile":
        """Replace the entry sharing entry.locator, or add it."""
        entries = dict(self.entries)
        entries[entry.locator] = entry
        return Lockfile(entries=entries)

    def prune(self, valid_locators: Iterable[str]) -> "Lockfile":
        """Drop entries whose locator is not in valid_locators."""
        valid = set(valid_locators)
        stale = [locator for locator in self.entries if locator not in valid]
        for locator in stale:
            logger.info(f"Pruning stale lock entry {locator}")
        return Lockfile(
            entries={k: v for k, v in self.entries.items() if k in valid}
        )

    def render(self) -> str:
        tables = [self.entries[locator].to_table() for locator in self.locators()]
        if not tables:
            return LOCK_HEADER
        return LOCK_HEADER + "\n" + tomli_w.dumps({"package": tables})

    def save(self, path: Path) -> None:
        """Write lockfile atomically."""
        atomic_write_text(Path(path), self.render())
        logger.info(f"Saved {path} ({len(self.entries)} packages)")

    @classmethod
    def parse(cls, text: str, source: str = "pyro.lock") -> "Lockfile":
        """Parse lockfile text.

        Raises:
            ParseError: On invalid TOML, bad entries or duplicate names
        """
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ParseError(f"{source}: {e}") from e

        unknown = set(data) - {"package"}
        if unknown:
            raise ParseError(f"{source}: unexpected keys {sorted(unknown)}")

        tables = data.get("package", [])
        if not isinstance(tables, list):
            raise ParseError(f"{source}: 'package' must be an array of tables")

        entries: Dict[str, LockEntry] = {}
        for index, table in enumerate(tables):
            try:
                entry = LockEntry.model_validate(table)
            except ValidationError as e:
                fields = ", ".join(
                    ".".join(str(part) for part in err["loc"]) for err in e.errors()
                )
                raise ParseError(
                    f"{source}: invalid [[package]] #{index + 1} (fields: {fields}): {e}"
                ) from e
            if entry.locator in entries:
                raise ParseError(f"{source}: duplicate package {entry.locator!r}")
            entries[entry.locator] = entry

        return cls(entries=entries)

    @classmethod
    def load(cls, path: Path) -> "Lockfile":
        """Load a lockfile; a missing file is an empty lockfile."""
        path = Path(path)
        try:
            with open(path, encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError:
            logger.info(f"No {path.name} found, starting with an empty lockfile")
            return cls()
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"Cannot read {path}: {e}") from e
        return cls.parse(text, source=str(path))
