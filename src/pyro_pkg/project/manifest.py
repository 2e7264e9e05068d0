"""Project manifest (pyro.mod): structured reads, surgical edits, atomic saves."""
import logging
import re
import tomllib
from pathlib import Path
from typing import List, Optional

import tomli_w
from pydantic import BaseModel, Field

from pyro_pkg.core.errors import ManifestNotFoundError, ParseError
from pyro_pkg.core.fsio import atomic_write_text
from pyro_pkg.source.locator import validate_locator

logger = logging.getLogger(__name__)

PACKAGE_TABLE = "package"
DEPENDENCIES_TABLE = "dependencies"

# Bare, basic-string or literal-string TOML key
_KEY = r"""(?:[A-Za-z0-9_-]+|"(?:[^"\\\n]|\\.)*"|'[^'\n]*')"""

# Unindented table or array-of-tables header, e.g. "[package]" or "[[bin]]".
# Array lines such as "[1, 2]" inside a multi-line value do not match.
_HEADER = re.compile(
    rf"^\[\[?[ \t]*(?P<name>{_KEY}(?:[ \t]*\.[ \t]*{_KEY})*)[ \t]*\]\]?[ \t]*(#.*)?$"
)


class ManifestBlock(BaseModel):
    """A run of manifest text starting at a table header.

    The first block of a file may have no header (leading comments or blank
    lines). Blocks concatenate back to the exact original text.
    """

    header: Optional[str] = Field(default=None, description="Table name, None for the preamble")
    text: str = Field(..., description="Raw text including the header line")


def _split_blocks(text: str) -> List[ManifestBlock]:
    blocks: List[ManifestBlock] = []
    header: Optional[str] = None
    lines: List[str] = []
    for line in text.splitlines(keepends=True):
        match = _HEADER.match(line.rstrip("\r\n"))
        if match:
            if lines:
                blocks.append(ManifestBlock(header=header, text="".join(lines)))
            header = match.group("name")
            lines = []
        lines.append(line)
    if lines:
        blocks.append(ManifestBlock(header=header, text="".join(lines)))
    return blocks


def _line_ending(text: str, default: str = "\n") -> str:
    """Return the line ending text already uses, or default if it has none."""
    if "\r\n" in text:
        return "\r\n"
    if "\n" in text:
        return "\n"
    return default


def _dependency_line(locator: str, eol: str = "\n") -> str:
    # tomli_w quotes keys that are not bare TOML keys
    return tomli_w.dumps({locator: locator}).rstrip("\n") + eol


def _insert_line(block_text: str, line: str, eol: str = "\n") -> str:
    """Insert line after the last non-blank line of a block."""
    lines = block_text.splitlines(keepends=True)
    if lines and not lines[-1].endswith(("\n", "\r")):
        lines[-1] += eol
    index = len(lines)
    while index > 1 and not lines[index - 1].strip():
        index -= 1
    lines.insert(index, line)
    return "".join(lines)


class Manifest(BaseModel):
    """Parsed pyro.mod.

    Only ``[package]`` and ``[dependencies]`` are interpreted. Every other
    table is kept as raw text in ``blocks`` and written back byte-for-byte.
    Dependencies keep their file order; new ones are appended.

    Example:
        [package]
        name = "consumer"
        version = "0.1.0"

        [dependencies]
        "file:///tmp/dummy-pkg" = "file:///tmp/dummy-pkg"
    """

    name: str = Field(..., description="Project name")
    version: str = Field(..., description="Project version")
    dependencies: List[str] = Field(default_factory=list, description="Locators in file order")
    blocks: List[ManifestBlock] = Field(default_factory=list, description="Raw document text")

    @property
    def opaque_sections(self) -> List[ManifestBlock]:
        """Blocks the package manager does not interpret."""
        return [
            block
            for block in self.blocks
            if block.header not in (None, PACKAGE_TABLE, DEPENDENCIES_TABLE)
        ]

    @property
    def locators(self) -> List[str]:
        return list(self.dependencies)

    @classmethod
    def new(cls, name: str, version: str = "0.1.0") -> "Manifest":
        """Create the manifest written by 'pyro mod init'."""
        text = (
            tomli_w.dumps({PACKAGE_TABLE: {"name": name, "version": version}})
            + f"\n[{DEPENDENCIES_TABLE}]\n"
        )
        return cls.parse(text)

    @classmethod
    def parse(cls, text: str, source: str = "pyro.mod") -> "Manifest":
        """Parse manifest text.

        Raises:
            ParseError: On invalid TOML or missing/ill-typed fields
        """
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ParseError(f"{source}: {e}") from e

        package = data.get(PACKAGE_TABLE)
        if not isinstance(package, dict):
            raise ParseError(f"{source}: missing [{PACKAGE_TABLE}] table")
        for field in ("name", "version"):
            if not isinstance(package.get(field), str):
                raise ParseError(f"{source}: {PACKAGE_TABLE}.{field} must be a string")

        raw_deps = data.get(DEPENDENCIES_TABLE, {})
        if not isinstance(raw_deps, dict):
            raise ParseError(f"{source}: {DEPENDENCIES_TABLE} must be a table")
        for key, value in raw_deps.items():
            if not isinstance(value, str):
                raise ParseError(f"{source}: {DEPENDENCIES_TABLE}.{key!r} must be a string")

        blocks = _split_blocks(text)
        if raw_deps and not any(b.header == DEPENDENCIES_TABLE for b in blocks):
            raise ParseError(
                f"{source}: dependencies must be declared under a [{DEPENDENCIES_TABLE}] header"
            )

        return cls(
            name=package["name"],
            version=package["version"],
            dependencies=list(raw_deps),
            blocks=blocks,
        )

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Load manifest from a pyro.mod file."""
        path = Path(path)
        try:
            with open(path, encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError as e:
            raise ManifestNotFoundError(
                f"{path} not found. Run 'pyro mod init <name>' first."
            ) from e
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"Cannot read {path}: {e}") from e
        return cls.parse(text, source=str(path))

    def render(self) -> str:
        return "".join(block.text for block in self.blocks)

    def save(self, path: Path) -> None:
        """Write manifest atomically."""
        atomic_write_text(Path(path), self.render())
        logger.info(f"Saved {path}")

    def add_dependency(self, locator: str) -> "Manifest":
        """Return a manifest that lists locator, appending it if absent.

        Adding a listed locator is a no-op. Only the [dependencies] block is
        touched: one line is inserted after its last entry, or the block is
        appended at the end of the file if the manifest has none.
        """
        validate_locator(locator)
        if locator in self.dependencies:
            return self

        eol = _line_ending(self.render())
        blocks = list(self.blocks)
        for index, block in enumerate(blocks):
            if block.header == DEPENDENCIES_TABLE:
                block_eol = _line_ending(block.text, default=eol)
                text = _insert_line(block.text, _dependency_line(locator, block_eol), block_eol)
                blocks[index] = block.model_copy(update={"text": text})
                break
        else:
            if blocks and not blocks[-1].text.endswith(("\n", "\r")):
                blocks[-1] = blocks[-1].model_copy(update={"text": blocks[-1].text + eol})
            text = f"{eol}[{DEPENDENCIES_TABLE}]{eol}{_dependency_line(locator, eol)}"
            blocks.append(ManifestBlock(header=DEPENDENCIES_TABLE, text=text))

        return self.model_copy(
            update={"dependencies": [*self.dependencies, locator], "blocks": blocks}
        )
