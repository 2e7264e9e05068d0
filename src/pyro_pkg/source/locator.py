"""Locator strings: validation, variant detection and cache keys."""
import hashlib
import re

from pyro_pkg.core.errors import InvalidLocatorError

LOCAL_SCHEME = "file://"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_SLUG_MAX = 48


def validate_locator(locator: str) -> str:
    """Check that a locator can be used as a manifest key and cache key.

    Locators are not normalized: ``file:///abs/path`` and ``host/org/repo``
    are kept byte-for-byte.

    Raises:
        InvalidLocatorError: If the locator is empty or contains whitespace
            or control characters
    """
    if not isinstance(locator, str) or not locator:
        raise InvalidLocatorError("Locator must be a non-empty string")
    if any(c.isspace() or ord(c) < 0x20 or ord(c) == 0x7F for c in locator):
        raise InvalidLocatorError(
            f"Locator must not contain whitespace or control characters: {locator!r}",
            locator=locator,
        )
    if locator == LOCAL_SCHEME:
        raise InvalidLocatorError("file:// locator is missing a path", locator=locator)
    return locator


def is_local(locator: str) -> bool:
    return locator.startswith(LOCAL_SCHEME)


def clone_url(locator: str) -> str:
    """URL handed to git for a remote locator.

    Examples:
        github.com/org/repo -> https://github.com/org/repo
        ssh://git@host/org/repo -> ssh://git@host/org/repo
    """
    if "://" in locator:
        return locator
    return f"https://{locator}"


def cache_key(locator: str) -> str:
    """Filesystem-safe, collision-resistant directory name for a locator.

    Examples:
        github.com/org/repo -> github.com_org_repo-<16 hex chars>
        file:///tmp/dummy-pkg -> file_tmp_dummy-pkg-<16 hex chars>
    """
    slug = _UNSAFE_CHARS.sub("_", locator).strip("_.")[:_SLUG_MAX] or "pkg"
    digest = hashlib.sha256(locator.encode("utf-8")).hexdigest()[:16]
    return f"{slug}-{digest}"
