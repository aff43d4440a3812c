"""
Exceptions raised by the package database.

Structural errors abort the current install/remove. Best-effort failures
(a single file that cannot be removed or extracted) are only logged.
"""
from __future__ import annotations

from typing import Iterable, List, Optional


class PkgError(Exception):
    """Base class for every error the database reports to its caller."""


class PathError(PkgError):
    """The install root cannot be resolved or the store cannot be opened."""


class NotFound(PkgError):
    """A store directory, package or path that was expected does not exist."""


class AlreadyLocked(PkgError):
    """Another process holds the package database."""


class InvalidRule(PkgError):
    def __init__(self, pattern: str, lineno: int, reason: str):
        super().__init__(f"invalid pattern at line {lineno}: {pattern!r} ({reason})")
        self.pattern = pattern
        self.lineno = lineno


class MalformedManifest(PkgError):
    def __init__(self, path: str, lineno: Optional[int] = None, reason: str = "malformed pkg file"):
        where = f"{path}:{lineno}" if lineno is not None else path
        super().__init__(f"{where}: {reason}")
        self.path = path
        self.lineno = lineno


class ManifestError(PkgError):
    """A manifest could not be read, written or deleted."""


class InvalidFilename(PkgError):
    pass


class ArchiveError(PkgError):
    """The archive container cannot be opened or its headers are corrupt."""


class CollisionError(PkgError):
    def __init__(self, package: str, paths: Iterable[str]):
        self.package = package
        self.paths: List[str] = list(paths)
        listing = ", ".join(self.paths)
        super().__init__(f"{package}: {len(self.paths)} collision(s): {listing}")


class PackageExists(PkgError):
    pass


class InternalError(PkgError):
    """A caller broke a database invariant (programming error)."""
