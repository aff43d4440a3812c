"""
pkgtools: a transactional package database for a Unix filesystem.

Records which files belong to which installed package, refuses installs
that would clobber existing files, and removes a package's files without
touching paths other packages still use.
"""
from .config import Options, load_options
from .db import Database, RemoveResult, Walk, open_database
from .errors import (
    AlreadyLocked,
    ArchiveError,
    CollisionError,
    InternalError,
    InvalidFilename,
    InvalidRule,
    MalformedManifest,
    ManifestError,
    NotFound,
    PackageExists,
    PathError,
    PkgError,
)
from .package import Package, PackageEntry
from .paths import parse_filename
from .reject import RejectRuleSet

__version__ = "0.4.0"

__all__ = [
    "AlreadyLocked",
    "ArchiveError",
    "CollisionError",
    "Database",
    "InternalError",
    "InvalidFilename",
    "InvalidRule",
    "MalformedManifest",
    "ManifestError",
    "NotFound",
    "Options",
    "Package",
    "PackageEntry",
    "PackageExists",
    "PathError",
    "PkgError",
    "RejectRuleSet",
    "RemoveResult",
    "Walk",
    "load_options",
    "open_database",
    "parse_filename",
]
