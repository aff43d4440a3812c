"""
Path helpers: prefixed absolute paths and package filename parsing.

Package archives are named `name[#version].<ext1>.<ext2>`, e.g.
`foo#1.0.pkg.tar.gz` or `bar.pkg.tgz`. Manifests live under the store
directory as `name` or `name#version`.
"""
from __future__ import annotations

import os
from typing import Optional, Tuple

from .errors import InvalidFilename

# Locations relative to the install root
DBPATH = "var/pkg"
REJECT_PATH = "etc/pkgtools/reject.conf"
OPTIONS_PATH = "etc/pkgtools/pkgtools.yml"

PKG_MARKER = ".pkg"


def build_path(prefix: str, relpath: str) -> str:
    """prefix + "/" + relpath; an absolute relpath stays under prefix."""
    return prefix.rstrip("/") + "/" + relpath.lstrip("/")


def strip_dot_slash(path: str) -> str:
    if path.startswith("./"):
        return path[2:]
    return path


def _strip_extensions(path: str) -> str:
    filename = os.path.basename(path)
    stripped = []
    for _ in range(2):
        head, dot, ext = filename.rpartition(".")
        if not dot:
            raise InvalidFilename(f"{path}: invalid package filename")
        filename = head
        stripped.append(ext)
    # name#version.pkg.tar.gz: the package marker sits before .tar.<compression>
    if stripped[1] == "tar" and filename.endswith(PKG_MARKER):
        filename = filename[: -len(PKG_MARKER)]
    return filename


def parse_filename(path: str) -> Tuple[str, Optional[str]]:
    """
    Return (name, version) for a package archive path.

    Exactly two trailing suffixes are stripped (plus a ".pkg" marker in
    front of ".tar.<compression>"), then the remainder is split on the
    first '#'. version is None when there is no '#'.
    """
    stem = _strip_extensions(path)
    name, sep, version = stem.partition("#")
    if not name:
        raise InvalidFilename(f"{path}: invalid package filename")
    if sep and not version:
        raise InvalidFilename(f"{path}: invalid package filename (empty version)")
    return name, (version if sep else None)


def manifest_name(name: str, version: Optional[str]) -> str:
    if version:
        return f"{name}#{version}"
    return name


def parse_manifest_name(filename: str) -> Tuple[str, Optional[str]]:
    name, sep, version = filename.partition("#")
    return name, (version if sep else None)
