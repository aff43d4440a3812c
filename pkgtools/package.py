"""
Installed packages and their on-disk manifests.

A manifest is a plain text file under the store directory named
`name` or `name#version`, holding one package-relative path per line.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from .errors import ManifestError, MalformedManifest
from .paths import build_path, manifest_name

log = logging.getLogger("pkgtools")


@dataclass(frozen=True)
class PackageEntry:
    path: str   # root prefix + "/" + rpath
    rpath: str  # as recorded in the manifest

    def __post_init__(self) -> None:
        if not self.rpath:
            raise ValueError("package entry with empty path")


@dataclass
class Package:
    name: str
    version: Optional[str]
    manifest_path: str
    entries: List[PackageEntry] = field(default_factory=list)

    @staticmethod
    def new(store_dir: str, name: str, version: Optional[str]) -> "Package":
        return Package(
            name=name,
            version=version,
            manifest_path=build_path(store_dir, manifest_name(name, version)),
        )

    @property
    def full_name(self) -> str:
        return manifest_name(self.name, self.version)

    def add_entry(self, prefix: str, rpath: str) -> PackageEntry:
        pe = PackageEntry(path=build_path(prefix, rpath), rpath=rpath)
        self.entries.append(pe)
        return pe

    def rpaths(self) -> List[str]:
        return [pe.rpath for pe in self.entries]

    def same_package(self, other: "Package") -> bool:
        # version is informational only
        return self.name == other.name

    def __iter__(self) -> Iterator[PackageEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def read_manifest(manifest_path: str, prefix: str, name: str, version: Optional[str]) -> Package:
    """
    Load the manifest at `manifest_path`.

    An empty line makes the whole manifest invalid: a silently dropped
    entry would never be removed nor collision-checked again.
    """
    pkg = Package(name=name, version=version, manifest_path=manifest_path)
    try:
        with open(manifest_path, "r", encoding="utf-8", newline="\n") as f:
            for lineno, line in enumerate(f, 1):
                if line.endswith("\n"):
                    line = line[:-1]
                if not line:
                    raise MalformedManifest(manifest_path, lineno)
                pkg.add_entry(prefix, line)
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"{manifest_path}: read error: {e}") from e
    return pkg


def write_manifest(pkg: Package) -> None:
    """Write and fsync the manifest for `pkg`."""
    try:
        with open(pkg.manifest_path, "w", encoding="utf-8", newline="\n") as f:
            for pe in pkg.entries:
                f.write(pe.rpath)
                f.write("\n")
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise ManifestError(f"{pkg.manifest_path}: write error: {e.strerror or e}") from e


def delete_manifest(pkg: Package) -> None:
    try:
        os.remove(pkg.manifest_path)
    except OSError as e:
        raise ManifestError(f"remove {pkg.manifest_path}: {e.strerror or e}") from e
    os.sync()
