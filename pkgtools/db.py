"""
The package database.

A Database is one locked session over <root>/var/pkg:

    with open_database("/", Options(force=False)) as db:
        pkg = db.install("/tmp/foo#1.0.pkg.tar.gz")
        db.uninstall("bar")

Removal is done in two phases. remove() deletes the package's files and
moves the package to the pending set; commit_removal() deletes the
manifest. Until the manifest is gone the package is still listed on disk,
so an interrupted removal can always be re-run.
"""
from __future__ import annotations

import contextlib
import enum
import logging
import os
import stat
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from .archive import escapes_root, extract, iter_members, member_relpath
from .config import Options
from .errors import (
    ArchiveError,
    CollisionError,
    InternalError,
    MalformedManifest,
    ManifestError,
    NotFound,
    PackageExists,
    PathError,
    PkgError,
)
from .lock import DirectoryLock, SignalShield
from .package import Package, delete_manifest, read_manifest, write_manifest
from .paths import DBPATH, REJECT_PATH, build_path, parse_filename, parse_manifest_name, strip_dot_slash
from .reject import RejectRuleSet

log = logging.getLogger("pkgtools")


class Walk(enum.Enum):
    CONTINUE = 0
    STOP = 1
    ERROR = -1


@dataclass
class RemoveResult:
    removed: int = 0
    missing: int = 0
    skipped: int = 0
    kept: int = 0     # still referenced by another package
    failed: int = 0
    pruned: int = 0


def _norm(rpath: str) -> str:
    return strip_dot_slash(rpath).rstrip("/")


class Database:
    def __init__(self, root: str, store_dir: str, lock: DirectoryLock, rules: RejectRuleSet,
                 options: Options, shield: SignalShield):
        self.root = root
        self.store_dir = store_dir
        self.rules = rules
        self.options = options
        self._lock = lock
        self._shield = shield
        self._packages: List[Package] = []
        self._pending: List[Package] = []
        self._closed = False

    # ----------------------------
    # Session
    # ----------------------------

    @classmethod
    def open(cls, root: str, options: Optional[Options] = None) -> "Database":
        """
        Lock the store under `root` and load the reject rules.

        Raises PathError, NotFound, AlreadyLocked or InvalidRule.
        """
        options = options or Options()
        try:
            prefix = os.path.realpath(root, strict=True)
        except OSError as e:
            raise PathError(f"realpath {root}: {e.strerror or e}") from e

        store_dir = build_path(prefix, DBPATH)
        if not os.path.isdir(store_dir):
            raise NotFound(f"{store_dir}: package db not found")

        lock = DirectoryLock(store_dir).acquire()
        try:
            rules = RejectRuleSet.load(Path(build_path(prefix, REJECT_PATH)))
        except PkgError:
            lock.release()
            raise
        shield = SignalShield().install()
        log.debug("opened package db %s (%d reject rule(s))", store_dir, len(rules))
        return cls(prefix, store_dir, lock, rules, options, shield)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pending:
            log.warning("%d package(s) removed but manifest still present: %s",
                        len(self._pending), ", ".join(p.full_name for p in self._pending))
        self._shield.restore()
        self._lock.release()
        self._packages = []
        self._pending = []

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise InternalError("package db is closed")

    def _trace(self, msg: str, *args) -> None:
        log.log(logging.INFO if self.options.verbose else logging.DEBUG, msg, *args)

    # ----------------------------
    # Load
    # ----------------------------

    def load(self) -> int:
        """
        Read every manifest in the store. All or nothing: on any error the
        active set stays empty and the error propagates.
        """
        self._check_open()
        try:
            filenames = sorted(os.listdir(self.store_dir))
        except OSError as e:
            raise ManifestError(f"{self.store_dir}: {e.strerror or e}") from e

        loaded: List[Package] = []
        for filename in filenames:
            path = build_path(self.store_dir, filename)
            if not os.path.isfile(path):
                raise MalformedManifest(path, reason="not a regular file")
            name, version = parse_manifest_name(filename)
            if not name:
                raise MalformedManifest(path, reason="empty package name")
            loaded.append(read_manifest(path, self.root, name, version))

        self._packages = loaded
        log.debug("loaded %d package(s)", len(loaded))
        return len(loaded)

    # ----------------------------
    # Queries
    # ----------------------------

    def walk(self, visitor: Callable[[Package], Optional[Walk]]) -> Walk:
        """
        Call visitor(pkg) for every active package in load order.

        Stops on Walk.STOP or Walk.ERROR and returns it; returns
        Walk.CONTINUE when every package was visited.
        """
        self._check_open()
        for pkg in list(self._packages):
            r = visitor(pkg)
            if r is None or r is Walk.CONTINUE:
                continue
            return r
        return Walk.CONTINUE

    def packages(self) -> List[Package]:
        self._check_open()
        return list(self._packages)

    def pending(self) -> List[Package]:
        self._check_open()
        return list(self._pending)

    def find(self, name: str) -> Optional[Package]:
        """Active package called `name` (or `name#version`)."""
        found: List[Package] = []

        def visit(pkg: Package) -> Walk:
            if pkg.name == name or pkg.full_name == name:
                found.append(pkg)
                return Walk.STOP
            return Walk.CONTINUE

        self.walk(visit)
        return found[0] if found else None

    def links(self, rpath: str) -> int:
        """Number of active packages with an entry for `rpath`."""
        key = _norm(rpath)
        count = 0

        def visit(pkg: Package) -> Walk:
            nonlocal count
            if any(_norm(r) == key for r in pkg.rpaths()):
                count += 1
            return Walk.CONTINUE

        self.walk(visit)
        return count

    def _reference_index(self, exclude: Package) -> Counter:
        refs: Counter = Counter()

        def visit(pkg: Package) -> Walk:
            if pkg is not exclude:
                refs.update({_norm(r) for r in pkg.rpaths()})
            return Walk.CONTINUE

        self.walk(visit)
        return refs

    def owner(self, path: str) -> Optional[Package]:
        """
        Active package that owns `path` (relative to the install root).

        Ownership is decided by device and inode, so hard links and
        differently spelled paths resolve to the same owner.
        """
        self._check_open()
        target = build_path(self.root, path)
        try:
            st = os.lstat(target)
        except OSError as e:
            raise NotFound(f"stat {target}: {e.strerror or e}") from e

        found: List[Package] = []

        def visit(pkg: Package) -> Walk:
            for pe in pkg.entries:
                try:
                    est = os.lstat(pe.path)
                except OSError:
                    continue
                if (est.st_dev, est.st_ino) == (st.st_dev, st.st_ino):
                    found.append(pkg)
                    return Walk.STOP
            return Walk.CONTINUE

        self.walk(visit)
        return found[0] if found else None

    def verify(self, pkg: Package) -> List[str]:
        """Recorded paths that are missing from disk (reject rules excluded)."""
        self._check_open()
        return [pe.path for pe in pkg.entries
                if not self.rules.matches(pe.rpath) and not os.path.lexists(pe.path)]

    # ----------------------------
    # Install
    # ----------------------------

    def package_from_archive(self, archive_path: str) -> Package:
        """Build the Package an archive would install (reject rules applied)."""
        self._check_open()
        try:
            path = os.path.realpath(archive_path, strict=True)
        except OSError as e:
            raise PathError(f"realpath {archive_path}: {e.strerror or e}") from e

        name, version = parse_filename(path)
        pkg = Package.new(self.store_dir, name, version)
        for member in iter_members(path):
            # manifests are newline separated
            if "\n" in member.path:
                raise ArchiveError(f"{path}: member name contains a newline: {member.path!r}")
            rel = member_relpath(member.path)
            if not rel:
                continue
            if self.rules.matches(rel):
                self._trace("rejecting %s", rel)
                continue
            if escapes_root(rel):
                log.warning("skipping %s: path escapes the install root", rel)
                continue
            pkg.add_entry(self.root, rel)
        return pkg

    def collisions(self, pkg: Package) -> List[str]:
        """Every entry of `pkg` that already exists on disk as a non-directory."""
        found: List[str] = []
        for pe in pkg.entries:
            try:
                st = os.stat(pe.path)
            except (FileNotFoundError, NotADirectoryError):
                continue
            except OSError as e:
                raise PathError(f"stat {pe.path}: {e.strerror or e}") from e
            if not stat.S_ISDIR(st.st_mode):
                log.warning("%s exists", os.path.realpath(pe.path))
                found.append(pe.path)
        return found

    def install(self, archive_path: str) -> Package:
        """
        Install the package archive at `archive_path`.

        The manifest is written before extraction: if extraction dies half
        way, the manifest still records what may be on disk and a later
        remove can clean it up.
        """
        self._check_open()
        force = self.options.force
        try:
            path = os.path.realpath(archive_path, strict=True)
        except OSError as e:
            raise PathError(f"realpath {archive_path}: {e.strerror or e}") from e
        self._trace("installing %s", path)

        pkg = self.package_from_archive(path)
        existing = next((p for p in self.packages() if p.same_package(pkg)), None)
        if existing is not None and not force:
            raise PackageExists(f"{pkg.name}: already installed as {existing.full_name}")
        if not force:
            found = self.collisions(pkg)
            if found:
                raise CollisionError(pkg.full_name, found)

        write_manifest(pkg)
        self._trace("adding %s (%d entries)", pkg.manifest_path, len(pkg))

        result = extract(
            path,
            self.root,
            skip=self.rules.matches,
            force=force,
            on_extract=lambda target: self._trace("installed %s", target),
        )
        if result.failed:
            log.warning("%s: %d entr(y/ies) could not be extracted", pkg.full_name, result.failed)

        if existing is not None:
            self._packages.remove(existing)
        self._packages.append(pkg)
        if existing is not None:
            self._retire(existing, pkg)
        return pkg

    def _retire(self, old: Package, new: Package) -> None:
        # forced reinstall: drop the old record, its files stay on disk
        if old.manifest_path == new.manifest_path:
            return
        self._pending.append(old)
        self.commit_removal(old.full_name)
        log.info("replaced %s with %s", old.full_name, new.full_name)

    # ----------------------------
    # Remove
    # ----------------------------

    def remove(self, pkg: Package) -> RemoveResult:
        """
        Phase one of a removal: delete the files of `pkg` and move it to
        the pending set. Safe to call again; files already gone are only
        reported.
        """
        self._check_open()
        is_active = any(p is pkg for p in self._packages)
        if not is_active and not any(p is pkg for p in self._pending):
            raise InternalError(f"{pkg.full_name}: not in the package db")

        force = self.options.force
        refs = self._reference_index(exclude=pkg)
        result = RemoveResult()

        # newest entries first: children before the directories holding them
        candidates = []
        for pe in reversed(pkg.entries):
            if self.rules.matches(pe.rpath):
                log.warning("rejecting %s", pe.rpath)
                result.skipped += 1
                continue
            if escapes_root(pe.rpath):
                log.warning("skipping %s: path escapes the install root", pe.rpath)
                result.skipped += 1
                continue
            candidates.append(pe)

            try:
                st = os.lstat(pe.path)
            except (FileNotFoundError, NotADirectoryError):
                log.warning("lstat %s: no such file or directory", pe.path)
                result.missing += 1
                continue
            except OSError as e:
                log.warning("lstat %s: %s", pe.path, e.strerror or e)
                result.failed += 1
                continue

            if stat.S_ISDIR(st.st_mode):
                if not force:
                    log.info("ignoring directory %s", pe.path)
                result.skipped += 1
                continue
            if stat.S_ISLNK(st.st_mode) and not force:
                log.info("ignoring link %s", pe.path)
                result.skipped += 1
                continue
            if refs[_norm(pe.rpath)]:
                log.info("keeping %s: used by %d other package(s)", pe.path, refs[_norm(pe.rpath)])
                result.kept += 1
                continue

            self._trace("removing %s", pe.path)
            try:
                os.remove(pe.path)
            except OSError as e:
                log.warning("remove %s: %s", pe.path, e.strerror or e)
                result.failed += 1
                continue
            result.removed += 1

        if force:
            for pe in candidates:
                if refs[_norm(pe.rpath)]:
                    continue
                result.pruned += self._prune(pe.path, refs)

        if is_active:
            self._packages.remove(pkg)
            self._pending.append(pkg)
        return result

    def _prune(self, path: str, refs: Counter) -> int:
        """
        rmdir every empty directory from `path` down, deepest first.

        Only rmdir() is used, so a directory that still has anything in it
        is never removed. Directories claimed by another package or
        protected by a reject rule are left alone.
        """
        try:
            st = os.lstat(path)
        except OSError:
            return 0
        if not stat.S_ISDIR(st.st_mode):
            return 0

        top = path.rstrip("/") or "/"
        pruned = 0
        for dirpath, _dirnames, _filenames in os.walk(top, topdown=False, followlinks=False):
            if dirpath != top:
                rel = os.path.relpath(dirpath, self.root)
                if refs[_norm(rel)] or self.rules.matches(rel):
                    continue
            try:
                os.rmdir(dirpath)
            except OSError:
                continue
            self._trace("removing %s", dirpath)
            pruned += 1
        return pruned

    def commit_removal(self, name: str) -> None:
        """
        Phase two of a removal: delete the manifest of a pending package.

        A failed delete leaves the package pending so it can be retried.
        """
        self._check_open()
        pkg = next((p for p in self._pending if p.full_name == name or p.name == name), None)
        if pkg is None:
            raise InternalError(f"{name}: not pending removal")
        self._trace("removing %s", pkg.manifest_path)
        delete_manifest(pkg)
        self._pending.remove(pkg)

    def uninstall(self, name: str) -> RemoveResult:
        pkg = self.find(name)
        if pkg is None:
            raise NotFound(f"package {name} not installed")
        result = self.remove(pkg)
        self.commit_removal(pkg.full_name)
        return result


@contextlib.contextmanager
def open_database(root: str, options: Optional[Options] = None, load: bool = True) -> Iterator[Database]:
    """Open (and by default load) the database under `root`; always closes."""
    db = Database.open(root, options)
    try:
        if load:
            db.load()
        yield db
    finally:
        db.close()
