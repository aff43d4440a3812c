"""
Archive reader/writer for package files (tar, optionally gzip/bzip2/xz).

Only two things are needed from an archive: the ordered list of member
paths, and extracting members under an install root.
"""
from __future__ import annotations

import logging
import lzma
import os
import stat
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, Iterator, List, Optional

from .errors import ArchiveError
from .paths import build_path, strip_dot_slash

log = logging.getLogger("pkgtools")

# errors that mean the container itself is unreadable
_READ_ERRORS = (tarfile.ReadError, tarfile.CompressionError, EOFError, zlib.error, lzma.LZMAError)


@dataclass(frozen=True)
class ArchiveMember:
    path: str
    is_dir: bool


@dataclass
class ExtractResult:
    extracted: int = 0
    skipped: int = 0
    failed: int = 0


def member_relpath(name: str) -> str:
    """Relative path recorded for a member name ('' for the archive root)."""
    rel = strip_dot_slash(name)
    if rel == ".":
        return ""
    return rel


def _open(archive_path: str) -> tarfile.TarFile:
    try:
        tf = tarfile.open(archive_path, "r:*")
    except (OSError, tarfile.TarError) as e:
        raise ArchiveError(f"{archive_path}: cannot open archive: {e}") from e
    tf.errorlevel = 1
    return tf


def iter_members(archive_path: str) -> Iterator[ArchiveMember]:
    """
    Yield the members of `archive_path` in archive order.

    Each call reopens the archive. A corrupt header aborts the iteration
    with ArchiveError.
    """
    tf = _open(archive_path)
    with tf:
        try:
            for member in tf:
                yield ArchiveMember(path=member.name, is_dir=member.isdir())
            _check_end(tf, archive_path)
        except _READ_ERRORS + (OSError,) as e:
            raise ArchiveError(f"{archive_path}: corrupt archive: {e}") from e


def _check_end(tf: tarfile.TarFile, archive_path: str) -> None:
    """
    tarfile stops iterating at the first bad header past the first one, as
    if the archive ended there. Only a zero block or end of file is a real end.
    """
    try:
        tf.fileobj.seek(tf.offset)
        block = tf.fileobj.read(tarfile.BLOCKSIZE)
    except _READ_ERRORS + (OSError,) as e:
        raise ArchiveError(f"{archive_path}: read error: {e}") from e
    if block.strip(b"\0"):
        raise ArchiveError(f"{archive_path}: corrupt header at offset {tf.offset}")


def escapes_root(name: str) -> bool:
    p = PurePosixPath(name)
    return p.is_absolute() or ".." in p.parts


def _unsafe_reason(member: tarfile.TarInfo) -> Optional[str]:
    if escapes_root(member.name):
        return "path escapes the install root"
    if member.islnk() and escapes_root(member.linkname):
        return "hard link target escapes the install root"
    if not (member.isfile() or member.isdir() or member.issym() or member.islnk()
            or member.isfifo() or member.ischr() or member.isblk()):
        return "unsupported member type"
    return None


def _extract_kwargs() -> dict:
    # safety checks are done here; keep owner/mode/mtime as packaged
    if hasattr(tarfile, "fully_trusted_filter"):
        return {"filter": "fully_trusted"}
    return {}


def extract(
    archive_path: str,
    root: str,
    skip: Callable[[str], bool] = lambda rel: False,
    force: bool = False,
    on_extract: Optional[Callable[[str], None]] = None,
) -> ExtractResult:
    """
    Extract every member of `archive_path` under `root`.

    Members for which skip(relpath) is true are not written. Failures on a
    single member are logged and counted; failing to read the archive raises
    ArchiveError. With `force`, an existing non-directory target is unlinked
    before extraction.
    """
    result = ExtractResult()
    directories: List[tarfile.TarInfo] = []
    kwargs = _extract_kwargs()

    tf = _open(archive_path)
    with tf:
        try:
            for member in tf:
                rel = member_relpath(member.name)
                if not rel:
                    continue
                if skip(rel):
                    log.warning("rejecting %s", rel)
                    result.skipped += 1
                    continue
                reason = _unsafe_reason(member)
                if reason:
                    log.warning("not extracting %s: %s", member.name, reason)
                    result.failed += 1
                    continue

                target = build_path(root, rel)
                try:
                    if force:
                        _unlink_existing(target)
                    if member.isdir():
                        tf.extract(member, path=root, set_attrs=False, **kwargs)
                        directories.append(member)
                    else:
                        tf.extract(member, path=root, set_attrs=True, **kwargs)
                except _READ_ERRORS:
                    raise
                except (OSError, tarfile.ExtractError) as e:
                    log.warning("extract %s: %s", rel, e)
                    result.failed += 1
                    continue
                result.extracted += 1
                if on_extract is not None:
                    on_extract(target)
            _check_end(tf, archive_path)
        except _READ_ERRORS as e:
            raise ArchiveError(f"{archive_path}: read error: {e}") from e

        # directory metadata last, deepest first, so file creation does
        # not clobber mtimes and read-only dirs can still be filled
        directories.sort(key=lambda m: m.name, reverse=True)
        for member in directories:
            target = build_path(root, member_relpath(member.name))
            try:
                if os.geteuid() == 0:
                    tf.chown(member, target, False)
                tf.chmod(member, target)
                tf.utime(member, target)
            except (OSError, tarfile.ExtractError) as e:
                log.warning("set attributes %s: %s", target, e)

    return result


def _unlink_existing(target: str) -> None:
    try:
        st = os.lstat(target)
    except FileNotFoundError:
        return
    if not stat.S_ISDIR(st.st_mode):
        os.unlink(target)
