#!/usr/bin/env python3
"""
pkgtool: install, remove and query packages in the package db.

    pkgtool [-v] [-f] [-r ROOT] install foo#1.0.pkg.tar.gz ...
    pkgtool remove foo ...
    pkgtool owner /usr/bin/foo ...
    pkgtool list | files NAME | verify [NAME]
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import default_root, load_options
from .db import Database, open_database
from .errors import CollisionError, NotFound, PkgError

log = logging.getLogger("pkgtools")


def cmd_install(db: Database, archives: List[str]) -> int:
    rc = 0
    for archive in archives:
        try:
            pkg = db.install(archive)
        except CollisionError as e:
            for path in e.paths:
                print(f"{path} exists", file=sys.stderr)
            print(f"not installed {archive}", file=sys.stderr)
            return 1
        except PkgError as e:
            log.error("%s", e)
            rc = 1
            continue
        print(f"installed {pkg.full_name}")
    return rc


def cmd_remove(db: Database, names: List[str]) -> int:
    for name in names:
        result = db.uninstall(name)
        log.debug("%s: removed=%d missing=%d skipped=%d kept=%d failed=%d pruned=%d",
                  name, result.removed, result.missing, result.skipped,
                  result.kept, result.failed, result.pruned)
        print(f"removed {name}")
    return 0


def cmd_owner(db: Database, paths: List[str]) -> int:
    rc = 0
    for path in paths:
        pkg = db.owner(path)
        if pkg is None:
            print(f"{path} is not owned by any package", file=sys.stderr)
            rc = 1
            continue
        print(f"{path} is owned by {pkg.full_name}")
    return rc


def cmd_list(db: Database) -> int:
    for pkg in db.packages():
        print(f"{pkg.name} {pkg.version or '-'}")
    return 0


def cmd_files(db: Database, name: str) -> int:
    pkg = db.find(name)
    if pkg is None:
        raise NotFound(f"package {name} not installed")
    for pe in pkg:
        print(pe.path)
    return 0


def cmd_verify(db: Database, name: Optional[str]) -> int:
    if name:
        pkg = db.find(name)
        if pkg is None:
            raise NotFound(f"package {name} not installed")
        targets = [pkg]
    else:
        targets = db.packages()

    problems = 0
    for pkg in targets:
        for path in db.verify(pkg):
            problems += 1
            log.warning("[%s] missing: %s", pkg.full_name, path)
    if problems:
        log.error("verify found %d problem(s)", problems)
        return 1
    log.info("verify OK")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pkgtool", description="Package database tools")
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="Enable verbose output")
    parser.add_argument("-f", "--force", action="store_true", default=None,
                        help="Skip collision checks; remove links and empty directories")
    parser.add_argument("-r", "--root", default=default_root(), help="Alternative installation root")
    parser.add_argument("--config", default=None, help="Options file (YAML)")

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_install = sub.add_parser("install", help="Install package archives")
    p_install.add_argument("archives", nargs="+", metavar="ARCHIVE")

    p_remove = sub.add_parser("remove", help="Remove installed packages")
    p_remove.add_argument("names", nargs="+", metavar="NAME")

    p_owner = sub.add_parser("owner", aliases=["info"], help="Show the package owning a file")
    p_owner.add_argument("paths", nargs="+", metavar="PATH")

    sub.add_parser("list", help="List installed packages")

    p_files = sub.add_parser("files", help="List the files of a package")
    p_files.add_argument("name", metavar="NAME")

    p_verify = sub.add_parser("verify", help="Report recorded files missing from disk")
    p_verify.add_argument("name", nargs="?", default=None, metavar="NAME")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        options = load_options(args.root, args.config).merged(force=args.force, verbose=args.verbose)
        with open_database(args.root, options) as db:
            if args.cmd == "install":
                return cmd_install(db, args.archives)
            if args.cmd == "remove":
                return cmd_remove(db, args.names)
            if args.cmd in ("owner", "info"):
                return cmd_owner(db, args.paths)
            if args.cmd == "list":
                return cmd_list(db)
            if args.cmd == "files":
                return cmd_files(db, args.name)
            if args.cmd == "verify":
                return cmd_verify(db, args.name)
            parser.error("unknown command")
    except PkgError as e:
        log.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
