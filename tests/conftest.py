from pathlib import Path
from typing import Callable, Iterable

import pytest

from helpers import Member, write_archive
from pkgtools import Database, Options


@pytest.fixture
def root(tmp_path: Path) -> Path:
    r = tmp_path / "root"
    (r / "var" / "pkg").mkdir(parents=True)
    return r


@pytest.fixture
def store(root: Path) -> Path:
    return root / "var" / "pkg"


@pytest.fixture
def make_archive(tmp_path: Path) -> Callable[..., Path]:
    def _make(filename: str, members: Iterable[Member]) -> Path:
        return write_archive(tmp_path / "archives" / filename, members)

    return _make


@pytest.fixture
def open_db(root: Path):
    opened = []

    def _open(force: bool = False, verbose: bool = False, load: bool = True) -> Database:
        db = Database.open(str(root), Options(force=force, verbose=verbose))
        opened.append(db)
        if load:
            db.load()
        return db

    yield _open
    for db in opened:
        db.close()
