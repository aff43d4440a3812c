import os
from pathlib import Path

import pytest

from helpers import write_manifest_file, write_rules
from pkgtools import InternalError, ManifestError, NotFound


def _install(db, make_archive, filename, members):
    return db.install(str(make_archive(filename, members)))


def test_remove_is_two_phase(root: Path, store: Path, make_archive, open_db) -> None:
    db = open_db()
    pkg = _install(db, make_archive, "foo#1.0.pkg.tar.gz", [("bin/", None), ("bin/foo", b"x")])

    result = db.remove(pkg)

    assert result.removed == 1
    assert not (root / "bin" / "foo").exists()
    # directories are left behind without force
    assert (root / "bin").is_dir()
    assert db.packages() == []
    assert db.pending() == [pkg]
    assert (store / "foo#1.0").exists()

    db.commit_removal("foo")
    assert db.pending() == []
    assert not (store / "foo#1.0").exists()


def test_remove_twice_is_harmless(root: Path, make_archive, open_db) -> None:
    db = open_db()
    pkg = _install(db, make_archive, "foo.pkg.tar.gz", [("bin/foo", b"x"), ("bin/bar", b"y")])
    db.remove(pkg)
    assert not (root / "bin" / "foo").exists()

    result = db.remove(pkg)

    assert result.removed == 0
    assert result.missing == 2
    assert db.pending() == [pkg]


def test_interrupted_removal_can_be_rerun(root: Path, store: Path, make_archive, open_db) -> None:
    db = open_db()
    pkg = _install(db, make_archive, "foo.pkg.tar.gz", [("bin/foo", b"x"), ("bin/bar", b"y")])
    db.remove(pkg)
    # crash before commit: the manifest is still there
    db.close()

    db = open_db()
    pkg = db.find("foo")
    assert pkg is not None
    result = db.remove(pkg)
    assert result.missing == 2
    db.commit_removal("foo")
    assert not (store / "foo").exists()


def test_commit_without_remove_is_internal_error(make_archive, open_db) -> None:
    db = open_db()
    _install(db, make_archive, "foo.pkg.tar.gz", [("bin/foo", b"x")])
    with pytest.raises(InternalError):
        db.commit_removal("foo")
    with pytest.raises(InternalError):
        db.commit_removal("nope")


def test_failed_manifest_delete_stays_pending(store: Path, make_archive, open_db) -> None:
    db = open_db()
    pkg = _install(db, make_archive, "foo.pkg.tar.gz", [("bin/foo", b"x")])
    db.remove(pkg)
    os.remove(store / "foo")

    with pytest.raises(ManifestError):
        db.commit_removal("foo")
    assert db.pending() == [pkg]


def test_reject_rules_protect_files_on_remove(root: Path, store: Path, open_db) -> None:
    write_rules(root, [r"^etc/myapp\.conf$"])
    (root / "etc").mkdir(exist_ok=True)
    (root / "etc" / "myapp.conf").write_text("admin", encoding="utf-8")
    (root / "bin").mkdir()
    (root / "bin" / "myapp").write_text("x", encoding="utf-8")
    write_manifest_file(store, "myapp", ["etc/myapp.conf", "bin/myapp"])

    db = open_db(force=True)
    result = db.uninstall("myapp")

    assert (root / "etc" / "myapp.conf").read_text(encoding="utf-8") == "admin"
    assert not (root / "bin" / "myapp").exists()
    assert result.skipped >= 1


def test_symlinks_need_force(root: Path, make_archive, open_db) -> None:
    members = [("bin/", None), ("bin/real", b"x"), ("bin/link", "real")]
    db = open_db()
    pkg = _install(db, make_archive, "foo.pkg.tar.gz", members)
    assert (root / "bin" / "link").is_symlink()

    db.remove(pkg)
    assert (root / "bin" / "link").is_symlink()
    assert not (root / "bin" / "real").exists()


def test_force_removes_symlinks_and_prunes(root: Path, make_archive, open_db) -> None:
    members = [("usr/", None), ("usr/lib/", None), ("usr/lib/libx.so.1", b"x"), ("usr/lib/libx.so", "libx.so.1")]
    db = open_db(force=True)
    pkg = _install(db, make_archive, "libx.pkg.tar.gz", members)

    result = db.remove(pkg)

    assert not os.path.lexists(root / "usr" / "lib" / "libx.so")
    assert not (root / "usr").exists()
    assert result.pruned == 2


def test_pruning_never_removes_non_empty_directories(root: Path, make_archive, open_db) -> None:
    db = open_db(force=True)
    pkg = _install(db, make_archive, "foo.pkg.tar.gz", [("opt/", None), ("opt/foo/", None), ("opt/foo/bin", b"x")])
    (root / "opt" / "foo" / "user-data").write_text("keep me", encoding="utf-8")

    db.remove(pkg)

    assert (root / "opt" / "foo" / "user-data").read_text(encoding="utf-8") == "keep me"
    assert not (root / "opt" / "foo" / "bin").exists()


def test_shared_directory_survives_until_last_owner(root: Path, store: Path, open_db) -> None:
    (root / "etc" / "shared").mkdir(parents=True)
    write_manifest_file(store, "a", ["etc/shared/"])
    write_manifest_file(store, "b", ["etc/shared/"])

    db = open_db(force=True)
    db.uninstall("a")
    assert (root / "etc" / "shared").is_dir()

    db.uninstall("b")
    assert not (root / "etc" / "shared").exists()


def test_shared_file_is_kept(root: Path, store: Path, open_db) -> None:
    (root / "etc").mkdir()
    (root / "etc" / "common.conf").write_text("x", encoding="utf-8")
    write_manifest_file(store, "a", ["etc/common.conf"])
    write_manifest_file(store, "b", ["etc/common.conf"])

    db = open_db(force=True)
    result = db.uninstall("a")

    assert result.kept == 1
    assert (root / "etc" / "common.conf").exists()
    assert db.links("etc/common.conf") == 1


def test_prune_skips_subdirectories_owned_by_others(root: Path, store: Path, open_db) -> None:
    (root / "srv" / "www").mkdir(parents=True)
    write_manifest_file(store, "a", ["srv"])
    write_manifest_file(store, "b", ["srv/www"])

    db = open_db(force=True)
    db.uninstall("a")

    assert (root / "srv" / "www").is_dir()


def test_uninstall_unknown_package(open_db) -> None:
    with pytest.raises(NotFound):
        open_db().uninstall("ghost")


def test_remove_package_not_in_db(make_archive, open_db) -> None:
    db = open_db()
    pkg = db.package_from_archive(str(make_archive("foo.pkg.tar.gz", [("bin/foo", b"x")])))
    with pytest.raises(InternalError):
        db.remove(pkg)


def test_manifest_paths_outside_root_are_ignored(tmp_path: Path, root: Path, store: Path, open_db) -> None:
    outside = tmp_path / "outside"
    outside.write_text("x", encoding="utf-8")
    write_manifest_file(store, "evil", ["../outside"])

    open_db(force=True).uninstall("evil")
    assert outside.exists()


def test_shared_file_is_kept_without_force(root: Path, store: Path, open_db) -> None:
    (root / "etc").mkdir()
    (root / "etc" / "common.conf").write_text("x", encoding="utf-8")
    write_manifest_file(store, "a", ["etc/common.conf"])
    write_manifest_file(store, "b", ["etc/common.conf"])

    result = open_db().uninstall("a")

    assert result.kept == 1
    assert result.removed == 0
    assert (root / "etc" / "common.conf").exists()
