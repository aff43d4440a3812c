import io
import tarfile
from pathlib import Path
from typing import Iterable, Tuple, Union

# bytes -> regular file, None -> directory, str -> symlink target
Member = Tuple[str, Union[bytes, None, str]]


def write_archive(path: Path, members: Iterable[Member]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = "w" if path.suffix == ".tar" else "w:gz"
    with tarfile.open(path, mode) as tf:
        for name, data in members:
            info = tarfile.TarInfo(name)
            info.mtime = 1_600_000_000
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tf.addfile(info)
            elif isinstance(data, str):
                info.type = tarfile.SYMTYPE
                info.linkname = data
                tf.addfile(info)
            else:
                info.size = len(data)
                info.mode = 0o644
                tf.addfile(info, io.BytesIO(data))
    return path


def write_manifest_file(store: Path, filename: str, lines: Iterable[str]) -> Path:
    path = store / filename
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


def write_rules(root: Path, lines: Iterable[str]) -> Path:
    path = root / "etc" / "pkgtools" / "reject.conf"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path
