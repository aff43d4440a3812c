"""
Runtime options for install/remove.

Options come from (lowest to highest precedence): built-in defaults, the
optional YAML file at <root>/etc/pkgtools/pkgtools.yml, command line flags.

    # etc/pkgtools/pkgtools.yml
    force: false
    verbose: true
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import PkgError
from .paths import OPTIONS_PATH


def default_root() -> str:
    return os.environ.get("PKGTOOLS_ROOT", "/")


@dataclass(frozen=True)
class Options:
    # skip collision checks, remove links and prune empty directories
    force: bool = False
    # per-file progress at INFO instead of DEBUG
    verbose: bool = False

    @staticmethod
    def from_mapping(obj: Any) -> "Options":
        if obj is None:
            return Options()
        if not isinstance(obj, dict):
            raise ValueError("options file must contain a mapping")
        known = {f.name for f in fields(Options)}
        unknown = sorted(set(obj) - known)
        if unknown:
            raise ValueError(f"unknown option(s): {', '.join(map(str, unknown))}")
        values = {}
        for key, value in obj.items():
            if not isinstance(value, bool):
                raise ValueError(f"option {key!r} must be true or false, got {value!r}")
            values[key] = value
        return Options(**values)

    def merged(self, **overrides: Optional[bool]) -> "Options":
        """Return a copy where every override that is not None wins."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


def load_options(root: str, path: Optional[str] = None) -> Options:
    """
    Read options for the install root `root`.

    A missing file means defaults. An explicit `path` must exist.
    """
    if path is not None:
        opt_path = Path(path)
        if not opt_path.exists():
            raise PkgError(f"options file not found: {opt_path}")
    else:
        opt_path = Path(root) / OPTIONS_PATH
        if not opt_path.exists():
            return Options()

    try:
        data = yaml.safe_load(opt_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise PkgError(f"{opt_path}: invalid YAML: {e}") from e
    except OSError as e:
        raise PkgError(f"{opt_path}: {e.strerror or e}") from e

    try:
        return Options.from_mapping(data)
    except ValueError as e:
        raise PkgError(f"{opt_path}: {e}") from e
