"""Crash-safe file replacement with a one-generation backup."""
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

BACKUP_SUFFIX = ".backup"


def backup_path_for(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def write_backup(path: Path) -> Path | None:
    """Copy *path* to its backup sibling. Returns None if there is nothing to copy."""
    if not path.is_file():
        return None
    target = backup_path_for(path)
    shutil.copyfile(path, target)
    return target


def _sync_directory(directory: Path) -> None:
    # Directory fsync is unsupported on some platforms; the rename has
    # already happened either way.
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(directory, flags)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write *content* to a temp file beside *path*, fsync it, then rename over *path*."""
    directory = path.parent
    directory.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        "w",
        encoding=encoding,
        dir=directory,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        tmp_path = Path(handle.name)
        try:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        except OSError:
            handle.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    _sync_directory(directory)


def replace_with_backup(path: Path, content: str) -> None:
    """Keep the current contents of *path* as its backup, then replace it."""
    write_backup(path)
    atomic_write_text(path, content)
