import contextlib
import os
import shutil
import tempfile


def ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)


def remove_if_exists(path: str | None) -> None:
    if path:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)


def make_temp_path(directory: str, prefix: str, suffix: str = "") -> str:
    """Create an empty temp file in ``directory`` and return its path.

    Temp files live beside their destination so a later rename stays on one filesystem.
    """
    os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory)
    os.close(fd)
    return path


def commit_file(temp_path: str, dest_path: str) -> bool:
    """Atomically rename ``temp_path`` into ``dest_path``.

    Returns False (and drops the temp file) when the destination already exists.
    """
    ensure_parent_dir(dest_path)
    if os.path.exists(dest_path):
        remove_if_exists(temp_path)
        return False
    os.replace(temp_path, dest_path)
    return True


def copy_if_missing(src: str, dest: str) -> bool:
    """Copy ``src`` to ``dest`` through a sibling temp file unless ``dest`` exists."""
    if os.path.exists(dest):
        return False
    ensure_parent_dir(dest)
    tmp = make_temp_path(os.path.dirname(dest), prefix=".copy-")
    try:
        shutil.copyfile(src, tmp)
        return commit_file(tmp, dest)
    finally:
        remove_if_exists(tmp)
