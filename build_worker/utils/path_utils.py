"""
Path Utils
==========
Path normalisation helpers shared by the artifact publisher.

Responsibilities:
    - Normalise path separators to forward slashes
    - Convert host file paths to directory-relative storage paths
    - Walk a directory into a flat list of regular files
"""
import os


def to_forward_slashes(path: str) -> str:
    """Replace every backslash separator with a forward slash."""
    return path.replace("\\", "/")


def relative_posix_path(file_path: str, base_dir: str) -> str:
    """Path of ``file_path`` relative to ``base_dir``, always with forward slashes."""
    return to_forward_slashes(os.path.relpath(file_path, base_dir))


def join_key(prefix: str, relative_path: str) -> str:
    """
    Join a storage key prefix and a relative path with a single slash.

    >>> join_key("42", "sub/app.js")
    '42/sub/app.js'
    """
    prefix = to_forward_slashes(prefix).rstrip("/")
    relative_path = to_forward_slashes(relative_path).lstrip("/")
    return f"{prefix}/{relative_path}" if prefix else relative_path


def list_files(root_dir: str) -> list[str]:
    """
    Recursively collect every regular file under ``root_dir``.

    Directories are traversed, never returned. Order follows ``os.walk``
    and carries no meaning; only completeness matters.
    """
    files: list[str] = []
    for dirpath, _dirnames, filenames in os.walk(root_dir):
        for name in filenames:
            full_path = os.path.abspath(os.path.join(dirpath, name))
            if os.path.isfile(full_path):
                files.append(full_path)
    return files
