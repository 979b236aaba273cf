"""
Conversion between OS native paths and the canonical path form.

Canonical paths use ``/`` separators, a single lowercase drive segment for
drive-letter filesystems (``c:\\Users`` becomes ``/c/Users``) and carry no
trailing slash except for the root ``/``.
"""

import os
import re
from typing import List, Optional

from .exceptions import InvalidPathError

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def is_windows_platform() -> bool:
    return os.name == "nt"


def _is_ascii_letter(ch: str) -> bool:
    return ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def normalize_drive_letter(path: str) -> str:
    """
    Lowercase a leading ``/X`` drive segment.
    
    ``/C`` and ``/C/dir`` become ``/c`` and ``/c/dir``; ``/TW/dir`` is not a
    drive segment and is returned unchanged.
    """
    if len(path) >= 2 and path[0] == "/" and _is_ascii_letter(path[1]) and path[1].isupper():
        if len(path) == 2 or path[2] == "/":
            return "/" + path[1].lower() + path[2:]
    return path


def normalize(native_path: str) -> str:
    """
    Convert a native absolute path to canonical form.
    
    Args:
        native_path: Windows or POSIX style path
        
    Returns:
        The canonical path
        
    Raises:
        InvalidPathError: If a drive-letter path is not absolute (``c:dir``)
    """
    if native_path is None:
        raise InvalidPathError("Path must not be None")

    result = native_path.replace("\\", "/")

    if _DRIVE_PREFIX.match(result):
        result = "/" + result[0].lower() + result[2:]
        if len(result) > 2 and result[2] != "/":
            raise InvalidPathError(f"Drive relative paths are not supported: {native_path!r}")

    result = normalize_drive_letter(result)

    if len(result) > 1 and result.endswith("/"):
        result = result.rstrip("/") or "/"

    return result


def denormalize(canonical_path: str, is_windows: Optional[bool] = None) -> str:
    """
    Convert a canonical path back to a native path.
    
    Args:
        canonical_path: Path in canonical form
        is_windows: Target platform; defaults to the running platform
        
    Returns:
        The native path (unchanged on POSIX targets)
        
    Raises:
        InvalidPathError: If a Windows target is requested and the path has no drive segment
    """
    if is_windows is None:
        is_windows = is_windows_platform()
    if not is_windows:
        return canonical_path

    if not canonical_path.startswith("/"):
        raise InvalidPathError(f"Canonical path must start with '/': {canonical_path!r}")
    if len(canonical_path) < 2:
        raise InvalidPathError(f"Canonical path has no drive segment: {canonical_path!r}")
    if not _is_ascii_letter(canonical_path[1]):
        raise InvalidPathError(f"Invalid drive letter in {canonical_path!r}")
    if len(canonical_path) > 2 and canonical_path[2] != "/":
        raise InvalidPathError(f"Drive segment must be a single letter: {canonical_path!r}")

    letter = canonical_path[1]
    rest = canonical_path[2:].replace("/", "\\")
    return f"{letter}:{rest}" if rest else f"{letter}:\\"


def to_project_relative(path: str, root: str) -> Optional[str]:
    """
    Express a canonical absolute path relative to a canonical project root.
    
    Returns ``/`` for the root itself and None when ``path`` is not under ``root``.
    """
    if root == "/":
        return path
    if path == root:
        return "/"
    if path.startswith(root + "/"):
        return path[len(root):]
    return None


def is_under(path: str, root: str) -> bool:
    """Whether a canonical path is the root or one of its descendants."""
    return to_project_relative(path, root) is not None


def split_into_component_paths(path: str) -> List[str]:
    """
    List a path and all its ancestors, deepest first, excluding the root.
    
    ``/moo/cow`` gives ``["/moo/cow", "/moo"]`` and ``/`` gives ``[]``.
    """
    result = []
    current = path
    while current and current != "/":
        result.append(current)
        current = current[:current.rfind("/")]
    return result
