"""
Filesystem utilities for peerkeeper.

Helpers for the two files peerkeeper touches: template declaration files
(read-only input) and the persistent metadata cache (read at startup,
rewritten after every analysis). Writes go through a temporary file and
an atomic replace so that a crash mid-write never leaves a truncated
cache behind. All filesystem errors are normalized to
:class:`~peerkeeper.exceptions.FileOperationError`.
"""

from __future__ import annotations

import os
import json
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from peerkeeper.constants import MAX_FILE_SIZE
from peerkeeper.utils.logger import get_logger
from peerkeeper.exceptions import FileOperationError

logger = get_logger("filesystem")

PathLike = Union[str, Path]


def _validated_file(path: Path) -> Path:
    """Resolve ``path`` and make sure it is an existing regular file."""
    if not path.exists():
        raise FileOperationError(
            f"File not found: {path}",
            file_path=str(path),
            operation="read",
        )
    if not path.is_file():
        raise FileOperationError(
            f"Not a file: {path}",
            file_path=str(path),
            operation="read",
        )
    return path.resolve()


def _atomic_write(target: Path, content: str) -> None:
    """Write ``content`` to a sibling temp file, then replace ``target``."""
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Optional[Path] = None

    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(target.parent),
            delete=False,
            prefix=f".{target.name}.",
            suffix=".tmp",
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())

        temp_path.replace(target)

    except Exception as exc:
        if temp_path and temp_path.exists():
            try:
                temp_path.unlink()
                logger.debug("Cleaned up temporary file: %s", temp_path)
            except OSError as cleanup_exc:
                logger.warning(
                    "Failed to clean up temporary file %s: %s",
                    temp_path,
                    cleanup_exc,
                )

        raise FileOperationError(
            f"Atomic write failed: {exc}",
            file_path=str(target),
            operation="write",
            original_error=exc,
        ) from exc


def safe_read_file(
    file_path: PathLike,
    *,
    max_size: Optional[int] = MAX_FILE_SIZE,
    encoding: str = "utf-8",
) -> str:
    """Read a text file, refusing anything larger than ``max_size``.

    Args:
        file_path: Path to the file.
        max_size: Maximum allowed file size in bytes (``None`` disables
            the limit).
        encoding: Text encoding.

    Returns:
        File contents as a string.

    Raises:
        FileOperationError: Missing file, oversized file or read failure.
    """
    path = _validated_file(Path(file_path))
    size = path.stat().st_size

    if max_size is not None and size > max_size:
        raise FileOperationError(
            f"File too large: {size} bytes (max {max_size})",
            file_path=str(path),
            operation="read",
        )

    try:
        return path.read_text(encoding=encoding)
    except (OSError, UnicodeDecodeError) as exc:
        raise FileOperationError(
            f"Failed to read file: {exc}",
            file_path=str(path),
            operation="read",
            original_error=exc,
        ) from exc


def safe_write_file(file_path: PathLike, content: str) -> Path:
    """Atomically write ``content`` to ``file_path``.

    Parent directories are created as needed.

    Returns:
        The path that was written.
    """
    path = Path(file_path)
    _atomic_write(path, content)
    return path


def read_json_file(file_path: PathLike, *, max_size: Optional[int] = MAX_FILE_SIZE) -> Any:
    """Read and decode a JSON document.

    Raises:
        FileOperationError: The file cannot be read or is not valid JSON.
    """
    text = safe_read_file(file_path, max_size=max_size)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise FileOperationError(
            f"Invalid JSON in {Path(file_path).name}: {exc}",
            file_path=str(file_path),
            operation="parse",
            original_error=exc,
        ) from exc


def write_json_file(file_path: PathLike, data: Any) -> Path:
    """Serialize ``data`` as indented JSON and write it atomically."""
    try:
        content = json.dumps(data, indent=2, sort_keys=False)
    except (TypeError, ValueError) as exc:
        raise FileOperationError(
            f"Data is not JSON serializable: {exc}",
            file_path=str(file_path),
            operation="write",
            original_error=exc,
        ) from exc
    return safe_write_file(file_path, content + "\n")
