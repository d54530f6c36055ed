from __future__ import annotations

import json
import pytest
from pathlib import Path
from unittest.mock import patch

from peerkeeper.utils.filesystem import (
    _atomic_write,
    _validated_file,
    read_json_file,
    safe_read_file,
    safe_write_file,
    write_json_file,
)
from peerkeeper.exceptions import FileOperationError


@pytest.fixture
def templates_file(tmp_path: Path) -> Path:
    """A small template declaration file."""
    path = tmp_path / "templates.json"
    path.write_text('[{"id": "ui", "packages": {"react": "^18.2.0"}}]', encoding="utf-8")
    return path


@pytest.mark.unit
class TestValidatedFile:
    """Tests for _validated_file path checks."""

    def test_existing_file_is_resolved(self, templates_file: Path) -> None:
        assert _validated_file(templates_file) == templates_file.resolve()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileOperationError) as exc_info:
            _validated_file(tmp_path / "missing.json")

        assert "File not found" in str(exc_info.value)
        assert exc_info.value.operation == "read"

    def test_directory_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(FileOperationError, match="Not a file"):
            _validated_file(tmp_path)


@pytest.mark.unit
class TestAtomicWrite:
    """Tests for _atomic_write."""

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        target = tmp_path / "cache" / "nested" / "package-cache.json"

        _atomic_write(target, "{}")

        assert target.read_text(encoding="utf-8") == "{}"

    def test_overwrites_existing_file(self, templates_file: Path) -> None:
        _atomic_write(templates_file, "[]")

        assert templates_file.read_text(encoding="utf-8") == "[]"

    def test_no_temp_file_left_on_failure(self, tmp_path: Path) -> None:
        """Test a failed replace removes the temporary file.

        A crash mid-write must never leave partial cache files behind.
        """
        target = tmp_path / "package-cache.json"

        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(FileOperationError) as exc_info:
                _atomic_write(target, "{}")

        assert exc_info.value.operation == "write"
        assert list(tmp_path.glob(".*.tmp")) == []
        assert not target.exists()

    def test_cleanup_failure_still_raises(self, tmp_path: Path) -> None:
        target = tmp_path / "package-cache.json"

        with patch.object(Path, "replace", side_effect=OSError("Replace failed")):
            with patch.object(Path, "unlink", side_effect=OSError("Unlink failed")):
                with pytest.raises(FileOperationError, match="Atomic write failed"):
                    _atomic_write(target, "{}")

    def test_fsync_called(self, tmp_path: Path) -> None:
        with patch("os.fsync") as mock_fsync:
            _atomic_write(tmp_path / "file.json", "{}")

        assert mock_fsync.call_count >= 1


@pytest.mark.unit
class TestSafeReadFile:
    """Tests for safe_read_file."""

    def test_reads_content(self, templates_file: Path) -> None:
        assert '"react"' in safe_read_file(templates_file)

    def test_accepts_string_path(self, templates_file: Path) -> None:
        assert safe_read_file(str(templates_file)).startswith("[")

    def test_size_limit(self, templates_file: Path) -> None:
        with pytest.raises(FileOperationError, match="File too large"):
            safe_read_file(templates_file, max_size=10)

    def test_size_limit_disabled(self, tmp_path: Path) -> None:
        path = tmp_path / "big.json"
        path.write_text("x" * 2048, encoding="utf-8")

        assert len(safe_read_file(path, max_size=None)) == 2048

    def test_decode_error(self, tmp_path: Path) -> None:
        path = tmp_path / "latin1.json"
        path.write_bytes(b"\xff\xfe\xfa")

        with pytest.raises(FileOperationError, match="Failed to read file"):
            safe_read_file(path)


@pytest.mark.unit
class TestJsonFiles:
    """Tests for read_json_file and write_json_file."""

    def test_write_then_read(self, tmp_path: Path) -> None:
        path = tmp_path / "package-cache.json"
        data = {"react@^18.2.0": {"name": "react", "version": "18.2.0"}}

        written = write_json_file(path, data)

        assert written == path
        assert path.read_text(encoding="utf-8").endswith("\n")
        assert read_json_file(path) == data

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "package-cache.json"
        path.write_text("{broken", encoding="utf-8")

        with pytest.raises(FileOperationError) as exc_info:
            read_json_file(path)

        assert exc_info.value.operation == "parse"
        assert "package-cache.json" in str(exc_info.value)

    def test_unserializable_data(self, tmp_path: Path) -> None:
        with pytest.raises(FileOperationError, match="not JSON serializable"):
            write_json_file(tmp_path / "out.json", {"bad": object()})

    def test_safe_write_file_returns_path(self, tmp_path: Path) -> None:
        path = safe_write_file(tmp_path / "out.json", json.dumps([]))

        assert path.read_text(encoding="utf-8") == "[]"
