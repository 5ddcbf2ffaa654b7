"""File system utilities."""

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger("caledger")


class FileUtils:
    """Utility class for file operations."""

    @staticmethod
    def ensure_directory(path: Path) -> None:
        """
        Ensure directory exists, create if not.

        Args:
            path: Directory path to ensure
        """
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {path}")

    @staticmethod
    def delete_directory(path: Path, ignore_errors: bool = False) -> None:
        """
        Delete directory and all contents.

        Args:
            path: Directory path to delete
            ignore_errors: Whether to ignore errors during deletion
        """
        if path.exists():
            shutil.rmtree(path, ignore_errors=ignore_errors)
            logger.info(f"Deleted directory: {path}")

    @staticmethod
    def read_file(path: Path) -> str:
        """
        Read file contents as string.

        Args:
            path: File path to read

        Returns:
            File contents as string
        """
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    @staticmethod
    def write_file_atomic(path: Path, content: str) -> None:
        """
        Replace a file's content so readers see either the old or the new version.

        The content is written to a temporary file in the same directory,
        fsynced, then renamed over the target.

        Args:
            path: File path to write
            content: Content to write
        """
        FileUtils.ensure_directory(path.parent)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"Atomically wrote file: {path}")

    @staticmethod
    def append_line(path: Path, line: str) -> None:
        """
        Append one line and fsync before returning.

        Args:
            path: File path to append to
            line: Line content without trailing newline
        """
        FileUtils.ensure_directory(path.parent)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    @staticmethod
    def read_lines(path: Path) -> list[str]:
        """
        Read non-empty lines of a file; a missing file has no lines.

        Args:
            path: File path to read

        Returns:
            List of lines without trailing newlines
        """
        if not path.exists():
            return []
        return [line for line in FileUtils.read_file(path).splitlines() if line.strip()]

    @staticmethod
    def list_directories(path: Path) -> list[Path]:
        """List the subdirectories of path, skipping hidden ones."""
        if not path.exists():
            return []
        return [p for p in path.iterdir() if p.is_dir() and not p.name.startswith(".")]
