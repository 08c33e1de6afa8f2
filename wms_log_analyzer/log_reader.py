"""
Log File Reader
Acquires the text of a single log file together with the metadata the analyzer
passes through (file name and byte size), with a small exception hierarchy for
acquisition failures.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)

EXPECTED_SUFFIXES = {".log", ".txt", ""}


class LogReadError(Exception):
    """Base exception for log acquisition errors."""

    pass


class FileAccessError(LogReadError):
    """Raised when the file cannot be accessed or read."""

    pass


@dataclass(frozen=True)
class LoadedLog:
    """Raw contents of a log file plus its passthrough metadata."""

    file_name: str
    file_size: int
    text: str


class LogFileReader:
    """
    Reads a whole log file as text.

    Undecodable bytes are replaced rather than rejected, so a log with a stray
    binary fragment still yields every readable line.
    """

    def __init__(self, file_path: Union[str, Path], encoding: str = "utf-8") -> None:
        """
        Initialize the reader with a file path.

        Args:
            file_path: Path to the log file
            encoding: Text encoding used to decode the file

        Raises:
            FileNotFoundError: If the specified file does not exist
            FileAccessError: If the path is not a regular file
        """
        self.file_path = Path(file_path)
        self.encoding = encoding
        if not self.file_path.exists():
            raise FileNotFoundError(f"Log file not found: {self.file_path}")
        if not self.file_path.is_file():
            raise FileAccessError(f"Path is not a file: {self.file_path}")
        if self.file_path.suffix.lower() not in EXPECTED_SUFFIXES:
            logger.warning(
                f"File does not have a .log or .txt extension: {self.file_path}"
            )

    def get_file_size(self) -> int:
        try:
            return self.file_path.stat().st_size
        except OSError as e:
            raise FileAccessError(f"Error reading file metadata: {e}")

    def read_text(self) -> str:
        """
        Read and decode the full file.

        Raises:
            FileAccessError: If the file cannot be read or the encoding is unknown
        """
        try:
            # newline="" keeps \r and \r\n exactly as written
            with open(
                self.file_path, encoding=self.encoding, errors="replace", newline=""
            ) as f:
                return f.read()
        except (OSError, LookupError) as e:
            raise FileAccessError(f"Error reading log file: {e}")

    def load(self) -> LoadedLog:
        text = self.read_text()
        return LoadedLog(
            file_name=self.file_path.name,
            file_size=self.get_file_size(),
            text=text,
        )

    def get_file_info(self) -> Dict[str, Any]:
        """
        Get basic information about the log file.

        Returns:
            Dict[str, Any]: file name, absolute path, size in bytes and line count

        Raises:
            FileAccessError: If the file cannot be read
        """
        text = self.read_text()
        return {
            "file_name": self.file_path.name,
            "file_path": str(self.file_path),
            "file_size": self.get_file_size(),
            "line_count": len(text.split("\n")),
        }


def read_log_file(file_path: Union[str, Path], encoding: str = "utf-8") -> LoadedLog:
    """Read a log file into a LoadedLog."""
    return LogFileReader(file_path, encoding=encoding).load()
