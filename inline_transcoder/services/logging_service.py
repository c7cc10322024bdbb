"""
This module provides a persistent error log for failed conversions.

Console logging goes through loguru everywhere in the application. In addition,
when `error_log_dir` is configured, failed encoder attempts and failed requests
are appended to a human-readable text file so they can be inspected after the
process has moved on. Requests run concurrently, so appends are serialized with
a lock.
"""

import threading
from datetime import datetime
from pathlib import Path

from loguru import logger

from ..config.common import ERROR_LOG_FILENAME


class ErrorLog:
    """
    Appends error reports to a plain text file.

    Each call to `write` adds one entry: a timestamp, the given message lines and
    a separator line. If the file cannot be written, the messages are sent to the
    application logger instead so that they are not lost.
    """

    # A decorative separator line used to distinguish entries.
    linesep_marker: str = "=" * 50
    _lock = threading.Lock()

    def __init__(self, error_log_dir: Path, filename: str = ERROR_LOG_FILENAME):
        """
        Args:
            error_log_dir: The directory where the error log file will be stored.
                           It is created if it does not exist.
            filename: The name of the error log file (defaults to "error.txt").
        """
        self.log_dir: Path = Path(error_log_dir).expanduser().resolve()
        self.log_file_path: Path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Writes one or more error message lines as a single entry.

        Args:
            *error_messages: The lines that make up the entry.
        """
        if not error_messages:
            return

        content_to_write = (
            f"[{datetime.now().isoformat(timespec='seconds')}]\n"
            + "\n".join(error_messages)
            + "\n"
            + self.linesep_marker
            + "\n"
        )

        try:
            with self._lock:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                with self.log_file_path.open("a", encoding="utf-8") as f:
                    f.write(content_to_write)
        except OSError as e:
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
            logger.error("Original error messages attempted to log:")
            for msg in error_messages:
                logger.error(f"  - {msg}")
