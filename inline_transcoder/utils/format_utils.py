"""
This module contains helper functions for formatting data into human-readable strings.
They are used mainly in log messages to present file sizes, elapsed times and
encoder diagnostics consistently.
"""

from ..config.common import BYTES_PER_MB


def formatted_size(size_bytes: int) -> str:
    """
    Converts a size in bytes to a human-readable string (e.g., B, KB, MB, GB, TB).

    Args:
        size_bytes: The size in bytes.

    Returns:
        A formatted string with the appropriate unit.
        For example, 1536 becomes "1.50 KB", and 2097152 becomes "2 MB".
    """
    if size_bytes < 0:
        size_bytes = 0

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    factor = 1024.0

    if size_bytes == 0:
        return "0 B"

    for unit in units:
        if size_bytes < factor:
            if unit == "B":
                return f"{size_bytes} {unit}"
            return f"{size_bytes:.2f} {unit}".replace(".00", "")
        size_bytes /= factor

    return f"{size_bytes:.2f} {units[-1]}".replace(".00", "")


def size_in_mb(size_bytes: int) -> str:
    """Formats a byte count as megabytes with two decimals, e.g. '12.34MB'."""
    return f"{size_bytes / BYTES_PER_MB:.2f}MB"


def format_duration(seconds: float) -> str:
    """Formats elapsed seconds as '850ms' below one second and '12.3s' above."""
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    return f"{seconds:.1f}s"


def reduction_percent(original_size: int, new_size: int) -> str:
    if original_size <= 0:
        return "0.0%"
    return f"{(original_size - new_size) / original_size * 100:.1f}%"


def truncate_diagnostic(text: str, limit: int = 500) -> str:
    """Trims encoder output to its first `limit` characters for logging."""
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
