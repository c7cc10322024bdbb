"""
Common configuration settings used throughout the application.

This module defines the immutable `TranscodeConfig` value that is passed into the
pipeline entry point and threaded through every component, together with the
logic that assembles it. Values are layered in a fixed order: built-in defaults,
then the user's 'config.user.yaml' file, then environment variables, and finally
explicit keyword overrides. Once built, the configuration is read-only for the
lifetime of every request that uses it.
"""
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from loguru import logger

# --- User-Defined Configuration File ---
# The YAML file may contain a 'transcode' section with any `TranscodeConfig`
# field and a 'paths' section locating the FFmpeg executables.

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
USER_CONFIG_PATH = PROJECT_ROOT / "config.user.yaml"


# --- Logging Configuration ---
# The format string for the Loguru logger.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{thread.name} - <level>{message}</level>"
)

# --- Workspace and Logs ---
TEMP_DIR_PREFIX = "inline-media-"
ERROR_LOG_FILENAME = "error.txt"

# Size above which a download is worth a warning, as a multiple of the output budget.
LARGE_INPUT_MULTIPLIER = 2

# How long a timed-out child gets to exit after SIGTERM before it is killed.
PROCESS_KILL_GRACE_SECONDS = 5.0

# Interval at which running downloads and child processes check for cancellation.
CANCEL_POLL_INTERVAL_SECONDS = 0.25

BYTES_PER_MB = 1024 * 1024

# Environment variable name -> config field.
ENV_OVERRIDES = {
    "VIDEO_MAX_SIZE_MB": "max_output_size_mb",
    "VIDEO_TARGET_RESOLUTION": "target_resolution",
    "VIDEO_CRF": "quality_parameter",
    "VIDEO_DOWNLOAD_TIMEOUT_MS": "download_timeout_ms",
    "VIDEO_ATTEMPT_TIMEOUT_MS": "per_attempt_timeout_ms",
    "VIDEO_PROBE_TIMEOUT_MS": "probe_timeout_ms",
    "VIDEO_MAX_CONCURRENT_ENCODES": "max_concurrent_encodes",
    "VIDEO_CONVERSION_ENABLED": "enabled",
    "FFMPEG_PATH": "ffmpeg_path",
    "FFPROBE_PATH": "ffprobe_path",
}

_TRUE_STRINGS = {"1", "true", "yes", "on", "y"}


@dataclass(frozen=True)
class TranscodeConfig:
    """
    Immutable settings for one pipeline instance.

    Attributes:
        max_output_size_mb: Hard ceiling for the final artifact, in megabytes.
        target_resolution: Vertical pixel target for the primary encode.
        quality_parameter: Base CRF for the primary pass (lower is better quality).
        download_timeout_ms: Wall-clock deadline for the whole download.
        per_attempt_timeout_ms: Wall-clock deadline for each encoder invocation.
        probe_timeout_ms: Wall-clock deadline for the ffprobe inspection.
        download_ceiling_multiplier: Download ceiling as a multiple of the output budget.
        min_input_bytes: Inputs smaller than this are treated as corrupt.
        min_output_bytes: Encoded artifacts smaller than this are treated as corrupt.
        max_concurrent_encodes: Cap on simultaneous external encoder processes.
        enabled: When False every request fails with `UnsupportedInputError`.
        ffmpeg_path: Explicit ffmpeg executable, or None to search the PATH.
        ffprobe_path: Explicit ffprobe executable, or None to search the PATH.
        ffmpeg_dir: Directory holding both executables (from the 'paths' section).
        temp_root: Parent directory for per-request workspaces (system default if None).
        error_log_dir: If set, failures are appended to an error log in this directory.
    """

    max_output_size_mb: float = 50
    target_resolution: int = 720
    quality_parameter: int = 23
    download_timeout_ms: int = 30_000
    per_attempt_timeout_ms: int = 60_000
    probe_timeout_ms: int = 10_000
    download_ceiling_multiplier: float = 3.0
    min_input_bytes: int = 100
    min_output_bytes: int = 100
    max_concurrent_encodes: int = 2
    enabled: bool = True
    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    ffmpeg_dir: Optional[Path] = None
    temp_root: Optional[Path] = None
    error_log_dir: Optional[Path] = None

    @property
    def max_output_bytes(self) -> int:
        return int(self.max_output_size_mb * BYTES_PER_MB)

    @property
    def download_timeout(self) -> float:
        return self.download_timeout_ms / 1000

    @property
    def attempt_timeout(self) -> float:
        return self.per_attempt_timeout_ms / 1000

    @property
    def probe_timeout(self) -> float:
        return self.probe_timeout_ms / 1000

    def validate(self) -> "TranscodeConfig":
        """
        Checks that every value is within a usable range.

        Returns:
            The same configuration, to allow chaining.

        Raises:
            ValueError: If any setting is out of range.
        """
        if self.max_output_size_mb <= 0:
            raise ValueError("max_output_size_mb must be > 0.")
        if self.target_resolution <= 0:
            raise ValueError("target_resolution must be > 0.")
        if not 0 <= self.quality_parameter <= 51:
            raise ValueError("quality_parameter (CRF) must be between 0 and 51.")
        for name in ("download_timeout_ms", "per_attempt_timeout_ms", "probe_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0.")
        if self.download_ceiling_multiplier < 1:
            raise ValueError("download_ceiling_multiplier must be >= 1.")
        if self.min_input_bytes < 0 or self.min_output_bytes < 0:
            raise ValueError("Minimum byte thresholds must be >= 0.")
        if self.max_concurrent_encodes <= 0:
            raise ValueError("max_concurrent_encodes must be > 0.")
        return self


def _coerce(field_name: str, value: Any) -> Any:
    """Converts a raw YAML/env value to the type of the named config field."""
    if value is None:
        return None
    if field_name == "enabled":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_STRINGS
    if field_name in ("ffmpeg_dir", "temp_root", "error_log_dir"):
        return Path(value).expanduser()
    if field_name in ("ffmpeg_path", "ffprobe_path"):
        return str(value)
    if field_name in ("max_output_size_mb", "download_ceiling_multiplier"):
        return float(value)
    return int(value)


def _read_user_config(path: Path) -> dict:
    """
    Reads the 'transcode' and 'paths' sections from a user YAML file.

    A missing file yields an empty dict. An unreadable or malformed file is
    logged as a warning and ignored.
    """
    if not path.is_file():
        logger.debug(f"User config '{path}' not found. Using defaults and environment.")
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load or parse '{path}': {e}")
        return {}
    if not isinstance(user_config, dict):
        logger.warning(f"Ignoring '{path}': top level must be a mapping.")
        return {}

    values: dict = {}
    known = {f.name for f in fields(TranscodeConfig)}
    for key, value in (user_config.get("transcode") or {}).items():
        if key in known:
            values[key] = value
        else:
            logger.warning(f"Unknown transcode setting '{key}' in '{path}', ignoring.")

    paths_config = user_config.get("paths") or {}
    if paths_config.get("ffmpeg_dir"):
        values["ffmpeg_dir"] = paths_config["ffmpeg_dir"]
    for key in ("ffmpeg_path", "ffprobe_path", "temp_root", "error_log_dir"):
        if paths_config.get(key):
            values[key] = paths_config[key]
    return values


def _read_environment(environ: Mapping[str, str]) -> dict:
    values: dict = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        values[field_name] = raw.strip()
    return values


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> TranscodeConfig:
    """
    Builds a validated `TranscodeConfig`.

    Args:
        path: YAML file to read. Defaults to 'config.user.yaml' at the project root.
        environ: Environment mapping. Defaults to `os.environ`.
        **overrides: Explicit values that take precedence over everything else.
                     `None` values are ignored so CLI flags can be passed through as-is.

    Returns:
        The assembled configuration.

    Raises:
        ValueError: If a value cannot be converted or is out of range.
    """
    layered: dict = {}
    layered.update(_read_user_config(path or USER_CONFIG_PATH))
    layered.update(_read_environment(os.environ if environ is None else environ))
    layered.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(TranscodeConfig)}
    unknown = set(layered) - known
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    try:
        coerced = {name: _coerce(name, value) for name, value in layered.items()}
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid configuration value: {e}") from e

    config = replace(TranscodeConfig(), **coerced).validate()
    logger.debug(f"Loaded transcode configuration: {config}")
    return config
