"""
This module locates and verifies the external tools the pipeline depends on,
namely the FFmpeg and ffprobe executables.
"""
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from ..config.common import TranscodeConfig
from ..domain.exceptions import UnsupportedInputError


@dataclass(frozen=True)
class Toolchain:
    ffmpeg: str
    ffprobe: str


class Modules:
    """
    Resolves the FFmpeg executables for a given configuration.

    Lookup order for each tool: the explicit path from the configuration, then
    the configured `ffmpeg_dir`, then the system PATH. A tool that cannot be
    found makes conversion unavailable.
    """

    @staticmethod
    def _exe_name(tool: str) -> str:
        return f"{tool}.exe" if sys.platform == "win32" else tool

    @staticmethod
    def resolve(tool: str, explicit_path: Optional[str], tool_dir: Optional[Path]) -> str:
        """
        Determines the executable path for one tool.

        Args:
            tool: 'ffmpeg' or 'ffprobe'.
            explicit_path: Path given directly in the configuration, if any.
            tool_dir: Directory that should contain the tool, if configured.

        Returns:
            The absolute path of the executable.

        Raises:
            UnsupportedInputError: If the tool cannot be located.
        """
        if explicit_path:
            candidate = Path(explicit_path).expanduser()
            if candidate.is_file():
                return str(candidate.resolve())
            located = shutil.which(explicit_path)
            if located:
                return located
            raise UnsupportedInputError(f"Configured {tool} binary not found at: {explicit_path}")

        exe_name = Modules._exe_name(tool)
        if tool_dir:
            configured = Path(tool_dir).expanduser() / exe_name
            if configured.is_file():
                logger.debug(f"Using {tool} from configured directory: '{configured}'")
                return str(configured.resolve())
            logger.warning(
                f"`ffmpeg_dir` is configured, but '{exe_name}' was not found there. Falling back to system PATH."
            )

        located = shutil.which(exe_name)
        if located:
            return located
        raise UnsupportedInputError(
            f"{tool} binary not found. Install FFmpeg or set its location in 'config.user.yaml'."
        )

    @staticmethod
    def resolve_toolchain(config: TranscodeConfig) -> Toolchain:
        return Toolchain(
            ffmpeg=Modules.resolve("ffmpeg", config.ffmpeg_path, config.ffmpeg_dir),
            ffprobe=Modules.resolve("ffprobe", config.ffprobe_path, config.ffmpeg_dir),
        )

    @staticmethod
    def verify_ffmpeg(ffmpeg_path: str, timeout: float = 10.0) -> bool:
        """
        Runs `ffmpeg -version` and logs the first line of its output.

        Returns:
            True if FFmpeg ran successfully, False otherwise.
        """
        try:
            result = subprocess.run(
                [ffmpeg_path, "-version"],
                check=True,
                capture_output=True,
                text=True,
                encoding="utf-8",
                timeout=timeout,
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"FFmpeg version command failed (return code {e.returncode}):\n{e.stderr}")
            return False
        except subprocess.TimeoutExpired:
            logger.error(f"FFmpeg version command timed out after {timeout}s.")
            return False
        except OSError as e:
            logger.error(f"Could not execute FFmpeg at '{ffmpeg_path}': {e}")
            return False

        version_output_lines = result.stdout.splitlines()
        first_line = version_output_lines[0] if version_output_lines else "<no output>"
        logger.info(f"FFmpeg version check successful: {first_line}")
        return True
