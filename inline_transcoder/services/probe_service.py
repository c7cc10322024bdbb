"""
Best-effort validation of downloaded media.

The prober answers one question before any encoding time is spent: are these
bytes readable media at all? Near-empty payloads and inputs that ffprobe cannot
read are rejected with `ValidationError`. Anything else, including inputs that
look like a different kind of media than was declared and probes that run out of
time, only produces a warning, because misreported attachments are common and
the encoder is often able to handle them anyway.
"""

import json
import threading
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..config.common import TranscodeConfig
from ..config.video import ANIMATED_IMAGE_CODEC_NAMES
from ..domain.exceptions import ValidationError
from ..domain.media import MediaKind, ProbeReport
from ..utils.ffmpeg_utils import run_cmd
from ..utils.format_utils import truncate_diagnostic


class MediaProber:
    """
    Validates downloaded media using ffprobe's inspection mode.

    Attributes:
        config: The pipeline configuration (minimum size and probe deadline).
        ffprobe_path: The ffprobe executable to run.
    """

    def __init__(self, config: TranscodeConfig, ffprobe_path: str):
        self.config = config
        self.ffprobe_path = ffprobe_path

    def validate_size(self, data: bytes, tag: str = "[VIDEO]"):
        """
        Rejects payloads too small to be real media.

        Raises:
            ValidationError: If `data` is shorter than `min_input_bytes`.
        """
        if len(data) < self.config.min_input_bytes:
            logger.error(f"{tag} Input is too small ({len(data)} bytes), likely corrupted")
            raise ValidationError(
                f"Input is too small ({len(data)} bytes, minimum {self.config.min_input_bytes}); likely corrupted"
            )

    def build_probe_command(self, path: Path) -> List[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

    def probe(
        self,
        path: Path,
        kind: MediaKind,
        cancel_event: Optional[threading.Event] = None,
        tag: str = "[VIDEO]",
    ) -> ProbeReport:
        """
        Reads basic stream metadata from a file on disk.

        Args:
            path: The downloaded input, already written to the workspace.
            kind: The media kind the input was declared as.
            cancel_event: Propagated to the process runner.
            tag: Log prefix for the media kind.

        Returns:
            A `ProbeReport`. Its `warning` is set when the input does not look like
            the expected kind or the probe timed out.

        Raises:
            ValidationError: If ffprobe fails outright or finds no streams.
        """
        logger.info(f"{tag} Validating media format...")
        outcome = run_cmd(
            self.build_probe_command(path),
            timeout=self.config.probe_timeout,
            cancel_event=cancel_event,
        )

        if outcome.timed_out:
            warning = f"Validation timed out after {self.config.probe_timeout:.0f}s, continuing anyway"
            logger.warning(f"{tag} {warning}")
            return ProbeReport(streams=[], timed_out=True, warning=warning)

        streams, format_name = self._parse(outcome.stdout)
        if outcome.returncode != 0 and not streams:
            logger.error(
                f"{tag} Invalid media format or ffprobe cannot read file: "
                f"{truncate_diagnostic(outcome.stderr)}"
            )
            raise ValidationError(
                f"ffprobe could not read the input (rc={outcome.returncode}): "
                f"{truncate_diagnostic(outcome.stderr, 200)}"
            )
        if not streams:
            logger.error(f"{tag} No streams found in input")
            raise ValidationError("No media streams found in the input.")

        video_streams = [s for s in streams if s.get("codec_type") == "video"]
        first_video = video_streams[0] if video_streams else {}
        codec_name = str(first_video.get("codec_name", "")).lower()

        if kind is MediaKind.ANIMATED_IMAGE:
            matches = codec_name in ANIMATED_IMAGE_CODEC_NAMES
            mismatch_message = "File may not be a proper animated image, attempting conversion anyway"
        else:
            matches = bool(video_streams)
            mismatch_message = "File has no video stream, attempting conversion anyway"

        warning = None
        if matches:
            logger.info(f"{tag} Validated media format ({codec_name or format_name})")
        else:
            warning = mismatch_message
            logger.warning(f"{tag} {warning}")

        return ProbeReport(
            streams=streams,
            format_name=format_name,
            codec_name=codec_name,
            width=self._int(first_video.get("width")),
            height=self._int(first_video.get("height")),
            matches_kind=matches,
            warning=warning,
        )

    @staticmethod
    def _parse(stdout: str):
        try:
            probe = json.loads(stdout) if stdout.strip() else {}
        except json.JSONDecodeError:
            logger.debug("ffprobe produced output that is not valid JSON.")
            return [], ""
        if not isinstance(probe, dict):
            return [], ""
        streams = [s for s in probe.get("streams") or [] if isinstance(s, dict)]
        format_name = str((probe.get("format") or {}).get("format_name", ""))
        return streams, format_name

    @staticmethod
    def _int(value) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0
