"""
This module defines the TranscodeExecutor, which runs the strategy table.

One generic loop walks the tiers in order. Each tier is a single FFmpeg
invocation with its own wall-clock deadline. A tier that exits non-zero, times
out, or reports success without writing a usable file is recorded as a failed
attempt, and the next tier is tried with an escalated CRF. The first successful
tier ends the loop. If every tier fails, the request fails with `EncodingError`.

All encoder processes started by any request pass through a shared counting
semaphore, which caps how many run at the same time.
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from ..config.common import TranscodeConfig
from ..domain.exceptions import EncodingError
from ..domain.media import EncodingTier, TranscodeAttempt
from ..domain.temp_models import TempWorkspace
from ..utils.ffmpeg_utils import run_cmd
from ..utils.format_utils import format_duration, formatted_size, truncate_diagnostic
from .logging_service import ErrorLog
from .strategy import build_encode_command, next_quality


class TranscodeExecutor:
    """
    Runs encoder tiers against a workspace input.

    Attributes:
        config: The pipeline configuration (per-attempt deadline).
        ffmpeg_path: The FFmpeg executable.
        limiter: Counting semaphore shared by every request of one pipeline.
        error_log: Optional persistent log for failed attempts.
    """

    def __init__(
        self,
        config: TranscodeConfig,
        ffmpeg_path: str,
        limiter: threading.Semaphore,
        error_log: Optional[ErrorLog] = None,
    ):
        self.config = config
        self.ffmpeg_path = ffmpeg_path
        self.limiter = limiter
        self.error_log = error_log

    def run_tier(
        self,
        tier: EncodingTier,
        quality: int,
        input_path: Path,
        workspace: TempWorkspace,
        output_name: str = "output",
        cancel_event: Optional[threading.Event] = None,
        tag: str = "[VIDEO]",
    ) -> TranscodeAttempt:
        """
        Runs one encoder invocation and records what happened.

        The attempt counts as successful only when FFmpeg exits 0 within its
        deadline and the output file exists and is non-empty. A failed attempt's
        partial output is deleted.
        """
        output_path = workspace.path_for(output_name, tier.container)
        cmd_list = build_encode_command(self.ffmpeg_path, tier, quality, input_path, output_path)
        attempt = TranscodeAttempt(tier=tier, quality=quality, output_path=output_path)

        logger.debug(f"{tag} Running {tier.name} (crf {quality}) into {output_path.name}")
        with self.limiter:
            attempt.started_at = datetime.now()
            outcome = run_cmd(
                cmd_list,
                timeout=self.config.attempt_timeout,
                cancel_event=cancel_event,
                show_cmd=True,
            )
            attempt.ended_at = datetime.now()

        attempt.exit_status = outcome.returncode
        attempt.timed_out = outcome.timed_out
        attempt.diagnostic = (outcome.stderr or outcome.stdout or "").strip()

        if outcome.ok and output_path.is_file():
            attempt.output_size = output_path.stat().st_size
        if attempt.succeeded:
            return attempt

        if outcome.ok:
            attempt.diagnostic = (
                attempt.diagnostic + "\nFFmpeg reported success but the output file is missing or empty."
            ).strip()
        output_path.unlink(missing_ok=True)
        attempt.output_path = None
        attempt.output_size = None
        return attempt

    def execute(
        self,
        table: Sequence[EncodingTier],
        input_path: Path,
        workspace: TempWorkspace,
        cancel_event: Optional[threading.Event] = None,
        tag: str = "[VIDEO]",
    ) -> TranscodeAttempt:
        """
        Tries each tier strictly in order and returns the first successful attempt.

        Args:
            table: The strategy table, in order.
            input_path: The downloaded input inside `workspace`.
            workspace: Where outputs are written.
            cancel_event: Propagated to every encoder invocation.
            tag: Log prefix for the media kind.

        Returns:
            The successful `TranscodeAttempt`. No further tiers run after it.

        Raises:
            EncodingError: If every tier failed.
            ConversionCancelledError: If the caller cancelled while a tier ran.
        """
        if not table:
            raise EncodingError("The strategy table is empty.")

        attempts: List[TranscodeAttempt] = []
        quality = table[0].quality
        for index, tier in enumerate(table):
            if index > 0:
                quality = next_quality(quality, tier)
            logger.info(
                f"{tag} Conversion attempt {index + 1}/{len(table)}: using {tier.codec} "
                f"(crf {quality}, max {tier.target_resolution}p)..."
            )

            attempt = self.run_tier(
                tier,
                quality,
                input_path,
                workspace,
                output_name=f"output_{tier.ordinal}",
                cancel_event=cancel_event,
                tag=tag,
            )
            attempts.append(attempt)

            if attempt.succeeded:
                logger.info(
                    f"{tag} Conversion completed in {format_duration(attempt.duration)} using {tier.codec} "
                    f"({formatted_size(attempt.output_size)})"
                )
                return attempt

            if attempt.timed_out:
                logger.error(
                    f"{tag} {tier.codec} conversion timed out after {self.config.attempt_timeout:.0f} seconds"
                )
            else:
                logger.error(
                    f"{tag} {tier.codec} conversion failed (rc={attempt.exit_status}): "
                    f"{truncate_diagnostic(attempt.diagnostic)}"
                )
            self._record_failure(attempt, input_path)

            if index + 1 < len(table):
                logger.info(f"{tag} Retrying with fallback codec {table[index + 1].codec}...")

        summary = "; ".join(a.describe() for a in attempts)
        logger.error(f"{tag} All conversion attempts failed: {summary}")
        raise EncodingError(f"All {len(attempts)} conversion attempts failed: {summary}")

    def _record_failure(self, attempt: TranscodeAttempt, input_path: Path):
        if self.error_log is None:
            return
        self.error_log.write(
            f"Encoding attempt failed for: {input_path.name}",
            f"Attempt: {attempt.describe()}",
            f"Diagnostic: {truncate_diagnostic(attempt.diagnostic, 2000)}",
        )
