"""
Enforces the output size budget on a successful encode.

An artifact that fits the budget is accepted as-is. An artifact that does not fit
gets exactly one more pass with a fixed, more aggressive profile (half the target
height, a lower frame rate, a coarser CRF) in the same codec family. If that pass
fails or still does not fit, the request fails with `SizeConstraintError`; an
oversized artifact is never returned.
"""

import threading
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger

from ..domain.exceptions import SizeConstraintError
from ..domain.media import EncodingTier, SizeBudget, TranscodeAttempt
from ..domain.temp_models import TempWorkspace
from ..utils.format_utils import size_in_mb, truncate_diagnostic
from .strategy import build_reencode_tier
from .transcode_service import TranscodeExecutor

REENCODE_OUTPUT_NAME = "output_compressed"


class SizeGovernor:
    def __init__(self, executor: TranscodeExecutor):
        self.executor = executor

    def enforce(
        self,
        attempt: TranscodeAttempt,
        budget: SizeBudget,
        workspace: TempWorkspace,
        cancel_event: Optional[threading.Event] = None,
        tag: str = "[VIDEO]",
    ) -> Tuple[Path, EncodingTier]:
        """
        Accepts the first-pass artifact or replaces it with one re-encode.

        Args:
            attempt: The successful first-pass attempt.
            budget: The request's size budget.
            workspace: Where the re-encode output is written.
            cancel_event: Propagated to the re-encode.
            tag: Log prefix for the media kind.

        Returns:
            The accepted artifact's path and the tier that produced it.

        Raises:
            SizeConstraintError: If the artifact cannot be brought within budget.
        """
        if attempt.output_path is None or attempt.output_size is None:
            raise SizeConstraintError("No encoded artifact to check against the size budget.")

        limit = budget.max_output_bytes
        if budget.fits(attempt.output_size):
            logger.debug(
                f"{tag} Output {size_in_mb(attempt.output_size)} is within {size_in_mb(limit)}, accepted."
            )
            return attempt.output_path, attempt.tier

        logger.info(
            f"{tag} Output {size_in_mb(attempt.output_size)} exceeds {size_in_mb(limit)}, "
            f"re-encoding with higher compression..."
        )
        reencode_tier = build_reencode_tier(attempt.tier, attempt.quality)
        second = self.executor.run_tier(
            reencode_tier,
            reencode_tier.quality,
            attempt.output_path,
            workspace,
            output_name=REENCODE_OUTPUT_NAME,
            cancel_event=cancel_event,
            tag=tag,
        )

        if not second.succeeded:
            if second.timed_out:
                reason = f"re-encoding timed out after {self.executor.config.attempt_timeout:.0f} seconds"
            else:
                reason = (
                    f"re-encoding failed (rc={second.exit_status}): "
                    f"{truncate_diagnostic(second.diagnostic, 200)}"
                )
            logger.error(f"{tag} Output exceeds {size_in_mb(limit)} and {reason}")
            raise SizeConstraintError(
                f"Output {size_in_mb(attempt.output_size)} exceeds {size_in_mb(limit)} and {reason}"
            )

        logger.info(
            f"{tag} Re-encoded: {size_in_mb(attempt.output_size)} -> {size_in_mb(second.output_size)}"
        )
        if not budget.fits(second.output_size):
            logger.warning(
                f"{tag} Even compressed version exceeds {size_in_mb(limit)} "
                f"({size_in_mb(second.output_size)}), skipping..."
            )
            raise SizeConstraintError(
                f"Even the re-encoded output ({size_in_mb(second.output_size)}) exceeds {size_in_mb(limit)}"
            )

        attempt.output_path.unlink(missing_ok=True)
        return second.output_path, reencode_tier
