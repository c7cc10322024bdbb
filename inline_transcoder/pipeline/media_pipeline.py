"""
The conversion pipeline: fetch, validate, encode, govern size, package, clean up.

`MediaPipeline` is the single entry point the rest of an application talks to.
It is built once from a `TranscodeConfig` and can then convert any number of
attachments, including concurrently from several threads. Each call to
`process` is an independent unit of work with its own temporary workspace; the
only thing shared between calls is the read-only configuration and the
semaphore that caps how many encoder processes run at once.

`process` never raises for conversion problems. Every failure is returned as a
`TranscodeResult` tagged with the exception that caused it.
"""

import concurrent.futures
import threading
import time
from pathlib import PurePosixPath
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import requests
from loguru import logger

from ..config.common import TranscodeConfig
from ..config.video import (
    DEFAULT_ANIMATED_IMAGE_MIME_TYPE,
    DEFAULT_VIDEO_MIME_TYPE,
    INPUT_EXTENSIONS,
    VIDEO_EXTENSIONS,
)
from ..domain.exceptions import EncodingError, TranscoderException, UnsupportedInputError
from ..domain.media import (
    FetchedMedia,
    InlineMedia,
    MediaKind,
    MediaRequest,
    SizeBudget,
    TranscodeResult,
    is_supported_mime_type,
)
from ..domain.temp_models import TempWorkspace
from ..services.fetch_service import MediaFetcher
from ..services.logging_service import ErrorLog
from ..services.packaging_service import package
from ..services.probe_service import MediaProber
from ..services.size_governor import SizeGovernor
from ..services.strategy import build_strategy_table
from ..services.transcode_service import TranscodeExecutor
from ..utils.format_utils import format_duration, formatted_size, reduction_percent, size_in_mb
from ..utils.toolchain import Modules, Toolchain

# (url, declared MIME type) pairs, as attached to one message.
Attachment = Tuple[str, Optional[str]]


class MediaPipeline:
    """
    Converts remote media attachments into inline, size-bounded artifacts.

    Attributes:
        config: The immutable configuration shared by every request.
        limiter: Bounded semaphore capping simultaneous encoder processes.
        toolchain: The resolved FFmpeg/ffprobe executables, or None when
                   conversion is unavailable.
        error_log: Persistent failure log, when `error_log_dir` is configured.
    """

    def __init__(
        self,
        config: TranscodeConfig,
        session: Optional[requests.Session] = None,
        toolchain: Optional[Toolchain] = None,
    ):
        self.config = config
        self.limiter = threading.BoundedSemaphore(config.max_concurrent_encodes)
        self.error_log: Optional[ErrorLog] = (
            ErrorLog(config.error_log_dir) if config.error_log_dir else None
        )
        self.fetcher = MediaFetcher(config, session=session)

        self.toolchain: Optional[Toolchain] = toolchain
        self._unavailable_reason: Optional[str] = None
        if not config.enabled:
            self._unavailable_reason = "Media conversion is disabled by configuration."
        elif self.toolchain is None:
            try:
                self.toolchain = Modules.resolve_toolchain(config)
            except UnsupportedInputError as e:
                self._unavailable_reason = str(e)
                logger.warning(f"Media conversion unavailable: {e}")
            else:
                if not Modules.verify_ffmpeg(self.toolchain.ffmpeg):
                    self._unavailable_reason = f"FFmpeg at '{self.toolchain.ffmpeg}' failed its version check."
                    logger.warning(f"Media conversion unavailable: {self._unavailable_reason}")

        self.prober: Optional[MediaProber] = None
        self.executor: Optional[TranscodeExecutor] = None
        self.governor: Optional[SizeGovernor] = None
        if self.toolchain is not None:
            self.prober = MediaProber(config, self.toolchain.ffprobe)
            self.executor = TranscodeExecutor(
                config, self.toolchain.ffmpeg, self.limiter, self.error_log
            )
            self.governor = SizeGovernor(self.executor)

    def is_available(self) -> bool:
        return self._unavailable_reason is None and self.toolchain is not None

    def process(
        self, request: MediaRequest, cancel_event: Optional[threading.Event] = None
    ) -> TranscodeResult:
        """
        Converts one attachment and returns its outcome.

        The temporary workspace is created only after the download and the
        minimum-size check succeed, and is always removed before this method
        returns.

        Args:
            request: The attachment to convert.
            cancel_event: When set, whichever download or encoder process is
                          outstanding is stopped and the result is a
                          `ConversionCancelledError` failure.

        Returns:
            A successful `TranscodeResult` carrying the inline envelope, or a
            failed one tagged with the error kind.
        """
        tag = request.log_tag
        started = time.monotonic()
        try:
            media = self._convert(request, cancel_event, tag)
        except TranscoderException as e:
            logger.error(f"{tag} Conversion failed ({type(e).__name__}): {e}")
            self._record_failure(request, e)
            return TranscodeResult.failure(e)
        except Exception as e:
            logger.exception(f"{tag} Unexpected error while converting {request.url[:80]}")
            error = EncodingError(f"Unexpected error during conversion: {type(e).__name__}: {e}")
            error.__cause__ = e
            self._record_failure(request, error)
            return TranscodeResult.failure(error)

        logger.success(
            f"{tag} Converted {request.url[:80]} to {media.mime_type} "
            f"({formatted_size(media.byte_size)}) in {format_duration(time.monotonic() - started)}"
        )
        return TranscodeResult.success(media)

    def process_attachment(
        self,
        url: str,
        declared_mime_type: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscodeResult:
        """Builds a `MediaRequest` for an attachment reference and processes it."""
        try:
            request = MediaRequest.from_attachment(url, declared_mime_type)
        except UnsupportedInputError as e:
            logger.warning(f"Skipping attachment {str(url)[:80]}: {e}")
            return TranscodeResult.failure(e)
        return self.process(request, cancel_event=cancel_event)

    def process_many(
        self,
        attachments: Iterable[Attachment],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[InlineMedia]:
        """
        Converts every attachment of one message.

        Attachments are processed in parallel, at most `max_concurrent_encodes` at
        a time. Failed conversions are logged and left out, so the returned list
        holds the successful envelopes in the order the attachments were given.
        """
        attachment_list: Sequence[Attachment] = list(attachments)
        if not attachment_list:
            return []

        max_workers = min(self.config.max_concurrent_encodes, len(attachment_list))
        logger.info(f"Processing {len(attachment_list)} attachment(s) with {max_workers} worker(s).")

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="transcode"
        ) as pool:
            futures = [
                pool.submit(self.process_attachment, url, mime_type, cancel_event)
                for url, mime_type in attachment_list
            ]
            results = [future.result() for future in futures]

        converted: List[InlineMedia] = []
        for (url, _), result in zip(attachment_list, results):
            if result.ok:
                converted.append(result.media)
            else:
                logger.warning(f"Skipping {url[:80]} ({result.error_kind}): {result.reason}")
        logger.info(f"Converted {len(converted)}/{len(attachment_list)} attachment(s).")
        return converted

    def _ensure_available(self):
        if not self.is_available():
            raise UnsupportedInputError(
                self._unavailable_reason or "Media conversion is not available."
            )

    def _convert(
        self, request: MediaRequest, cancel_event: Optional[threading.Event], tag: str
    ) -> InlineMedia:
        self._ensure_available()
        budget = SizeBudget.from_config(self.config)

        fetched = self.fetcher.fetch(
            request.url,
            budget.download_ceiling_bytes,
            self._fallback_mime_type(request),
            cancel_event=cancel_event,
            tag=tag,
        )
        if fetched.size > budget.large_input_bytes:
            logger.warning(
                f"{tag} Large input ({size_in_mb(fetched.size)}), conversion may take longer"
            )
        self.prober.validate_size(fetched.data, tag)

        if request.kind is MediaKind.VIDEO and budget.fits(fetched.size):
            mime_type = (
                fetched.content_type
                if is_supported_mime_type(fetched.content_type)
                else self._fallback_mime_type(request)
            )
            logger.info(
                f"{tag} Video is {size_in_mb(fetched.size)}, within {size_in_mb(budget.max_output_bytes)}; "
                f"no conversion needed"
            )
            return package(fetched.data, mime_type, self.config.min_output_bytes, tag)

        with TempWorkspace(self.config.temp_root) as workspace:
            input_path = workspace.write_input(fetched.data, self._input_extension(request, fetched))
            probe_report = self.prober.probe(input_path, request.kind, cancel_event=cancel_event, tag=tag)
            if probe_report.height:
                logger.debug(
                    f"{tag} Source is {probe_report.width}x{probe_report.height}, "
                    f"target {self.config.target_resolution}p"
                )

            table = build_strategy_table(request.kind, self.config)
            attempt = self.executor.execute(table, input_path, workspace, cancel_event=cancel_event, tag=tag)
            output_path, tier = self.governor.enforce(
                attempt, budget, workspace, cancel_event=cancel_event, tag=tag
            )
            data = output_path.read_bytes()

        logger.info(
            f"{tag} {size_in_mb(fetched.size)} -> {size_in_mb(len(data))} "
            f"({reduction_percent(fetched.size, len(data))} reduction) as {tier.mime_type}"
        )
        return package(data, tier.mime_type, self.config.min_output_bytes, tag)

    @staticmethod
    def _fallback_mime_type(request: MediaRequest) -> str:
        if request.declared_mime_type:
            return request.declared_mime_type
        if request.kind is MediaKind.ANIMATED_IMAGE:
            return DEFAULT_ANIMATED_IMAGE_MIME_TYPE
        return DEFAULT_VIDEO_MIME_TYPE

    @staticmethod
    def _input_extension(request: MediaRequest, fetched: FetchedMedia) -> str:
        if request.kind is MediaKind.ANIMATED_IMAGE:
            return "gif"
        extension = INPUT_EXTENSIONS.get(fetched.content_type)
        if extension:
            return extension
        suffix = PurePosixPath(urlparse(request.url).path).suffix.lower()
        if suffix in VIDEO_EXTENSIONS:
            return suffix.lstrip(".")
        return "mp4"

    def _record_failure(self, request: MediaRequest, error: TranscoderException):
        if self.error_log is None:
            return
        self.error_log.write(
            f"Conversion failed for: {request.url}",
            f"Kind: {request.kind.value}, declared type: {request.declared_mime_type}",
            f"Error ({type(error).__name__}): {error}",
        )
