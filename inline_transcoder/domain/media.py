"""
Core value objects of the conversion pipeline.

These classes describe one conversion request from the moment an attachment is
accepted until its outcome is returned: what is being converted (`MediaRequest`),
how large it may be (`SizeBudget`), how it may be encoded (`EncodingTier`), what
happened during each encoder run (`TranscodeAttempt`) and the terminal outcome
(`TranscodeResult`). Everything here is created per request and never shared.
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..config.common import LARGE_INPUT_MULTIPLIER, TranscodeConfig
from ..config.video import (
    ANIMATED_IMAGE_EXTENSIONS,
    ANIMATED_IMAGE_MIME_TYPES,
    SUPPORTED_MIME_TYPES,
)
from .exceptions import TranscoderException, UnsupportedInputError


def normalize_mime_type(mime_type: Optional[str]) -> Optional[str]:
    """Lowercases a MIME type and strips parameters such as '; charset=...'."""
    if not mime_type:
        return None
    base = mime_type.split(";", 1)[0].strip().lower()
    return base or None


def is_supported_mime_type(mime_type: Optional[str]) -> bool:
    """Checks whether a MIME type is a video format this service can convert."""
    normalized = normalize_mime_type(mime_type)
    if not normalized:
        return False
    return any(normalized.startswith(supported) for supported in SUPPORTED_MIME_TYPES)


class MediaKind(str, Enum):
    VIDEO = "video"
    ANIMATED_IMAGE = "animated-image"


@dataclass(frozen=True)
class MediaRequest:
    """
    One inbound attachment to be converted.

    Attributes:
        url: The remote location of the media.
        declared_mime_type: The MIME type reported by the sender, if any.
        kind: Whether the attachment is a video or an animated image.
    """

    url: str
    declared_mime_type: Optional[str]
    kind: MediaKind

    @classmethod
    def from_attachment(cls, url: str, declared_mime_type: Optional[str] = None) -> "MediaRequest":
        """
        Builds a request from an attachment reference, inferring its media kind.

        The kind comes from the declared MIME type when present, otherwise from the
        URL's file extension. Attachments with no usable hint are treated as video.

        Raises:
            UnsupportedInputError: If the URL is not http(s) or the declared MIME
                                   type is not a supported media type.
        """
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise UnsupportedInputError(f"Unsupported media URL: {url!r}")

        mime_type = normalize_mime_type(declared_mime_type)
        if mime_type:
            if not is_supported_mime_type(mime_type):
                raise UnsupportedInputError(f"Unsupported media type: {mime_type}")
            kind = (
                MediaKind.ANIMATED_IMAGE
                if mime_type.startswith(ANIMATED_IMAGE_MIME_TYPES)
                else MediaKind.VIDEO
            )
        else:
            extension = PurePosixPath(parsed.path).suffix.lower()
            kind = (
                MediaKind.ANIMATED_IMAGE
                if extension in ANIMATED_IMAGE_EXTENSIONS
                else MediaKind.VIDEO
            )
        return cls(url=url, declared_mime_type=mime_type, kind=kind)

    @property
    def log_tag(self) -> str:
        return "[GIF]" if self.kind is MediaKind.ANIMATED_IMAGE else "[VIDEO]"


@dataclass(frozen=True)
class SizeBudget:
    """
    Byte limits that apply to one request.

    Attributes:
        max_output_bytes: The final artifact must not exceed this size.
        download_ceiling_bytes: Downloads larger than this are rejected outright.
        large_input_bytes: Downloads above this size are logged as slow to convert.
    """

    max_output_bytes: int
    download_ceiling_bytes: int
    large_input_bytes: int

    @classmethod
    def from_config(cls, config: TranscodeConfig) -> "SizeBudget":
        max_output = config.max_output_bytes
        return cls(
            max_output_bytes=max_output,
            download_ceiling_bytes=int(max_output * config.download_ceiling_multiplier),
            large_input_bytes=max_output * LARGE_INPUT_MULTIPLIER,
        )

    def fits(self, size: int) -> bool:
        return size <= self.max_output_bytes


@dataclass(frozen=True)
class EncodingTier:
    """
    One entry of the strategy table.

    Attributes:
        ordinal: Position in the table; tiers run strictly in ascending order.
        codec: FFmpeg video encoder name (e.g. 'libvpx-vp9').
        quality: CRF for this tier.
        target_resolution: Maximum output height; smaller inputs are not upscaled.
        container: Output container and file extension (e.g. 'webm').
        mime_type: MIME type of the produced artifact.
        max_fps: Frame-rate cap applied by the filter chain.
        quality_ceiling: The coarsest CRF escalation may push this tier to.
        scale_flags: Optional scaler flags (e.g. 'lanczos').
        extra_args: Codec specific output options, as ffmpeg-python keyword arguments.
        label: Display name overriding the default 'tier N (codec/container)'.
    """

    ordinal: int
    codec: str
    quality: int
    target_resolution: int
    container: str
    mime_type: str
    max_fps: int
    quality_ceiling: int
    scale_flags: Optional[str] = None
    extra_args: Tuple[Tuple[str, Any], ...] = ()
    label: Optional[str] = None

    @property
    def name(self) -> str:
        return self.label or f"tier {self.ordinal} ({self.codec}/{self.container})"

    def output_options(self) -> Dict[str, Any]:
        return dict(self.extra_args)


@dataclass
class TranscodeAttempt:
    """Bookkeeping for one encoder invocation inside the executor loop."""

    tier: EncodingTier
    quality: int
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    exit_status: Optional[int] = None
    timed_out: bool = False
    diagnostic: str = ""
    output_path: Optional[Path] = None
    output_size: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return (
            self.exit_status == 0
            and not self.timed_out
            and self.output_size is not None
            and self.output_size > 0
        )

    @property
    def duration(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def describe(self) -> str:
        if self.timed_out:
            outcome = "timed out"
        elif self.succeeded:
            outcome = f"ok, {self.output_size} bytes"
        else:
            outcome = f"exit {self.exit_status}"
        return f"{self.tier.name} crf={self.quality}: {outcome}"


@dataclass(frozen=True)
class FetchedMedia:
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ProbeReport:
    """Basic stream metadata read by ffprobe. `warning` is set when the input looks off."""

    streams: List[dict]
    format_name: str = ""
    codec_name: str = ""
    width: int = 0
    height: int = 0
    matches_kind: bool = True
    timed_out: bool = False
    warning: Optional[str] = None


@dataclass(frozen=True)
class InlineMedia:
    """
    Inline transmission envelope: the artifact's bytes, base64 encoded, with its type tag.

    Attributes:
        data: Base64 text of the artifact.
        mime_type: MIME type of the artifact.
        byte_size: Size of the decoded artifact in bytes.
        inline: Always True; the payload travels with the request, not as a URL.
    """

    data: str
    mime_type: str
    byte_size: int
    inline: bool = True

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {"payload": self.data, "mimeType": self.mime_type, "inline": self.inline}


@dataclass(frozen=True)
class TranscodeResult:
    """
    Terminal outcome of one conversion.

    Exactly one of `media` and `error` is set. `error_kind` is the failure's tag
    (the exception class name, e.g. 'DownloadError').
    """

    media: Optional[InlineMedia] = None
    error: Optional[TranscoderException] = None

    @classmethod
    def success(cls, media: InlineMedia) -> "TranscodeResult":
        return cls(media=media)

    @classmethod
    def failure(cls, error: TranscoderException) -> "TranscodeResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.media is not None

    @property
    def error_kind(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    @property
    def reason(self) -> str:
        return str(self.error) if self.error is not None else ""
