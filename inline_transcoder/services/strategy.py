"""
The strategy table: which encodes to try, in which order, with which settings.

Tiers are plain data (`EncodingTier`) consumed by one generic execution loop in
`transcode_service`. Animated images get two tiers, VP9/WebM first for its
better compression and H.264/MP4 as the broadly compatible fallback. Videos that
only need shrinking get a single H.264 tier. The size governor's re-encode
profile is derived from whichever tier succeeded.

Encoder invocations are built as argument lists with ffmpeg-python, so every
path and filter expression travels as a single argument and is never parsed by
a shell.
"""

from pathlib import Path
from typing import List, Optional, Tuple

import ffmpeg

from ..config.common import TranscodeConfig
from ..config.video import (
    ANIMATED_IMAGE_CRF_OFFSET,
    CONTAINER_MIME_TYPES,
    CRF_ESCALATION_STEP,
    FALLBACK_CRF_CEILING,
    H264_ANIMATED_ARGS,
    H264_ENCODER,
    H264_VIDEO_ARGS,
    MAX_CRF,
    MIN_REENCODE_RESOLUTION,
    PRIMARY_CRF_CEILING,
    PRIMARY_MAX_FPS,
    REENCODE_CRF,
    REENCODE_MAX_FPS,
    REENCODE_RESOLUTION_DIVISOR,
    VP9_ENCODER,
    VP9_PRIMARY_ARGS,
    VP9_REENCODE_ARGS,
)
from ..domain.media import EncodingTier, MediaKind


def build_scale_filter(target_resolution: int, flags: Optional[str] = None) -> str:
    """
    Builds a scale filter that only ever downsizes.

    Inputs at least `target_resolution` pixels tall are scaled to that height with
    an even, aspect-preserving width. Shorter inputs keep their original size.
    """
    target = int(target_resolution)
    expression = f"scale='if(gte(ih,{target}),-2,iw)':'if(gte(ih,{target}),{target},ih)'"
    if flags:
        expression += f":flags={flags}"
    return expression


def build_filter_chain(tier: EncodingTier) -> str:
    return f"{build_scale_filter(tier.target_resolution, tier.scale_flags)},fps={tier.max_fps}"


def _as_args(options: dict) -> Tuple[Tuple[str, object], ...]:
    return tuple(options.items())


def build_strategy_table(kind: MediaKind, config: TranscodeConfig) -> Tuple[EncodingTier, ...]:
    """
    Returns the ordered tiers for a media kind.

    CRF never decreases from one tier to the next.
    """
    base_crf = config.quality_parameter
    resolution = config.target_resolution

    if kind is MediaKind.ANIMATED_IMAGE:
        primary_crf = min(base_crf + ANIMATED_IMAGE_CRF_OFFSET, PRIMARY_CRF_CEILING)
        fallback_crf = min(primary_crf + CRF_ESCALATION_STEP, FALLBACK_CRF_CEILING)
        return (
            EncodingTier(
                ordinal=0,
                codec=VP9_ENCODER,
                quality=primary_crf,
                target_resolution=resolution,
                container="webm",
                mime_type=CONTAINER_MIME_TYPES["webm"],
                max_fps=PRIMARY_MAX_FPS,
                quality_ceiling=PRIMARY_CRF_CEILING,
                scale_flags="lanczos",
                extra_args=_as_args(VP9_PRIMARY_ARGS),
            ),
            EncodingTier(
                ordinal=1,
                codec=H264_ENCODER,
                quality=max(fallback_crf, primary_crf),
                target_resolution=resolution,
                container="mp4",
                mime_type=CONTAINER_MIME_TYPES["mp4"],
                max_fps=PRIMARY_MAX_FPS,
                quality_ceiling=FALLBACK_CRF_CEILING,
                scale_flags="lanczos",
                extra_args=_as_args(H264_ANIMATED_ARGS),
            ),
        )

    return (
        EncodingTier(
            ordinal=0,
            codec=H264_ENCODER,
            quality=base_crf,
            target_resolution=resolution,
            container="mp4",
            mime_type=CONTAINER_MIME_TYPES["mp4"],
            max_fps=PRIMARY_MAX_FPS,
            quality_ceiling=max(base_crf, FALLBACK_CRF_CEILING),
            extra_args=_as_args(H264_VIDEO_ARGS),
        ),
    )


def next_quality(previous_quality: int, next_tier: EncodingTier) -> int:
    """
    CRF for the tier after a failed one.

    Escalates by `CRF_ESCALATION_STEP` up to the next tier's ceiling, never
    below the next tier's own CRF and never below the previous value.
    """
    escalated = min(previous_quality + CRF_ESCALATION_STEP, next_tier.quality_ceiling)
    return max(previous_quality, next_tier.quality, escalated)


def build_reencode_tier(tier: EncodingTier, quality_used: int) -> EncodingTier:
    """
    The fixed, more aggressive profile for the size-governed second pass.

    Same codec family as `tier`, half the target height, a lower frame-rate cap
    and a coarser CRF (never finer than the CRF the first pass used).
    """
    resolution = max(tier.target_resolution // REENCODE_RESOLUTION_DIVISOR, MIN_REENCODE_RESOLUTION)
    quality = min(max(REENCODE_CRF.get(tier.codec, quality_used), quality_used), MAX_CRF)
    extra_args = _as_args(VP9_REENCODE_ARGS) if tier.codec == VP9_ENCODER else tier.extra_args
    return EncodingTier(
        ordinal=tier.ordinal,
        codec=tier.codec,
        quality=quality,
        target_resolution=resolution,
        container=tier.container,
        mime_type=tier.mime_type,
        max_fps=REENCODE_MAX_FPS,
        quality_ceiling=max(quality, tier.quality_ceiling),
        scale_flags=tier.scale_flags,
        extra_args=extra_args,
        label=f"re-encode ({tier.codec}/{tier.container})",
    )


def build_encode_command(
    ffmpeg_path: str,
    tier: EncodingTier,
    quality: int,
    input_path: Path,
    output_path: Path,
) -> List[str]:
    """Compiles the encoder argument list for one tier."""
    options = {"c:v": tier.codec, "crf": quality, "vf": build_filter_chain(tier)}
    options.update(tier.output_options())
    stream = (
        ffmpeg.input(str(input_path))
        .output(str(output_path), **options)
        .global_args("-hide_banner", "-loglevel", "error")
        .overwrite_output()
    )
    return stream.compile(cmd=ffmpeg_path)
