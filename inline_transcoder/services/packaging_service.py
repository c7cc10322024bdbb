"""
Wraps a finished artifact into the inline transmission envelope.
"""

import base64

from loguru import logger

from ..domain.exceptions import EncodingError
from ..domain.media import InlineMedia
from ..utils.format_utils import formatted_size


def package(data: bytes, mime_type: str, min_output_bytes: int, tag: str = "[VIDEO]") -> InlineMedia:
    """
    Base64-encodes an artifact and tags it with its MIME type.

    The MIME type must be the one of the tier that actually produced `data`
    (for example 'video/webm' for a VP9 artifact, 'video/mp4' for H.264).

    Raises:
        EncodingError: If the artifact is smaller than `min_output_bytes`, which
                       means the encoder produced something unusable.
    """
    if len(data) < min_output_bytes:
        logger.error(f"{tag} Conversion produced an invalid file ({len(data)} bytes)")
        raise EncodingError(
            f"Conversion produced an invalid output ({len(data)} bytes, minimum {min_output_bytes})."
        )

    encoded = base64.b64encode(data).decode("ascii")
    logger.debug(f"{tag} Packaged {formatted_size(len(data))} as {mime_type} ({len(encoded)} base64 chars)")
    return InlineMedia(data=encoded, mime_type=mime_type, byte_size=len(data))
