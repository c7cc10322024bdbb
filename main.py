"""
Main entry point for the Inline Transcoder application.

This script parses command-line arguments, assembles the configuration and runs
one conversion through the media pipeline. The process exits with status 0 when
the conversion succeeded and 1 otherwise.
"""

import json
import sys
from typing import Optional, Sequence

from loguru import logger

from inline_transcoder.cli import get_args
from inline_transcoder.config import load_config
from inline_transcoder.config.common import LOGGER_FORMAT
from inline_transcoder.pipeline import MediaPipeline
from inline_transcoder.utils.format_utils import formatted_size


# Configure the logger for initial setup.
# The level is overridden once the command-line arguments are known.
logger.remove()
logger.add(sys.stderr, level="INFO", format=LOGGER_FORMAT)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Runs a single conversion from the command line.

    This function performs the following steps:
    1. Parses command-line arguments and reconfigures the logger.
    2. Builds the configuration (defaults, YAML file, environment, CLI flags).
    3. Runs the attachment through `MediaPipeline`.
    4. Writes the artifact to `--output` and reports the outcome.

    Returns:
        The process exit status.
    """
    args = get_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level, format=LOGGER_FORMAT)
    logger.debug(f"Parsed arguments: {args}")

    try:
        config = load_config(
            path=args.config,
            max_output_size_mb=args.max_size_mb,
            target_resolution=args.target_resolution,
            quality_parameter=args.crf,
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    pipeline = MediaPipeline(config)
    result = pipeline.process_attachment(args.url, args.mime_type)

    if not result.ok:
        if args.json:
            print(json.dumps({"ok": False, "error": result.error_kind, "reason": result.reason}))
        logger.error(f"Conversion failed ({result.error_kind}): {result.reason}")
        return 1

    media = result.media
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_bytes(media.raw_bytes())
        logger.info(f"Wrote {formatted_size(media.byte_size)} to {args.output}")

    if args.json:
        envelope = {k: v for k, v in media.to_dict().items() if k != "payload"}
        envelope.update({"ok": True, "byteSize": media.byte_size})
        print(json.dumps(envelope))
    else:
        print(f"{media.mime_type} {formatted_size(media.byte_size)}")

    logger.success("Inline Transcoder process finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
