"""
Command-Line Interface (CLI) setup for the Inline Transcoder.

This module uses Python's `argparse` to define and parse the command-line
arguments that control a single conversion run.
"""
import argparse
from pathlib import Path
from typing import Optional, Sequence


def get_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Parses command-line arguments for the Inline Transcoder.

    Settings given here take precedence over 'config.user.yaml' and the
    environment. Options that are not given stay None so that the lower layers
    of the configuration apply.

    Args:
        argv: Arguments to parse. Defaults to `sys.argv[1:]`.

    Returns:
        argparse.Namespace: An object containing the parsed command-line
                            arguments as attributes.
    """
    parser = argparse.ArgumentParser(
        description="Convert a remote video or animated image into a size-bounded inline artifact."
    )
    parser.add_argument("url", help="http(s) URL of the media to convert.")
    parser.add_argument(
        "--mime-type", type=str, default=None,
        help="Declared MIME type of the media (e.g. image/gif). Inferred from the URL if omitted."
    )
    parser.add_argument(
        "--output", type=Path, default=None,
        help="Write the converted artifact to this file."
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Path to a YAML config file (defaults to 'config.user.yaml' at the project root)."
    )
    parser.add_argument(
        "--max-size-mb", type=float, default=None, help="Size budget for the final artifact, in MB."
    )
    parser.add_argument(
        "--target-resolution", type=int, default=None, help="Maximum output height in pixels."
    )
    parser.add_argument(
        "--crf", type=int, default=None, help="Base CRF for the primary encode (0-51, lower is better)."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO", choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level."
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print the result as JSON (the base64 payload is omitted)."
    )

    args = parser.parse_args(argv)

    if args.crf is not None and not 0 <= args.crf <= 51:
        parser.error(f"--crf must be between 0 and 51, got {args.crf}.")
    if args.output is not None and args.output.is_dir():
        parser.error(f"--output '{args.output}' is a directory, expected a file path.")

    return args
