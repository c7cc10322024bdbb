"""
Defines custom exception types for the Inline Transcoder application.

Each stage of the conversion pipeline raises its own exception type so that the
pipeline boundary can normalize any failure into a tagged result without
inspecting error messages. None of these exceptions is meant to reach the caller
of `MediaPipeline.process`; they are caught there and turned into a failed
`TranscodeResult`.

All custom exceptions inherit from the base `TranscoderException`.
"""


class TranscoderException(Exception):
    """Base class for all custom exceptions in the Inline Transcoder application."""

    pass


class DownloadError(TranscoderException):
    """
    Raised when the source media cannot be fetched.

    Covers network failures, non-success HTTP status codes, the download deadline
    expiring, and the download exceeding its size ceiling. No encoding is attempted
    after this error.
    """

    pass


class ValidationError(TranscoderException):
    """
    Raised when the downloaded bytes are corrupt or unreadable.

    Triggered by inputs below the minimum size threshold, or by an ffprobe run that
    fails outright. Inputs that merely look like a different media kind only produce
    a warning.
    """

    pass


class UnsupportedInputError(TranscoderException):
    """
    Raised when conversion is not possible in the current environment.

    For example, conversion is disabled by configuration, the FFmpeg executables
    cannot be found, or the attachment's MIME type is not a supported media type.
    """

    pass


class EncodingError(TranscoderException):
    """
    Raised when every tier of the strategy table failed.

    Each tier either exited non-zero, timed out, or reported success without
    producing a usable output file.
    """

    pass


class SizeConstraintError(TranscoderException):
    """
    Raised when an encode succeeded but its output cannot fit the size budget.

    This happens after the single permitted re-encode pass still exceeds the budget,
    or when that re-encode itself fails to run.
    """

    pass


class ConversionCancelledError(TranscoderException):
    """Raised when the caller abandons a conversion that is still in progress."""

    pass
