"""
Utilities Package for the Inline Transcoder Application.

Modules:
    - ffmpeg_utils.py: Runs external commands from argument lists with a deadline,
      terminating the child process on timeout or cancellation.
    - format_utils.py: Formats sizes, durations and encoder diagnostics for logs.
    - toolchain.py: Locates and verifies the FFmpeg and ffprobe executables.
"""
