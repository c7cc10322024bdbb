"""
Configuration Package for the Inline Transcoder.

This package centralizes the settings for the application. `common.py` holds the
immutable `TranscodeConfig` value and its loader (defaults, 'config.user.yaml',
environment variables, explicit overrides), while `video.py` holds the static
encoder parameters used to build the strategy table.
"""

from .common import TranscodeConfig, load_config

__all__ = ["TranscodeConfig", "load_config"]
