"""
This package contains the conversion pipeline for the Inline Transcoder.

A pipeline orchestrates one conversion from start to finish: it downloads the
attachment, validates it, runs the encoder tiers, enforces the size budget,
packages the result and guarantees that the temporary workspace is removed.
"""

from .media_pipeline import MediaPipeline

__all__ = ["MediaPipeline"]
