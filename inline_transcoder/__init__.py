"""
Inline Transcoder: converts remote videos and animated images into compact,
size-bounded artifacts that can be sent inline to a downstream consumer.

The package is organized in layers:

- `config`: the immutable `TranscodeConfig` and static encoder settings.
- `domain`: value objects, the per-request workspace and the exception types.
- `services`: one service per conversion stage (fetch, probe, encode, size
  governance, packaging) plus the persistent error log.
- `pipeline`: `MediaPipeline`, which wires the services together.
- `utils`: the process runner, the FFmpeg toolchain lookup and formatting helpers.

Typical use:

    from inline_transcoder.config import load_config
    from inline_transcoder.pipeline import MediaPipeline

    pipeline = MediaPipeline(load_config())
    result = pipeline.process_attachment("https://example.com/cat.gif", "image/gif")
    if result.ok:
        envelope = result.media.to_dict()
"""

__version__ = "1.0.0"
