"""
End-to-end pipeline tests with the network and FFmpeg replaced at their seams.

Every test also checks that no workspace directory survives the request.
"""

import threading
import time
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
import requests

from inline_transcoder.domain.exceptions import UnsupportedInputError
from inline_transcoder.domain.media import MediaRequest
from inline_transcoder.pipeline import MediaPipeline
from inline_transcoder.utils.ffmpeg_utils import ProcessOutcome
from inline_transcoder.utils.toolchain import Toolchain

PROBE_RUN_CMD = "inline_transcoder.services.probe_service.run_cmd"
ENCODE_RUN_CMD = "inline_transcoder.services.transcode_service.run_cmd"
RESOLVE_TOOLCHAIN = "inline_transcoder.pipeline.media_pipeline.Modules.resolve_toolchain"
VERIFY_FFMPEG = "inline_transcoder.pipeline.media_pipeline.Modules.verify_ffmpeg"

GIF_URL = "https://cdn.example.com/reaction.gif"
VIDEO_URL = "https://cdn.example.com/clip.mp4"


def gif_bytes(size):
    return b"GIF89a" + b"\0" * (size - 6)


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def pipeline_for(session, toolchain):
    def _build(config):
        return MediaPipeline(config, session=session, toolchain=toolchain)

    return _build


@pytest.fixture
def probe(probe_outcome_factory):
    with patch(PROBE_RUN_CMD, return_value=probe_outcome_factory("gif")) as mock_probe:
        yield mock_probe


def serve(session, response_factory, data, content_type="image/gif"):
    session.get.return_value = response_factory(
        chunks=[data[i:i + 4096] for i in range(0, len(data), 4096)],
        headers={"Content-Type": content_type, "Content-Length": str(len(data))},
    )


def test_scenario_a_primary_tier_within_budget(
    small_budget_config, session, pipeline_for, probe, response_factory, fake_encoder_factory, leftover_workspaces
):
    serve(session, response_factory, gif_bytes(4000))
    encoder = fake_encoder_factory([(0, 5000, False)])

    with patch(ENCODE_RUN_CMD, side_effect=encoder):
        result = pipeline_for(small_budget_config).process_attachment(GIF_URL, "image/gif")

    assert result.ok, result.reason
    assert result.media.mime_type == "video/webm"
    assert result.media.byte_size == 5000
    assert len(result.media.raw_bytes()) == 5000
    assert len(encoder.calls) == 1
    probe.assert_called_once()
    assert leftover_workspaces(small_budget_config.temp_root) == []


def test_scenario_b_oversized_output_is_reencoded(
    small_budget_config, session, pipeline_for, probe, response_factory, fake_encoder_factory, leftover_workspaces
):
    serve(session, response_factory, gif_bytes(25000))
    encoder = fake_encoder_factory([(0, 12000, False), (0, 8000, False)])

    with patch(ENCODE_RUN_CMD, side_effect=encoder):
        result = pipeline_for(small_budget_config).process_attachment(GIF_URL, "image/gif")

    assert result.ok, result.reason
    assert result.media.mime_type == "video/webm"
    assert result.media.byte_size == 8000
    assert len(encoder.calls) == 2
    second = encoder.calls[1]
    assert second[second.index("-vf") + 1].endswith("fps=24")
    assert leftover_workspaces(small_budget_config.temp_root) == []


def test_scenario_b_reencode_still_too_large(
    small_budget_config, session, pipeline_for, probe, response_factory, fake_encoder_factory, leftover_workspaces
):
    serve(session, response_factory, gif_bytes(25000))
    encoder = fake_encoder_factory([(0, 12000, False), (0, 11000, False)])

    with patch(ENCODE_RUN_CMD, side_effect=encoder):
        result = pipeline_for(small_budget_config).process_attachment(GIF_URL, "image/gif")

    assert not result.ok
    assert result.error_kind == "SizeConstraintError"
    assert len(encoder.calls) == 2
    assert leftover_workspaces(small_budget_config.temp_root) == []


def test_scenario_c_download_timeout_creates_no_workspace(
    config, session, pipeline_for, response_factory
):
    def stalled_stream():
        yield b"GIF89a" + b"\0" * 200
        time.sleep(1.0)
        yield b"\0" * 200

    response = response_factory(headers={"Content-Type": "image/gif"})
    response.iter_content.return_value = stalled_stream()
    session.get.return_value = response
    config = replace(config, download_timeout_ms=300)

    started = time.monotonic()
    with patch(PROBE_RUN_CMD) as mock_probe, patch(ENCODE_RUN_CMD) as mock_encode:
        result = pipeline_for(config).process_attachment(GIF_URL, "image/gif")

    assert result.error_kind == "DownloadError"
    assert "timed out" in result.reason
    assert time.monotonic() - started < 3
    mock_probe.assert_not_called()
    mock_encode.assert_not_called()
    assert not config.temp_root.exists()


def test_scenario_c_trickling_server_times_out(config, toolchain, slow_http_server, direct_session):
    url = slow_http_server("trickle")
    config = replace(config, download_timeout_ms=1000)
    pipeline = MediaPipeline(config, session=direct_session, toolchain=toolchain)

    started = time.monotonic()
    with patch(PROBE_RUN_CMD) as mock_probe, patch(ENCODE_RUN_CMD) as mock_encode:
        result = pipeline.process_attachment(url, "image/gif")

    assert result.error_kind == "DownloadError"
    assert "timed out" in result.reason
    assert time.monotonic() - started < 3
    mock_probe.assert_not_called()
    mock_encode.assert_not_called()
    assert not config.temp_root.exists()


def test_download_connection_timeout(config, session, pipeline_for):
    session.get.side_effect = requests.Timeout("connect timed out")

    with patch(ENCODE_RUN_CMD) as mock_encode:
        result = pipeline_for(config).process_attachment(GIF_URL, "image/gif")

    assert result.error_kind == "DownloadError"
    mock_encode.assert_not_called()
    assert not config.temp_root.exists()


def test_scenario_d_tiny_input_is_rejected_before_encoding(config, session, pipeline_for, response_factory):
    serve(session, response_factory, b"GIF89a\0\0\0\0")

    with patch(PROBE_RUN_CMD) as mock_probe, patch(ENCODE_RUN_CMD) as mock_encode:
        result = pipeline_for(config).process_attachment(GIF_URL, "image/gif")

    assert result.error_kind == "ValidationError"
    mock_probe.assert_not_called()
    mock_encode.assert_not_called()
    assert not config.temp_root.exists()


def test_download_over_ceiling(small_budget_config, session, pipeline_for, response_factory):
    serve(session, response_factory, gif_bytes(40000))

    with patch(ENCODE_RUN_CMD) as mock_encode:
        result = pipeline_for(small_budget_config).process_attachment(GIF_URL, "image/gif")

    assert result.error_kind == "DownloadError"
    assert "too large" in result.reason
    mock_encode.assert_not_called()


def test_vp9_failure_falls_back_to_h264(
    config, session, pipeline_for, probe, response_factory, fake_encoder_factory, leftover_workspaces
):
    serve(session, response_factory, gif_bytes(3000))
    encoder = fake_encoder_factory([(1, 0, False), (0, 2000, False)])

    with patch(ENCODE_RUN_CMD, side_effect=encoder):
        result = pipeline_for(config).process_attachment(GIF_URL)

    assert result.ok
    assert result.media.mime_type == "video/mp4"
    assert leftover_workspaces(config.temp_root) == []


def test_all_tiers_failing(
    config, session, pipeline_for, probe, response_factory, fake_encoder_factory, leftover_workspaces
):
    serve(session, response_factory, gif_bytes(3000))
    encoder = fake_encoder_factory([(1, 0, False), (-15, 0, True)])

    with patch(ENCODE_RUN_CMD, side_effect=encoder):
        result = pipeline_for(config).process_attachment(GIF_URL, "image/gif")

    assert result.error_kind == "EncodingError"
    assert len(encoder.calls) == 2
    assert leftover_workspaces(config.temp_root) == []


def test_unreadable_input_is_not_encoded(config, session, pipeline_for, response_factory, leftover_workspaces):
    serve(session, response_factory, gif_bytes(3000))

    with patch(PROBE_RUN_CMD, return_value=ProcessOutcome(1, "", "Invalid data found")), patch(
        ENCODE_RUN_CMD
    ) as mock_encode:
        result = pipeline_for(config).process_attachment(GIF_URL, "image/gif")

    assert result.error_kind == "ValidationError"
    mock_encode.assert_not_called()
    assert leftover_workspaces(config.temp_root) == []


def test_unexpected_error_is_normalized(config, session, pipeline_for, probe, response_factory, leftover_workspaces):
    serve(session, response_factory, gif_bytes(3000))

    with patch(ENCODE_RUN_CMD, side_effect=RuntimeError("disk on fire")):
        result = pipeline_for(config).process_attachment(GIF_URL, "image/gif")

    assert result.error_kind == "EncodingError"
    assert "disk on fire" in result.reason
    assert leftover_workspaces(config.temp_root) == []


def test_small_video_passes_through(config, session, pipeline_for, response_factory):
    data = b"\0\0\0\x18ftypmp42" + b"\0" * 3000
    serve(session, response_factory, data, content_type="video/mp4")

    with patch(PROBE_RUN_CMD) as mock_probe, patch(ENCODE_RUN_CMD) as mock_encode:
        result = pipeline_for(config).process_attachment(VIDEO_URL, "video/mp4")

    assert result.ok
    assert result.media.raw_bytes() == data
    assert result.media.mime_type == "video/mp4"
    mock_probe.assert_not_called()
    mock_encode.assert_not_called()


def test_oversized_video_is_compressed_with_h264(
    small_budget_config, session, pipeline_for, response_factory, probe_outcome_factory, fake_encoder_factory
):
    serve(session, response_factory, b"\0" * 15000, content_type="video/quicktime")
    encoder = fake_encoder_factory([(0, 6000, False)])

    with patch(PROBE_RUN_CMD, return_value=probe_outcome_factory("h264", width=1920, height=1080)), patch(
        ENCODE_RUN_CMD, side_effect=encoder
    ):
        result = pipeline_for(small_budget_config).process_attachment(VIDEO_URL)

    assert result.ok, result.reason
    assert result.media.mime_type == "video/mp4"
    cmd = encoder.calls[0]
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert cmd[cmd.index("-i") + 1].endswith("input.mov")


def test_disabled_conversion(config, session, pipeline_for):
    pipeline = pipeline_for(replace(config, enabled=False))

    result = pipeline.process_attachment(GIF_URL, "image/gif")

    assert not pipeline.is_available()
    assert result.error_kind == "UnsupportedInputError"
    session.get.assert_not_called()


def test_missing_toolchain(config, session):
    with patch(
        "inline_transcoder.pipeline.media_pipeline.Modules.resolve_toolchain",
        side_effect=UnsupportedInputError("ffmpeg binary not found."),
    ):
        pipeline = MediaPipeline(config, session=session)

    result = pipeline.process(MediaRequest.from_attachment(GIF_URL, "image/gif"))

    assert not pipeline.is_available()
    assert result.error_kind == "UnsupportedInputError"
    assert "ffmpeg" in result.reason
    session.get.assert_not_called()


def test_resolved_ffmpeg_is_version_checked(config, session):
    resolved = Toolchain(ffmpeg="/opt/ffmpeg/bin/ffmpeg", ffprobe="/opt/ffmpeg/bin/ffprobe")
    with patch(RESOLVE_TOOLCHAIN, return_value=resolved), patch(VERIFY_FFMPEG, return_value=True) as mock_verify:
        pipeline = MediaPipeline(config, session=session)

    mock_verify.assert_called_once_with("/opt/ffmpeg/bin/ffmpeg")
    assert pipeline.is_available()


def test_broken_ffmpeg_makes_conversion_unavailable(config, session):
    resolved = Toolchain(ffmpeg="/opt/ffmpeg/bin/ffmpeg", ffprobe="/opt/ffmpeg/bin/ffprobe")
    with patch(RESOLVE_TOOLCHAIN, return_value=resolved), patch(VERIFY_FFMPEG, return_value=False):
        pipeline = MediaPipeline(config, session=session)

    result = pipeline.process_attachment(GIF_URL, "image/gif")

    assert not pipeline.is_available()
    assert result.error_kind == "UnsupportedInputError"
    assert "version check" in result.reason
    session.get.assert_not_called()


def test_unsupported_attachment(config, session, pipeline_for):
    result = pipeline_for(config).process_attachment("https://cdn.example.com/a.png", "image/png")

    assert result.error_kind == "UnsupportedInputError"
    session.get.assert_not_called()


def test_cancelled_request(config, session, pipeline_for):
    cancel_event = threading.Event()
    cancel_event.set()

    result = pipeline_for(config).process_attachment(GIF_URL, "image/gif", cancel_event=cancel_event)

    assert result.error_kind == "ConversionCancelledError"
    session.get.assert_not_called()


def test_failures_are_written_to_the_error_log(config, session, pipeline_for, tmp_path):
    session.get.side_effect = requests.ConnectionError("connection refused")
    config = replace(config, error_log_dir=tmp_path / "logs")

    pipeline_for(config).process_attachment(GIF_URL, "image/gif")

    error_log = (tmp_path / "logs" / "error.txt").read_text(encoding="utf-8")
    assert GIF_URL in error_log
    assert "DownloadError" in error_log


def test_process_many_keeps_order_and_skips_failures(
    config, session, pipeline_for, probe, response_factory, fake_encoder_factory, leftover_workspaces
):
    def get(url, **kwargs):
        if "broken" in url:
            return response_factory(status_code=404, reason="Not Found")
        return response_factory(chunks=[gif_bytes(3000)], headers={"Content-Type": "image/gif"})

    session.get.side_effect = get
    encoder = fake_encoder_factory([(0, 1000, False), (0, 1000, False)])

    with patch(ENCODE_RUN_CMD, side_effect=encoder):
        converted = pipeline_for(config).process_many(
            [
                ("https://cdn.example.com/first.gif", "image/gif"),
                ("https://cdn.example.com/broken.gif", "image/gif"),
                ("https://cdn.example.com/last.gif", None),
            ]
        )

    assert len(converted) == 2
    assert all(media.mime_type == "video/webm" for media in converted)
    assert len(encoder.calls) == 2
    assert leftover_workspaces(config.temp_root) == []


def test_process_many_with_no_attachments(config, pipeline_for):
    assert pipeline_for(config).process_many([]) == []
