import threading
from unittest.mock import patch

import pytest

from inline_transcoder.domain.exceptions import ConversionCancelledError, EncodingError
from inline_transcoder.domain.media import MediaKind
from inline_transcoder.domain.temp_models import TempWorkspace
from inline_transcoder.services.logging_service import ErrorLog
from inline_transcoder.services.strategy import build_strategy_table
from inline_transcoder.services.transcode_service import TranscodeExecutor
from inline_transcoder.utils.ffmpeg_utils import ProcessOutcome

RUN_CMD = "inline_transcoder.services.transcode_service.run_cmd"


@pytest.fixture
def workspace(tmp_path):
    with TempWorkspace(tmp_path / "work") as ws:
        yield ws


@pytest.fixture
def limiter():
    return threading.BoundedSemaphore(1)


@pytest.fixture
def executor(config, limiter, tmp_path):
    return TranscodeExecutor(config, "ffmpeg", limiter, error_log=ErrorLog(tmp_path / "logs"))


@pytest.fixture
def table(config):
    return build_strategy_table(MediaKind.ANIMATED_IMAGE, config)


@pytest.fixture
def input_path(workspace):
    return workspace.write_input(b"GIF89a" + b"\0" * 500, "gif")


def test_first_successful_tier_stops_the_loop(executor, table, workspace, input_path, config, fake_encoder_factory):
    encoder = fake_encoder_factory([(0, 4000, False)])

    with patch(RUN_CMD, side_effect=encoder) as mock_run:
        attempt = executor.execute(table, input_path, workspace)

    assert len(encoder.calls) == 1
    assert attempt.succeeded
    assert attempt.tier.codec == "libvpx-vp9"
    assert attempt.output_path == workspace.path / "output_0.webm"
    assert attempt.output_size == 4000
    assert mock_run.call_args.kwargs["timeout"] == config.attempt_timeout
    assert mock_run.call_args.kwargs["show_cmd"] is True


def test_failed_tier_falls_back_with_escalated_quality(executor, table, workspace, input_path, tmp_path, fake_encoder_factory):
    encoder = fake_encoder_factory([(1, 0, False), (0, 3000, False)])

    with patch(RUN_CMD, side_effect=encoder):
        attempt = executor.execute(table, input_path, workspace)

    assert [cmd[cmd.index("-c:v") + 1] for cmd in encoder.calls] == ["libvpx-vp9", "libx264"]
    assert attempt.tier.ordinal == 1
    assert attempt.quality == 33
    assert attempt.output_path.suffix == ".mp4"
    assert not (workspace.path / "output_0.webm").exists()

    error_log = (tmp_path / "logs" / "error.txt").read_text(encoding="utf-8")
    assert "tier 0 (libvpx-vp9/webm) crf=28: exit 1" in error_log


def test_zero_exit_without_output_counts_as_failure(executor, table, workspace, input_path, fake_encoder_factory):
    encoder = fake_encoder_factory([(0, 0, False), (0, 2500, False)])

    with patch(RUN_CMD, side_effect=encoder):
        attempt = executor.execute(table, input_path, workspace)

    assert len(encoder.calls) == 2
    assert attempt.tier.codec == "libx264"


def test_exhausted_tiers_raise_encoding_error(executor, table, workspace, input_path, fake_encoder_factory):
    encoder = fake_encoder_factory([(-15, 0, True), (1, 0, False)])

    with patch(RUN_CMD, side_effect=encoder):
        with pytest.raises(EncodingError) as excinfo:
            executor.execute(table, input_path, workspace)

    assert len(encoder.calls) == 2
    message = str(excinfo.value)
    assert "timed out" in message
    assert "exit 1" in message
    assert list(workspace.path.glob("output*")) == []


def test_limiter_is_released_after_each_attempt(executor, table, workspace, input_path, limiter, fake_encoder_factory):
    encoder = fake_encoder_factory([(1, 0, False), (1, 0, False)])

    with patch(RUN_CMD, side_effect=encoder):
        with pytest.raises(EncodingError):
            executor.execute(table, input_path, workspace)

    assert limiter.acquire(blocking=False)
    limiter.release()


def test_limiter_caps_concurrent_encodes(config, workspace, input_path):
    limiter = threading.BoundedSemaphore(2)
    executor = TranscodeExecutor(config, "ffmpeg", limiter)
    (tier,) = build_strategy_table(MediaKind.VIDEO, config)
    lock = threading.Lock()
    running = {"now": 0, "peak": 0}
    release = threading.Event()

    def slow_encoder(cmd_list, timeout, cancel_event=None, **kwargs):
        with lock:
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])
        release.wait(2)
        with lock:
            running["now"] -= 1
        return ProcessOutcome(1, "", "failed")

    with patch(RUN_CMD, side_effect=slow_encoder):
        threads = [
            threading.Thread(target=executor.run_tier, args=(tier, 23, input_path, workspace, f"output_{i}"))
            for i in range(4)
        ]
        for thread in threads:
            thread.start()
        threading.Timer(0.5, release.set).start()
        for thread in threads:
            thread.join(10)

    assert running["peak"] == 2


def test_cancellation_stops_the_loop(executor, table, workspace, input_path):
    with patch(RUN_CMD, side_effect=ConversionCancelledError("Cancelled while running 'ffmpeg'.")) as mock_run:
        with pytest.raises(ConversionCancelledError):
            executor.execute(table, input_path, workspace, cancel_event=threading.Event())

    assert mock_run.call_count == 1


def test_empty_table(executor, workspace, input_path):
    with pytest.raises(EncodingError):
        executor.execute((), input_path, workspace)
