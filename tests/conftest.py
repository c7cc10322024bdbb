"""
Shared fixtures for the Inline Transcoder test suite.

External effects are replaced at their seams: HTTP through a mocked
`requests` session, and FFmpeg/ffprobe through a fake `run_cmd` that writes
output files of chosen sizes into the workspace. Download deadlines are also
checked against a real local server that sends its body too slowly.
"""

import json
import socketserver
import threading
from pathlib import Path
from typing import List, Optional, Sequence
from unittest.mock import MagicMock

import pytest
import requests

from inline_transcoder.config.common import TranscodeConfig
from inline_transcoder.utils.ffmpeg_utils import ProcessOutcome
from inline_transcoder.utils.toolchain import Toolchain


def make_response(chunks: Sequence[bytes] = (), status_code: int = 200, headers=None, reason: str = "OK"):
    response = MagicMock()
    response.ok = 200 <= status_code < 400
    response.status_code = status_code
    response.reason = reason
    response.headers = dict(headers or {})
    response.iter_content.return_value = iter(chunks)
    return response


class FakeEncoder:
    """
    Stands in for `run_cmd` on encoder invocations.

    Each call consumes the next `(returncode, output_size, timed_out)` entry and,
    when `output_size` is positive, writes that many bytes to the output file
    named in the command.
    """

    def __init__(self, results: List[tuple]):
        self.results = list(results)
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    def __call__(self, cmd_list, timeout, cancel_event=None, **kwargs):
        with self._lock:
            self.calls.append(list(cmd_list))
            if not self.results:
                raise AssertionError(f"Unexpected encoder invocation: {cmd_list}")
            returncode, size, timed_out = self.results.pop(0)
        # A re-encode reads a previous output, so the file written is the last match.
        output = [Path(token) for token in cmd_list if Path(token).name.startswith("output")][-1]
        if size:
            output.write_bytes(b"\0" * size)
        stderr = "" if returncode == 0 else "Error while encoding"
        return ProcessOutcome(returncode, "", stderr, timed_out=timed_out)


class SlowBodyHandler(socketserver.StreamRequestHandler):
    """
    Answers every request with a large Content-Length and then either trickles
    the body one byte at a time ("trickle") or sends nothing more ("stall").
    """

    TRICKLE_INTERVAL = 0.1

    def handle(self):
        while self.rfile.readline() not in (b"\r\n", b"\n", b""):
            pass
        try:
            self.wfile.write(
                b"HTTP/1.1 200 OK\r\n"
                b"Content-Type: image/gif\r\n"
                b"Content-Length: 1000000\r\n"
                b"Connection: close\r\n\r\n"
                b"GIF89a"
            )
            while not self.server.stop_event.wait(self.TRICKLE_INTERVAL):
                if self.server.mode == "trickle":
                    self.wfile.write(b"\0")
        except OSError:
            # The client hung up.
            return


@pytest.fixture
def slow_http_server():
    """Starts local slow servers on demand and returns their URLs."""
    servers = []

    def _start(mode: str) -> str:
        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), SlowBodyHandler)
        server.daemon_threads = True
        server.mode = mode
        server.stop_event = threading.Event()
        threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True).start()
        servers.append(server)
        host, port = server.server_address
        return f"http://{host}:{port}/reaction.gif"

    yield _start
    for server in servers:
        server.stop_event.set()
        server.shutdown()
        server.server_close()


@pytest.fixture
def direct_session():
    """A real `requests` session that ignores proxy settings from the environment."""
    with requests.Session() as session:
        session.trust_env = False
        yield session


def probe_outcome(codec_name: str = "gif", codec_type: str = "video", width: int = 480, height: int = 360):
    payload = {
        "streams": [{"codec_type": codec_type, "codec_name": codec_name, "width": width, "height": height}],
        "format": {"format_name": codec_name},
    }
    return ProcessOutcome(0, json.dumps(payload), "")


@pytest.fixture
def config(tmp_path) -> TranscodeConfig:
    return TranscodeConfig(
        temp_root=tmp_path / "work",
        download_timeout_ms=2000,
        per_attempt_timeout_ms=5000,
        probe_timeout_ms=2000,
    )


@pytest.fixture
def small_budget_config(tmp_path) -> TranscodeConfig:
    # 0.01 MB budget: 10485 bytes output, 31457 bytes download ceiling.
    return TranscodeConfig(
        max_output_size_mb=0.01,
        temp_root=tmp_path / "work",
        download_timeout_ms=2000,
        per_attempt_timeout_ms=5000,
        probe_timeout_ms=2000,
    )


@pytest.fixture
def toolchain() -> Toolchain:
    return Toolchain(ffmpeg="ffmpeg", ffprobe="ffprobe")


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def fake_encoder_factory():
    return FakeEncoder


@pytest.fixture
def probe_outcome_factory():
    return probe_outcome


def workspace_dirs(temp_root: Optional[Path]) -> List[Path]:
    if temp_root is None or not temp_root.exists():
        return []
    return list(temp_root.iterdir())


@pytest.fixture
def leftover_workspaces():
    return workspace_dirs
