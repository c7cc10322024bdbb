"""
Download service for remote media.

Fetches an attachment into memory with `requests`, streaming the body so that the
size ceiling is enforced while the data is still arriving. A watchdog thread
shuts down the connection socket when the overall deadline passes or the caller
cancels. The shutdown wakes a read that is blocked in `recv`, so a server that
trickles bytes just fast enough to dodge the read timeout cannot hold the
download past its deadline.
"""

import socket
import threading
import time
from typing import Optional

import requests
from loguru import logger

from ..config.common import CANCEL_POLL_INTERVAL_SECONDS, TranscodeConfig
from ..domain.exceptions import ConversionCancelledError, DownloadError
from ..domain.media import FetchedMedia, normalize_mime_type
from ..utils.format_utils import formatted_size, size_in_mb

# urllib3 keeps reading until a whole chunk has arrived, so chunks stay small
# to let the deadline check run between reads.
CHUNK_SIZE = 16 * 1024
USER_AGENT = "inline-transcoder/1.0"


def _connection_socket(response) -> Optional[socket.socket]:
    """Finds the socket a streaming `requests` response is reading from, if any."""
    raw = getattr(response, "raw", None)
    # http.client keeps the socket behind the response's buffered reader even
    # after the connection object itself has let go of it.
    reader = getattr(getattr(raw, "_fp", None), "fp", None)
    sock = getattr(getattr(reader, "raw", None), "_sock", None)
    if not isinstance(sock, socket.socket):
        connection = getattr(raw, "_connection", None) or getattr(raw, "connection", None)
        sock = getattr(connection, "sock", None)
    return sock if isinstance(sock, socket.socket) else None


class _DownloadWatchdog:
    """Aborts a streaming response once its deadline passes or the request is cancelled."""

    def __init__(self, response, deadline: float, cancel_event: Optional[threading.Event]):
        self.response = response
        self.deadline = deadline
        self.cancel_event = cancel_event
        self.reason: Optional[str] = None
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="download-watchdog", daemon=True)

    def _run(self):
        while not self._stop.wait(CANCEL_POLL_INTERVAL_SECONDS):
            if self.cancel_event is not None and self.cancel_event.is_set():
                self.reason = "cancelled"
            elif time.monotonic() >= self.deadline:
                self.reason = "timeout"
            else:
                continue
            self._abort()
            return

    def _abort(self):
        # Closing alone would wait on the buffered reader the blocked read holds.
        sock = _connection_socket(self.response)
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug(f"Socket shutdown during download abort failed: {e}")
        self.response.close()

    def __enter__(self) -> "_DownloadWatchdog":
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        self._stop.set()
        self._thread.join()
        return False


class MediaFetcher:
    """
    Downloads one remote resource under a time limit and a size ceiling.

    Attributes:
        config: The pipeline configuration (supplies the download deadline).
        session: Optional `requests.Session` for connection reuse; the module-level
                 `requests.get` is used when None.
    """

    def __init__(self, config: TranscodeConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session

    def fetch(
        self,
        url: str,
        ceiling_bytes: int,
        fallback_content_type: str,
        cancel_event: Optional[threading.Event] = None,
        tag: str = "[VIDEO]",
    ) -> FetchedMedia:
        """
        Downloads `url` into memory.

        Args:
            url: The resource to download.
            ceiling_bytes: Absolute size limit. Checked against `Content-Length`
                           before reading and against the running total while reading.
            fallback_content_type: Used when the server sends no Content-Type.
            cancel_event: When set, the download stops with `ConversionCancelledError`.
            tag: Log prefix for the media kind.

        Returns:
            The downloaded bytes and the observed content type.

        Raises:
            DownloadError: On network errors, non-success status, timeout, empty
                           body, or when the ceiling is exceeded.
            ConversionCancelledError: If `cancel_event` was set.
        """
        timeout = self.config.download_timeout
        deadline = time.monotonic() + timeout
        requester = self.session.get if self.session is not None else requests.get
        timeout_message = f"Download timed out after {timeout:.0f} seconds"

        if cancel_event is not None and cancel_event.is_set():
            raise ConversionCancelledError("Download cancelled.")

        logger.info(f"{tag} Downloading media from {url[:80]}...")
        try:
            response = requester(
                url,
                stream=True,
                timeout=(timeout, timeout),
                headers={"User-Agent": USER_AGENT},
            )
        except requests.Timeout as e:
            raise DownloadError(timeout_message) from e
        except requests.RequestException as e:
            raise DownloadError(f"Failed to download media: {e}") from e

        with response:
            if not response.ok:
                raise DownloadError(
                    f"Failed to download media: {response.status_code} {response.reason}"
                )

            declared_length = self._parse_length(response.headers.get("Content-Length"))
            if declared_length is not None and declared_length > ceiling_bytes:
                raise DownloadError(
                    f"Media is too large: {size_in_mb(declared_length)} "
                    f"(max allowed: {size_in_mb(ceiling_bytes)})"
                )

            content_type = (
                normalize_mime_type(response.headers.get("Content-Type"))
                or fallback_content_type
            )

            chunks = []
            total = 0
            completed = False
            with _DownloadWatchdog(response, deadline, cancel_event) as watchdog:
                try:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if watchdog.reason or time.monotonic() >= deadline:
                            break
                        if not chunk:
                            continue
                        total += len(chunk)
                        if total > ceiling_bytes:
                            raise DownloadError(
                                f"Media is too large: exceeded {size_in_mb(ceiling_bytes)} while downloading"
                            )
                        chunks.append(chunk)
                    else:
                        # A closed response may end iteration early without raising.
                        completed = watchdog.reason is None
                except DownloadError:
                    raise
                except Exception as e:
                    # Reads on a response closed by the watchdog fail in various ways.
                    if watchdog.reason is None:
                        # requests reports a read timeout inside iter_content as ConnectionError.
                        if isinstance(e, requests.Timeout) or time.monotonic() >= deadline:
                            raise DownloadError(timeout_message) from e
                        if isinstance(e, requests.RequestException):
                            raise DownloadError(f"Download interrupted: {e}") from e
                        raise
                    logger.debug(f"{tag} Read aborted by watchdog ({watchdog.reason}): {e}")

            if not completed:
                if watchdog.reason == "cancelled":
                    raise ConversionCancelledError("Download cancelled.")
                raise DownloadError(timeout_message)

        data = b"".join(chunks)
        if not data:
            raise DownloadError("Downloaded media is empty.")

        logger.info(f"{tag} Downloaded {formatted_size(len(data))} ({content_type})")
        return FetchedMedia(data=data, content_type=content_type)

    @staticmethod
    def _parse_length(header_value: Optional[str]) -> Optional[int]:
        if not header_value:
            return None
        try:
            return int(header_value)
        except ValueError:
            logger.debug(f"Ignoring malformed Content-Length header: {header_value!r}")
            return None
