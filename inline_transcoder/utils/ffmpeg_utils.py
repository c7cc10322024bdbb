"""
This module provides utility functions for running FFmpeg and ffprobe.

The central piece is `run_cmd`, a wrapper around `subprocess.Popen` that always
receives an argument list (never a shell string), enforces a wall-clock deadline,
and actively terminates the child when the deadline passes or the caller cancels.
The child is always reaped before `run_cmd` returns, so no encoder process
outlives the request that started it.
"""

import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from loguru import logger

from ..config.common import CANCEL_POLL_INTERVAL_SECONDS, PROCESS_KILL_GRACE_SECONDS
from ..domain.exceptions import ConversionCancelledError, UnsupportedInputError


@dataclass(frozen=True)
class ProcessOutcome:
    """
    What happened to one external process.

    Attributes:
        returncode: Exit status. Negative values mean the process died from a signal.
        stdout: Captured standard output.
        stderr: Captured standard error (FFmpeg writes its diagnostics here).
        timed_out: True if the deadline passed and the process was terminated.
        duration: Wall-clock seconds from launch until the process was reaped.
    """

    returncode: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def format_cmd(cmd_list: Sequence[Union[str, Path]]) -> str:
    """Returns a shell-quoted rendering of an argument list, for logs only."""
    return shlex.join(str(part) for part in cmd_list)


def _stop_process(proc: subprocess.Popen, grace_period: float) -> Tuple[str, str]:
    """
    Sends SIGTERM, waits up to `grace_period` seconds, then SIGKILLs.

    Returns whatever output the process produced. The process is always reaped.
    """
    if proc.poll() is None:
        proc.terminate()
    try:
        stdout, stderr = proc.communicate(timeout=grace_period)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {proc.pid} ignored SIGTERM for {grace_period}s, killing it.")
        proc.kill()
        stdout, stderr = proc.communicate()
    return stdout or "", stderr or ""


def run_cmd(
    cmd_parts: Sequence[Union[str, Path]],
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
    grace_period: float = PROCESS_KILL_GRACE_SECONDS,
    show_cmd: bool = False,
) -> ProcessOutcome:
    """
    Executes an external command with a deadline and captures its output.

    The command is polled in short intervals so that a cancellation request is
    noticed promptly. When the deadline passes the process is terminated (and
    killed if it ignores SIGTERM) and a timed-out outcome is returned. A non-zero
    exit is reported in the outcome, not raised.

    Args:
        cmd_parts: The command as a list of arguments. Every element is passed to
                   the OS as one argument; nothing is interpreted by a shell.
        timeout: Wall-clock seconds the process may run.
        cancel_event: When set while the process runs, the process is killed and
                      `ConversionCancelledError` is raised.
        grace_period: Seconds to wait after SIGTERM before sending SIGKILL.
        show_cmd: If True, the command is logged at DEBUG level before execution.

    Returns:
        A `ProcessOutcome` describing the finished process.

    Raises:
        UnsupportedInputError: If the executable does not exist.
        ConversionCancelledError: If `cancel_event` was set while the process ran.
        ValueError: If the command list is empty.
    """
    cmd_list: List[str] = [str(part) for part in cmd_parts]
    if not cmd_list:
        raise ValueError("run_cmd received an empty command list.")

    if show_cmd:
        logger.debug(f"Executing command: {format_cmd(cmd_list)}")

    if cancel_event is not None and cancel_event.is_set():
        raise ConversionCancelledError(f"Cancelled before starting '{cmd_list[0]}'.")

    start = time.monotonic()
    deadline = start + timeout
    try:
        proc = subprocess.Popen(
            cmd_list,
            stdin=subprocess.DEVNULL,  # ffmpeg would otherwise read interactive keys from the terminal.
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            shell=False,  # Never use shell=True; paths and filters are discrete arguments.
        )
    except FileNotFoundError as e:
        logger.error(
            f"Command not found: '{cmd_list[0]}'. Ensure it's in your system's PATH or configured correctly."
        )
        raise UnsupportedInputError(f"Executable not found: {cmd_list[0]}") from e

    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                stdout, stderr = _stop_process(proc, grace_period)
                duration = time.monotonic() - start
                logger.error(
                    f"Command timed out after {timeout:.1f}s and was terminated (rc={proc.returncode}): "
                    f"{cmd_list[0]}"
                )
                return ProcessOutcome(proc.returncode, stdout, stderr, timed_out=True, duration=duration)
            try:
                stdout, stderr = proc.communicate(
                    timeout=min(remaining, CANCEL_POLL_INTERVAL_SECONDS)
                )
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    _stop_process(proc, grace_period=0)
                    logger.warning(f"Cancelled running command '{cmd_list[0]}' (pid {proc.pid}).")
                    raise ConversionCancelledError(f"Cancelled while running '{cmd_list[0]}'.")
    except BaseException:
        # Whatever interrupted us, the child must not be left running.
        if proc.poll() is None:
            proc.kill()
            proc.communicate()
        raise

    duration = time.monotonic() - start
    stdout = stdout or ""
    stderr = stderr or ""

    if stdout and len(stdout) > 500:
        logger.trace(f"Command stdout (truncated): {stdout[:500]}...")
    elif stdout:
        logger.trace(f"Command stdout: {stdout}")

    # Distinguish between error output and informational warnings on stderr.
    if stderr and proc.returncode != 0:
        logger.debug(f"Command stderr (error, rc={proc.returncode}): {stderr}")
    elif stderr:
        logger.trace(f"Command stderr (non-error, rc={proc.returncode}): {stderr}")

    return ProcessOutcome(proc.returncode, stdout, stderr, timed_out=False, duration=duration)
