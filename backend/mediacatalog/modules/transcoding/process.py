"""External process invocation.

Probe, encode and segment stages talk to their binaries only through a
``ProcessRunner`` so tests can substitute a fake without real ffmpeg.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Exit code reported when the binary could not be started at all
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class ProcessResult:
    """Outcome of one external process run."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRunner(Protocol):
    """Capability to run an external command to completion."""

    def run(self, args: Sequence[str]) -> ProcessResult:
        ...


class SubprocessRunner:
    """Runs commands with ``subprocess.run``, blocking until exit."""

    def __init__(self, timeout: Optional[float] = None):
        """Initialize runner.

        Args:
            timeout: Optional wall-clock limit per process in seconds
        """
        self.timeout = timeout

    def run(self, args: Sequence[str]) -> ProcessResult:
        cmd = [str(a) for a in args]
        logger.debug("Running %s", " ".join(cmd))

        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                # Tool output is not guaranteed to be UTF-8
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return ProcessResult(EXIT_NOT_FOUND, "", f"{cmd[0]}: executable not found")
        except subprocess.TimeoutExpired as e:
            stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            return ProcessResult(EXIT_TIMEOUT, "", f"{stderr}\n{cmd[0]}: timed out after {self.timeout}s")

        return ProcessResult(completed.returncode, completed.stdout or "", completed.stderr or "")
