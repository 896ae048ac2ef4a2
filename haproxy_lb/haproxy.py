"""
HAProxy process control.

  - validate: `haproxy -c -f <file>`, exit code 0 means valid
  - reload:   `haproxy -f <file> -sf <old pid>`; the new process takes over the
              listeners and the old one finishes its connections then exits

Liveness after reload is only checked for a short grace period: a process
still running after it is treated as started. Later crashes surface on the
next validate/reload.
"""

import enum
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger("haproxy_lb")


class ProcessSpawnError(RuntimeError):
    """The HAProxy binary could not be executed at all."""


@dataclass(frozen=True)
class ProcessHandle:
    """Opaque reference to the active HAProxy process."""

    pid: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.pid is not None


NO_PROCESS = ProcessHandle()


class ReloadOutcome(enum.Enum):
    STARTED = "started"
    EXITED = "exited"


@dataclass(frozen=True)
class ReloadResult:
    outcome: ReloadOutcome
    handle: ProcessHandle
    returncode: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is ReloadOutcome.STARTED


def write_config(path: str, text: str) -> None:
    """Write a file atomically: temp file in the same directory, then rename."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".haproxy-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class ProcessController:
    """Validates configs and hands HAProxy over to new processes."""

    def __init__(self, binary: str = "haproxy", grace: float = 0.1) -> None:
        self._binary = binary
        self._grace = grace
        self._children: List[subprocess.Popen] = []

    def validate(self, config_path: str) -> bool:
        """Run the built-in config check. Raises ProcessSpawnError only."""
        self._reap()
        cmd = [self._binary, "-c", "-f", config_path]
        logger.debug(f"validate: {' '.join(cmd)}")
        try:
            cp = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ProcessSpawnError(f"cannot execute {self._binary}: {e}") from e

        if cp.returncode != 0:
            logger.error(
                f"HAProxy rejected {config_path} (exit {cp.returncode}): "
                f"{(cp.stderr or cp.stdout).strip()[:1000]}"
            )
            return False
        return True

    def _reap(self) -> None:
        """Collect exited children (old processes that finished draining)."""
        alive = []
        for proc in self._children:
            if proc.poll() is None:
                alive.append(proc)
            else:
                logger.debug(f"_reap: pid {proc.pid} exited with {proc.returncode}")
        self._children = alive

    def reload(self, config_path: str, previous: ProcessHandle) -> ReloadResult:
        """
        Start a new HAProxy on config_path, handing off from `previous`.

        Returns STARTED with the new handle, or EXITED with `previous`
        unchanged if the new process died within the grace period.
        Raises ProcessSpawnError if it could not be spawned.
        """
        self._reap()

        cmd = [self._binary, "-f", config_path]
        if previous.active:
            cmd.extend(["-sf", str(previous.pid)])
        logger.debug(f"reload: {' '.join(cmd)} (previous pid={previous.pid})")

        try:
            proc = subprocess.Popen(cmd)
        except OSError as e:
            logger.warning(f"Failed to reload HAProxy process: {e}")
            raise ProcessSpawnError(f"cannot execute {self._binary}: {e}") from e

        try:
            returncode = proc.wait(timeout=self._grace)
        except subprocess.TimeoutExpired:
            self._children.append(proc)
            logger.debug(f"reload: HAProxy pid {proc.pid} still running after {self._grace}s")
            return ReloadResult(ReloadOutcome.STARTED, ProcessHandle(proc.pid))

        logger.error(
            f"HAProxy pid {proc.pid} exited with {returncode} within {self._grace}s"
        )
        return ReloadResult(ReloadOutcome.EXITED, previous, returncode)
