from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence


logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """An external command is missing or exited unsuccessfully."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


@dataclass
class CommandResult:
    args: Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout or "") + (self.stderr or "")


def which(name: str) -> Optional[str]:
    return shutil.which(name)


def run(
    args: Sequence[str],
    *,
    cwd: Optional[os.PathLike[str] | str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    check: bool = False,
) -> CommandResult:
    """Run a command to completion, capturing text output.

    A missing executable or an expired timeout is reported as a result with a
    non-zero return code (127 / 124, as a shell would) unless `check` is set,
    in which case CommandError is raised for any failure.
    """
    logger.debug("$ %s", " ".join(str(a) for a in args))
    try:
        proc = subprocess.run(
            [str(a) for a in args],
            cwd=cwd,
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        result = CommandResult(args=args, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
    except FileNotFoundError as exc:
        result = CommandResult(args=args, returncode=127, stdout="", stderr=str(exc))
    except subprocess.TimeoutExpired:
        result = CommandResult(args=args, returncode=124, stdout="", stderr=f"timed out after {timeout}s")

    if check and not result.ok:
        raise CommandError(
            f"Command failed ({result.returncode}): {args[0]}",
            returncode=result.returncode,
            output=result.output,
        )
    return result


def spawn_background(
    args: Sequence[str],
    *,
    cwd: Optional[os.PathLike[str] | str] = None,
    log_path: Optional[os.PathLike[str] | str] = None,
) -> int:
    """Start a detached process, redirecting output to `log_path`; returns the PID."""
    if log_path is not None:
        with open(log_path, "ab") as out:
            proc = subprocess.Popen(
                [str(a) for a in args],
                cwd=cwd,
                stdout=out,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
    else:
        proc = subprocess.Popen(
            [str(a) for a in args],
            cwd=cwd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
    return proc.pid


__all__ = [
    "CommandError",
    "CommandResult",
    "which",
    "run",
    "spawn_background",
]
