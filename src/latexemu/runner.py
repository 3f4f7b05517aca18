"""Invocation of external tools (engines, makeindex, bibtex, tlmgr, latexmk)."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional, Sequence

from latexemu.errors import ToolNotFoundError

logger = logging.getLogger(__name__)


def run(cmd: Sequence[str], cwd: Optional[Path] = None, quiet: bool = False) -> int:
    """Run a command to completion and return its exit status.

    Args:
        cmd: Program and arguments
        cwd: Working directory (None for the current one)
        quiet: Discard the program's stdout and stderr

    Raises:
        ToolNotFoundError: If the program does not exist
    """
    cmd = [str(arg) for arg in cmd]
    logger.debug("Running: %s (in %s)", " ".join(cmd), cwd or ".")
    stream = subprocess.DEVNULL if quiet else None
    try:
        result = subprocess.run(cmd, cwd=cwd, stdout=stream, stderr=stream)
    except FileNotFoundError as e:
        raise ToolNotFoundError(cmd[0]) from e
    return result.returncode


def run_quiet(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    on_error: Optional[Callable[[], object]] = None,
    fail_rerun: bool = True,
) -> int:
    """Run a command quietly, falling back to a loud rerun on failure.

    Most runs succeed and their output is noise, so the first attempt is
    silenced. If it fails and ``fail_rerun`` is set, the command is run once
    more with output shown so the user sees the tool's own diagnostics. If
    the status is still non-zero, ``on_error`` is called.

    Args:
        cmd: Program and arguments
        cwd: Working directory
        on_error: Called without arguments only when the command failed; may
            raise, or do further work such as installing packages and retrying
        fail_rerun: Rerun loudly after a failed quiet attempt

    Returns:
        The exit status of the last attempt, unchanged by ``on_error``
    """
    returncode = run(cmd, cwd=cwd, quiet=True)
    if fail_rerun and returncode != 0:
        returncode = run(cmd, cwd=cwd)
    if returncode != 0 and on_error is not None:
        on_error()
    return returncode
