"""Exceptions raised by latexemu."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class LatexEmuError(Exception):
    """Base class for all latexemu errors."""


class InputError(LatexEmuError, ValueError):
    """The input is not something we can compile (bad path, unknown engine)."""


class ToolNotFoundError(LatexEmuError, FileNotFoundError):
    """An external executable could not be started."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"{tool} executable not found on PATH")
        self.tool = tool


class CompilationError(LatexEmuError):
    """A compilation step failed and could not be recovered.

    Args:
        message: User-facing summary, e.g. ``Failed to compile paper.tex.``
        log_path: Log file kept on disk for inspection, if any
        details: Error blocks extracted from the log, printed before the summary
    """

    def __init__(
        self,
        message: str,
        *,
        log_path: Optional[Path] = None,
        details: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.log_path = log_path
        self.details = details
