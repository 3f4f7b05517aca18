"""Turn a failed LaTeX log into a user-facing CompilationError."""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn, Optional

from latexemu.analysis import extract_error_blocks, format_error_blocks
from latexemu.errors import CompilationError
from latexemu.models import Document, LogSnapshot


def report_latex_error(document: Document, log_path: Optional[Path] = None) -> NoReturn:
    """Raise a CompilationError describing why ``document`` failed.

    Args:
        document: The document that failed to compile
        log_path: Log to inspect (defaults to the document's own log)

    Raises:
        CompilationError: Always; ``details`` holds the ``! ...`` error blocks
            when the log has any
    """
    log_path = log_path or document.log_path
    message = f"Failed to compile {document.name}."
    snapshot = LogSnapshot.read(log_path)
    if snapshot is None:
        raise CompilationError(message)

    blocks = extract_error_blocks(snapshot.text)
    if not blocks:
        raise CompilationError(message, log_path=log_path)
    raise CompilationError(
        f"{message} See {log_path} for more info.",
        log_path=log_path,
        details=format_error_blocks(blocks),
    )
