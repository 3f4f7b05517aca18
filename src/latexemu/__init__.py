"""latexemu: compile LaTeX to PDF with latexmk, or a log-driven emulation of it."""

from __future__ import annotations

from latexemu.core import LatexmkEmulator, latexmk, lualatex, pdflatex, xelatex
from latexemu.errors import CompilationError, InputError, LatexEmuError, ToolNotFoundError
from latexemu.models import CompilationState, CompileResult, Diagnostic, Document, EmulationConfig

__version__ = "0.1.0"
__all__ = [
    "latexmk",
    "pdflatex",
    "xelatex",
    "lualatex",
    "LatexmkEmulator",
    "CompilationError",
    "InputError",
    "LatexEmuError",
    "ToolNotFoundError",
    "CompilationState",
    "CompileResult",
    "Diagnostic",
    "Document",
    "EmulationConfig",
]
