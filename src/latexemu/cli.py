"""CLI interface for latexemu."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer

from latexemu.core import latexmk
from latexemu.errors import CompilationError, InputError, ToolNotFoundError
from latexemu.logging_config import setup_logging
from latexemu.models import CompileResult, Diagnostic

app = typer.Typer(
    name="latexemu",
    help="Compile LaTeX files to PDF with latexmk or a latexmk emulation",
)


def _print_diagnostics(result: CompileResult) -> None:
    """Print diagnostics in human-readable format."""
    for diag in result.diagnostics:
        level_marker = {
            "error": "ERROR",
            "warning": "WARNING",
            "info": "INFO",
        }.get(diag.level, "INFO")
        typer.echo(f"{level_marker} [{diag.code}]: {diag.message}", err=True)


def _fail(code: str, message: str, raw: str, json_output: bool, exit_code: int) -> NoReturn:
    """Report an error either as JSON or as text and exit."""
    if json_output:
        result = CompileResult(
            success=False,
            diagnostics=[Diagnostic(level="error", code=code, message=message, raw=raw)],
        )
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        if raw:
            typer.echo(raw, err=True)
        typer.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


@app.command()
def main(
    input_file: Annotated[
        Path,
        typer.Argument(help="Path to the input .tex file"),
    ],
    engine: Annotated[
        str,
        typer.Option("--engine", "-e", help="LaTeX engine (pdflatex, xelatex or lualatex)"),
    ] = "pdflatex",
    bib_engine: Annotated[
        str,
        typer.Option("--bib-engine", "-b", help="Bibliography engine (bibtex or biber)"),
    ] = "bibtex",
    emulation: Annotated[
        Optional[bool],
        typer.Option(
            "--emulation/--no-emulation",
            envvar="LATEXEMU_EMULATION",
            help="Emulate latexmk (default: only if latexmk is not installed)",
        ),
    ] = None,
    max_times: Annotated[
        int,
        typer.Option(
            "--max-times",
            "-n",
            min=0,
            envvar="LATEXEMU_MAX_TIMES",
            help="Maximum number of engine reruns to resolve cross-references",
        ),
    ] = 10,
    install_packages: Annotated[
        Optional[bool],
        typer.Option(
            "--install-packages/--no-install-packages",
            envvar="LATEXEMU_INSTALL_PACKAGES",
            help="Install missing LaTeX packages with tlmgr (default: when emulating and tlmgr exists)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output result as JSON"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log errors"),
    ] = False,
) -> None:
    """Compile a LaTeX file to PDF.

    Examples:
        latexemu paper.tex
        latexemu paper.tex --engine=xelatex --bib-engine=biber
        latexemu paper.tex --emulation --no-install-packages --json
    """
    setup_logging(verbose=verbose, quiet=quiet)

    if not input_file.exists():
        _fail("file-not-found", f"Input file not found: {input_file}", "", json_output, 1)

    try:
        result = latexmk(
            input_file,
            engine=engine,
            bib_engine=bib_engine,
            emulation=emulation,
            max_times=max_times,
            install_packages=install_packages,
        )
    except InputError as e:
        _fail("invalid-input", str(e), "", json_output, 1)
    except ToolNotFoundError as e:
        _fail("tool-not-found", str(e), "", json_output, 1)
    except CompilationError as e:
        _fail("compilation-failed", e.message, e.details, json_output, 2)

    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.success else 2)

    _print_diagnostics(result)
    if result.success and result.pdf_path:
        typer.echo(f"OK: {result.pdf_path.resolve()}")
        sys.exit(0)
    typer.echo("Compilation failed.", err=True)
    sys.exit(2)


if __name__ == "__main__":
    app()
