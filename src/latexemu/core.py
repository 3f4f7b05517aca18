"""Core compilation logic for latexemu: latexmk and a log-driven emulation of it."""

from __future__ import annotations

import contextlib
import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterator, NoReturn, Optional, Union

from latexemu import tlmgr
from latexemu.analysis import (
    extract_missing_resources,
    extract_style_files,
    has_bibliography_error,
    has_rerun_marker,
)
from latexemu.errors import CompilationError, InputError, ToolNotFoundError
from latexemu.models import (
    CompilationState,
    CompileResult,
    Diagnostic,
    Document,
    EmulationConfig,
    EngineName,
    LogSnapshot,
)
from latexemu.reporting import report_latex_error
from latexemu.runner import run, run_quiet

logger = logging.getLogger(__name__)

ENGINES: tuple[str, ...] = ("pdflatex", "xelatex", "lualatex")
ENGINE_FLAGS: tuple[str, ...] = ("-halt-on-error", "-interaction=batchmode")
MAX_BIB_REPAIRS = 3
MIN_LATEXMK_VERSION = (4, 43)

_TEX_ALIAS_RE = re.compile(r"^(pdf|xe|lua)(tex)$")
_LATEXMK_VERSION_RE = re.compile(r"Version (\d+)\.(\d+)")
_BIBDATA_RE = re.compile(r"^\\bibdata\{.+\}\s*$")
_BIBTEX_DECLARATIONS = ("\\citation{", "\\bibdata{", "\\bibstyle{")


def normalize_engine(engine: str) -> EngineName:
    """Map ``pdftex``/``xetex``/``luatex`` to their LaTeX formats and validate.

    Raises:
        InputError: If the name is not one of the supported engines
    """
    # Accept "XeLaTeX" or " pdflatex" as typed on a command line.
    name = _TEX_ALIAS_RE.sub(r"\1la\2", engine.strip().lower())
    if name not in ENGINES:
        raise InputError(f"Invalid engine '{engine}'. Must be one of: {', '.join(ENGINES)}.")
    return name  # type: ignore[return-value]


def _fail(message: str) -> Callable[[], NoReturn]:
    def raise_error() -> NoReturn:
        raise CompilationError(message)

    return raise_error


@contextlib.contextmanager
def preserve_pdf(pdf_path: Path) -> Iterator[Optional[Path]]:
    """Move an existing PDF aside for the duration of a compilation.

    If the compilation leaves no new PDF behind (it failed), the old one is
    moved back; otherwise the backup is deleted.

    Yields:
        The backup path, or None when there was nothing to back up
    """
    if not pdf_path.exists():
        yield None
        return

    fd, name = tempfile.mkstemp(prefix="latexemu_", suffix=".pdf", dir=pdf_path.parent)
    os.close(fd)
    backup = Path(name)
    os.replace(pdf_path, backup)
    try:
        yield backup
    finally:
        if pdf_path.exists():
            backup.unlink()
        else:
            os.replace(backup, pdf_path)


def require_bibtex(aux: Path) -> bool:
    """Check that an ``.aux`` file actually asks for a bibliography.

    Loading a bibliography package writes an ``.aux`` file even when nothing
    is cited, so bibtex is only needed if the file has citations, bibliography
    data and a style.
    """
    lines = aux.read_text(encoding="utf-8", errors="replace").splitlines()
    required = all(
        any(line.startswith(prefix) for line in lines) for prefix in _BIBTEX_DECLARATIONS
    )
    if required and os.name == "nt" and not tlmgr.available():
        _strip_bib_extensions(aux, lines)
    return required


def _strip_bib_extensions(aux: Path, lines: list[str]) -> None:
    """Drop ``.bib`` from ``\\bibdata{}``; bibtex on Windows (MiKTeX) rejects it."""
    changed = False
    for i, line in enumerate(lines):
        if _BIBDATA_RE.match(line):
            fixed = re.sub(r"\.bib([,}])", r"\1", line)
            changed = changed or fixed != line
            lines[i] = fixed
    if changed:
        aux.write_text("\n".join(lines) + "\n", encoding="utf-8")


class LatexmkEmulator:
    """Compile a document the way latexmk would, deciding every step from logs.

    One engine pass, then makeindex if an index was written, then bibtex or
    biber if citations were written, then more engine passes while the log
    asks for a rerun. Missing packages are installed through tlmgr when
    ``config.install_packages`` is set and tlmgr is on PATH.

    An instance compiles one document once; it owns the document's auxiliary
    files while running.
    """

    def __init__(self, document: Document, config: EmulationConfig) -> None:
        self.document = document
        self.config = config
        self.state = CompilationState.INIT
        self.keep_log = False
        self.engine_runs = 0
        self.index_runs = 0
        self.bib_runs = 0
        self.installed_packages: list[str] = []
        self.diagnostics: list[Diagnostic] = []

    def run(self) -> CompileResult:
        """Run the full compilation.

        Returns:
            CompileResult with the PDF path, final state and invocation counts

        Raises:
            CompilationError: If the engine, makeindex or the bibliography tool
                failed and could not be recovered
            ToolNotFoundError: If a required program is not installed
        """
        document = self.document
        document.log_path.unlink(missing_ok=True)
        existing = document.existing_aux_files()
        try:
            with preserve_pdf(document.pdf_path):
                self.run_engine()
                self.state = CompilationState.ENGINE_RAN
                self.make_index()
                self.make_bibliography()
                self.rerun_until_converged()
        finally:
            self._clean_up(existing)

        pdf_path = document.pdf_path
        return CompileResult(
            success=pdf_path.exists(),
            pdf_path=pdf_path if pdf_path.exists() else None,
            engine=self.config.engine,
            state=self.state,
            engine_runs=self.engine_runs,
            index_runs=self.index_runs,
            bib_runs=self.bib_runs,
            installed_packages=list(self.installed_packages),
            diagnostics=list(self.diagnostics),
        )

    def run_engine(self, installed: tuple[str, ...] = ()) -> int:
        """Run one engine pass, recovering from failures if possible.

        Args:
            installed: Packages installed right before this pass; a failure
                that resolves to the same packages again is not retried

        Returns:
            The engine's exit status
        """
        self.engine_runs += 1
        cmd = [self.config.engine, *ENGINE_FLAGS, self.document.name]
        logger.info("Running %s on %s (pass %d)", self.config.engine, self.document.name, self.engine_runs)
        returncode = run_quiet(
            cmd,
            cwd=self.document.directory,
            on_error=lambda: self._recover(installed),
            fail_rerun=False,
        )
        # Some classes end the run with status 0 after a missing package error.
        if returncode == 0 and not self.document.pdf_path.exists():
            self._recover(installed)
        return returncode

    def _recover(self, installed: tuple[str, ...]) -> None:
        log = LogSnapshot.read(self.document.log_path)
        if self._can_install() and log is not None:
            packages = tlmgr.resolve_packages(extract_missing_resources(log.text))
            if packages and tuple(packages) != installed:
                logger.info("Trying to automatically install missing LaTeX packages...")
                if tlmgr.install(packages) == 0:
                    self._record_installed(packages)
                    self.run_engine(installed=tuple(packages))
                    return
        self.keep_log = True
        report_latex_error(self.document)

    def _can_install(self) -> bool:
        return self.config.install_packages and tlmgr.available()

    def _record_installed(self, packages: list[str]) -> None:
        for package in packages:
            if package not in self.installed_packages:
                self.installed_packages.append(package)

    def make_index(self) -> None:
        """Run makeindex if the engine wrote an ``.idx`` file."""
        idx = self.document.idx_path
        if not idx.exists():
            return
        self.index_runs += 1
        logger.info("Running makeindex on %s", idx.name)
        run_quiet(
            ["makeindex", idx.name],
            cwd=self.document.directory,
            on_error=_fail("Failed to build the index via makeindex"),
        )
        self.state = CompilationState.INDEX_DONE

    def make_bibliography(self) -> None:
        """Run bibtex or biber if the document cites anything."""
        bib_engine = self.config.bib_engine
        biber = bib_engine == "biber"
        if self._can_install() and biber and shutil.which("biber") is None:
            if tlmgr.install(["biber"]) == 0:
                self._record_installed(["biber"])

        aux = self.document.bcf_path if biber else self.document.aux_file
        if not aux.exists():
            return
        if not biber and not require_bibtex(aux):
            return

        self._build_bibliography(aux)
        self._check_bibliography(aux)
        self.state = CompilationState.BIB_DONE

    def _build_bibliography(self, aux: Path) -> None:
        bib_engine = self.config.bib_engine
        self.bib_runs += 1
        logger.info("Running %s on %s", bib_engine, aux.name)
        run_quiet(
            [bib_engine, aux.name],
            cwd=self.document.directory,
            on_error=_fail(f"Failed to build the bibliography via {bib_engine}"),
        )

    def _check_bibliography(self, aux: Path) -> None:
        """Look for errors in the ``.blg`` and try to fix missing styles.

        Each repair installs the packages providing the ``.bst`` files the
        bibliography tool could not open and rebuilds. Repairs stop after
        MAX_BIB_REPAIRS, or as soon as a rebuild leaves the log unchanged.
        """
        previous: Optional[LogSnapshot] = None
        repairs = 0
        while True:
            blg = LogSnapshot.read(self.document.blg_path)
            if blg is None or not has_bibliography_error(blg.text):
                return
            if not self._can_install() or repairs >= MAX_BIB_REPAIRS or blg == previous:
                break
            packages = tlmgr.resolve_packages(extract_style_files(blg.text))
            if not packages:
                break
            if tlmgr.install(packages) == 0:
                self._record_installed(packages)
            self._build_bibliography(aux)
            repairs += 1
            previous = blg
        self._warn_bibliography(blg)

    def _warn_bibliography(self, blg: LogSnapshot) -> None:
        bib_engine = self.config.bib_engine
        logger.warning("%s seems to have failed:\n\n%s", bib_engine, blg.text)
        self.diagnostics.append(
            Diagnostic(
                level="warning",
                code="bibliography-failed",
                message=f"{bib_engine} seems to have failed. The bibliography may be incomplete.",
                raw=blg.text,
                file=str(blg.path),
            )
        )

    def rerun_until_converged(self) -> None:
        """Rerun the engine while the log asks for it, at most ``max_passes`` times.

        Running out of passes is not an error: some documents never stop
        asking, and the last output is kept.
        """
        log_path = self.document.log_path
        for _ in range(self.config.max_passes):
            log = LogSnapshot.read(log_path)
            if log is None:
                logger.warning('The LaTeX log file "%s" is not found', log_path)
                self.diagnostics.append(
                    Diagnostic(
                        level="warning",
                        code="log-not-found",
                        message=f'The LaTeX log file "{log_path}" is not found',
                        file=str(log_path),
                    )
                )
            elif not has_rerun_marker(log.text):
                self.state = CompilationState.CONVERGED
                return
            self.run_engine()
        log = LogSnapshot.read(log_path)
        if log is not None and not has_rerun_marker(log.text):
            self.state = CompilationState.CONVERGED
        else:
            self.state = CompilationState.MAX_PASSES_EXCEEDED

    def _clean_up(self, existing: set[Path]) -> None:
        """Delete auxiliary files this run created, keeping the log after a failure."""
        created = self.document.existing_aux_files() - existing
        if self.keep_log:
            created.discard(self.document.log_path)
        for path in created:
            path.unlink(missing_ok=True)


def check_latexmk_version() -> None:
    """Warn if the installed latexmk is older than MIN_LATEXMK_VERSION."""
    try:
        result = subprocess.run(["latexmk", "-v"], capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ToolNotFoundError("latexmk") from e
    match = _LATEXMK_VERSION_RE.search(result.stdout)
    if match is None:
        return
    version = (int(match.group(1)), int(match.group(2)))
    if version >= MIN_LATEXMK_VERSION:
        return
    logger.warning(
        "Your latexmk version (%d.%d) seems to be too low. "
        "You may need to update the latexmk package or your LaTeX distribution.",
        *version,
    )


def _latexmk_usable() -> bool:
    if shutil.which("perl") is None or shutil.which("latexmk") is None:
        return False
    return run_quiet(["latexmk", "-v"]) == 0


def run_latexmk(document: Document, config: EmulationConfig) -> CompileResult:
    """Compile with the real latexmk, then remove its nonessential files.

    Raises:
        CompilationError: If latexmk fails
    """

    def on_error() -> None:
        if config.install_packages:
            logger.warning("Installing missing packages automatically only works in emulation mode")
        check_latexmk_version()
        report_latex_error(document)

    cmd = [
        "latexmk",
        "-pdf",
        "-latexoption=-halt-on-error",
        "-interaction=batchmode",
        f"-pdflatex={config.engine}",
        document.name,
    ]
    logger.info("Running latexmk on %s", document.name)
    run_quiet(cmd, cwd=document.directory, on_error=on_error)
    run(["latexmk", "-c", document.name], cwd=document.directory, quiet=True)

    pdf_path = document.pdf_path
    return CompileResult(
        success=pdf_path.exists(),
        pdf_path=pdf_path if pdf_path.exists() else None,
        engine=config.engine,
        state=CompilationState.CONVERGED,
    )


def latexmk(
    file: Union[str, Path],
    engine: str = "pdflatex",
    bib_engine: str = "bibtex",
    *,
    emulation: Optional[bool] = None,
    max_times: Optional[int] = None,
    install_packages: Optional[bool] = None,
) -> CompileResult:
    """Compile a LaTeX document to PDF.

    Uses the system latexmk when it is available and emulation is off,
    otherwise LatexmkEmulator.

    Args:
        file: Path to the ``.tex`` file
        engine: pdflatex, xelatex or lualatex (pdftex/xetex/luatex are accepted)
        bib_engine: bibtex or biber
        emulation: Force (True) or forbid (False) emulation; None uses it
            only if latexmk is not on PATH
        max_times: Maximum number of reruns for cross-references (default 10)
        install_packages: Install missing packages with tlmgr; None enables
            it when emulating and tlmgr is on PATH

    Returns:
        CompileResult for the produced PDF

    Raises:
        InputError: If ``file`` is not a ``.tex`` file or the engine is unknown
        CompilationError: If compilation failed
    """
    document = Document(Path(file))
    config = EmulationConfig.detect(
        engine=normalize_engine(engine),
        bib_engine=bib_engine,  # type: ignore[arg-type]
        emulation=emulation,
        max_passes=max_times,
        install_packages=install_packages,
    )
    if config.emulation or not _latexmk_usable():
        return LatexmkEmulator(document, config).run()
    return run_latexmk(document, config)


def pdflatex(file: Union[str, Path], **kwargs) -> CompileResult:
    """Compile with pdflatex through the emulation."""
    return latexmk(file, engine="pdflatex", emulation=True, **kwargs)


def xelatex(file: Union[str, Path], **kwargs) -> CompileResult:
    return latexmk(file, engine="xelatex", emulation=True, **kwargs)


def lualatex(file: Union[str, Path], **kwargs) -> CompileResult:
    return latexmk(file, engine="lualatex", emulation=True, **kwargs)
