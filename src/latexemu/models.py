"""Data models for documents, log signals and compilation results."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from latexemu.errors import InputError

EngineName = Literal["pdflatex", "xelatex", "lualatex"]
BibEngineName = Literal["bibtex", "biber"]
ResourceCategory = Literal["file", "font", "style", "binary"]

# Byproducts of the engine, makeindex and bibtex/biber, in this order.
AUX_EXTENSIONS: tuple[str, ...] = (
    "log", "aux", "bbl", "blg", "fls", "out", "lof", "lot", "idx", "toc",
    "nav", "snm", "vrb", "ilg", "ind", "xwm", "bcf", "brf", "run.xml",
)

DEFAULT_MAX_PASSES = 10


@dataclass(frozen=True)
class Document:
    """A LaTeX source file and the files derived from its base name."""

    path: Path

    def __post_init__(self) -> None:
        path = Path(self.path)
        if path.suffix != ".tex":
            raise InputError(f"The input file '{path}' does not appear to be a LaTeX document")
        object.__setattr__(self, "path", path)

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def name(self) -> str:
        """File name without directory; external tools are run on this."""
        return self.path.name

    @property
    def base(self) -> str:
        return self.path.stem

    def aux_path(self, ext: str) -> Path:
        """Return ``<directory>/<base>.<ext>``."""
        return self.directory / f"{self.base}.{ext}"

    @property
    def aux_files(self) -> list[Path]:
        return [self.aux_path(ext) for ext in AUX_EXTENSIONS]

    @property
    def log_path(self) -> Path:
        return self.aux_path("log")

    @property
    def aux_file(self) -> Path:
        return self.aux_path("aux")

    @property
    def bcf_path(self) -> Path:
        return self.aux_path("bcf")

    @property
    def blg_path(self) -> Path:
        return self.aux_path("blg")

    @property
    def idx_path(self) -> Path:
        return self.aux_path("idx")

    @property
    def pdf_path(self) -> Path:
        return self.aux_path("pdf")

    def existing_aux_files(self) -> set[Path]:
        """Auxiliary files currently present on disk."""
        return {path for path in self.aux_files if path.is_file()}


@dataclass(frozen=True)
class LogSnapshot:
    """Text of a log file at one point in time."""

    path: Path
    text: str

    @classmethod
    def read(cls, path: Path) -> Optional[LogSnapshot]:
        """Read a log, or return None if it does not exist.

        TeX logs are not reliably UTF-8, so undecodable bytes are replaced.
        """
        if not path.is_file():
            return None
        return cls(path=path, text=path.read_text(encoding="utf-8", errors="replace"))


@dataclass(frozen=True)
class MissingResource:
    """A file, font or program a log says could not be found.

    ``expression`` is the regular expression used to look the resource up in
    the package index; it is the escaped token unless the token had to be
    disambiguated (fonts without an extension).
    """

    token: str
    category: ResourceCategory
    expression: str

    @property
    def query(self) -> str:
        return f"/{self.expression}"


@dataclass(frozen=True)
class PackageCandidate:
    """A package that provides a missing resource."""

    name: str
    token: str


class CompilationState(str, Enum):
    """States of the emulated latexmk run."""

    INIT = "init"
    ENGINE_RAN = "engine-ran"
    INDEX_DONE = "index-done"
    BIB_DONE = "bib-done"
    CONVERGED = "converged"
    MAX_PASSES_EXCEEDED = "max-passes-exceeded"


@dataclass
class EmulationConfig:
    """Tunables for one compilation."""

    engine: EngineName = "pdflatex"
    bib_engine: BibEngineName = "bibtex"
    emulation: bool = True
    max_passes: int = DEFAULT_MAX_PASSES
    install_packages: bool = False

    @classmethod
    def detect(
        cls,
        engine: EngineName = "pdflatex",
        bib_engine: BibEngineName = "bibtex",
        emulation: Optional[bool] = None,
        max_passes: Optional[int] = None,
        install_packages: Optional[bool] = None,
    ) -> EmulationConfig:
        """Build a config, filling unset values from what is on PATH.

        Emulation is used when latexmk is not installed, and packages are
        installed automatically only when emulating and tlmgr is available.
        """
        if emulation is None:
            emulation = shutil.which("latexmk") is None
        if max_passes is None:
            max_passes = DEFAULT_MAX_PASSES
        if install_packages is None:
            install_packages = emulation and shutil.which("tlmgr") is not None
        if bib_engine not in ("bibtex", "biber"):
            raise InputError(f"Invalid bibliography engine '{bib_engine}'. Must be 'bibtex' or 'biber'.")
        return cls(
            engine=engine,
            bib_engine=bib_engine,
            emulation=emulation,
            max_passes=max_passes,
            install_packages=install_packages,
        )


@dataclass
class Diagnostic:
    """A diagnostic message produced while compiling."""

    level: Literal["error", "warning", "info"]
    code: str
    message: str
    raw: str = ""
    file: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert diagnostic to a dictionary for JSON serialization."""
        return {
            "level": self.level,
            "code": self.code,
            "message": self.message,
            "raw": self.raw,
            "file": self.file,
        }


@dataclass
class CompileResult:
    """Outcome of a compilation that produced output."""

    success: bool
    pdf_path: Optional[Path] = None
    engine: str = ""
    state: CompilationState = CompilationState.INIT
    engine_runs: int = 0
    index_runs: int = 0
    bib_runs: int = 0
    installed_packages: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.level == "warning"]

    def to_dict(self) -> dict:
        """Convert result to a dictionary for JSON serialization."""
        return {
            "success": self.success,
            "pdf_path": str(self.pdf_path) if self.pdf_path else None,
            "engine": self.engine,
            "state": self.state.value,
            "engine_runs": self.engine_runs,
            "index_runs": self.index_runs,
            "bib_runs": self.bib_runs,
            "installed_packages": list(self.installed_packages),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
