"""Shared fixtures: a fake TeX Live installation driven through subprocess.run."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional
from unittest.mock import patch

import pytest

ENGINES = ("pdflatex", "xelatex", "lualatex")


@dataclass
class EnginePass:
    """What one engine invocation does: exit status, log text, PDF or not."""

    status: int = 0
    log: Optional[str] = "Output written on paper.pdf (1 page).\n"
    pdf: bool = True


@dataclass
class FakeTexLive:
    """Stands in for subprocess.run and acts on the working directory like TeX Live.

    Engine passes are taken from ``passes`` in order; the last one repeats.
    """

    workdir: Path
    passes: list[EnginePass] = field(default_factory=lambda: [EnginePass()])
    engine_files: dict[str, str] = field(default_factory=lambda: {"aux": "\\relax\n"})
    blg_texts: list[str] = field(default_factory=lambda: ["Database file #1: refs.bib\n"])
    search_results: dict[str, list[str]] = field(default_factory=dict)
    statuses: dict[str, int] = field(default_factory=dict)
    latexmk_version: str = "4.83"
    tlmgr_installed: bool = True
    calls: list[list[str]] = field(default_factory=list)

    def count(self, tool: str) -> int:
        return sum(1 for cmd in self.calls if cmd[0] == tool)

    def commands(self, tool: str) -> list[list[str]]:
        return [cmd for cmd in self.calls if cmd[0] == tool]

    def __call__(self, cmd, cwd=None, **kwargs) -> subprocess.CompletedProcess:
        cmd = [str(arg) for arg in cmd]
        self.calls.append(cmd)
        tool = cmd[0]
        if tool == "tlmgr" and not self.tlmgr_installed:
            raise FileNotFoundError(tool)
        cwd = Path(cwd) if cwd is not None else self.workdir
        if tool in ENGINES:
            return self._engine(cmd, cwd)
        if tool == "tlmgr" and cmd[1] == "search":
            lines = self.search_results.get(cmd[-1], [])
            stdout = "".join(f"{line}\n" for line in lines)
            return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")
        if tool == "makeindex":
            base = Path(cmd[-1]).stem
            (cwd / f"{base}.ind").write_text("\\begin{theindex}\n\\end{theindex}\n")
            (cwd / f"{base}.ilg").write_text("Generating output file\n")
        if tool in ("bibtex", "biber"):
            base = Path(cmd[-1]).stem
            index = min(self.count(tool), len(self.blg_texts)) - 1
            (cwd / f"{base}.bbl").write_text("\\begin{thebibliography}{1}\n\\end{thebibliography}\n")
            (cwd / f"{base}.blg").write_text(self.blg_texts[index])
        if tool == "latexmk":
            return self._latexmk(cmd, cwd)
        return subprocess.CompletedProcess(cmd, self.statuses.get(tool, 0), stdout="", stderr="")

    def _engine(self, cmd: list[str], cwd: Path) -> subprocess.CompletedProcess:
        index = min(self.count(cmd[0]), len(self.passes)) - 1
        engine_pass = self.passes[index]
        base = Path(cmd[-1]).stem
        if engine_pass.log is not None:
            (cwd / f"{base}.log").write_text(engine_pass.log)
        for ext, text in self.engine_files.items():
            (cwd / f"{base}.{ext}").write_text(text)
        if engine_pass.pdf:
            (cwd / f"{base}.pdf").write_text(f"pdf from pass {index + 1}")
        return subprocess.CompletedProcess(cmd, engine_pass.status, stdout=None, stderr=None)

    def _latexmk(self, cmd: list[str], cwd: Path) -> subprocess.CompletedProcess:
        if cmd[1] == "-v":
            stdout = f"Latexmk, John Collins, 7 Apr. 2023. Version {self.latexmk_version}\n"
            return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")
        status = self.statuses.get("latexmk", 0)
        if cmd[1] != "-c" and status == 0:
            (cwd / f"{Path(cmd[-1]).stem}.pdf").write_text("pdf from latexmk")
        return subprocess.CompletedProcess(cmd, status, stdout="", stderr="")


@pytest.fixture
def tex_file(tmp_path: Path) -> Path:
    """Create a temporary .tex file for testing."""
    tex = tmp_path / "paper.tex"
    tex.write_text(r"\documentclass{article}\begin{document}Test\end{document}")
    return tex


@pytest.fixture
def texlive(tmp_path: Path) -> Iterator[FakeTexLive]:
    """Route every subprocess.run call to a FakeTexLive working in tmp_path."""
    fake = FakeTexLive(workdir=tmp_path)
    with patch("latexemu.runner.subprocess.run", side_effect=fake), patch(
        "latexemu.tlmgr._find_tlmgr",
        side_effect=lambda: "/usr/bin/tlmgr" if fake.tlmgr_installed else None,
    ):
        yield fake
