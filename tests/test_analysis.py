"""Tests for log analysis functionality."""

from __future__ import annotations

import re

from latexemu.analysis import (
    LogAnalyzer,
    extract_error_blocks,
    extract_missing_resources,
    extract_style_files,
    format_error_blocks,
    has_bibliography_error,
    has_rerun_marker,
)
from latexemu.models import MissingResource


def test_missing_package() -> None:
    """Test detection of a missing .sty file."""
    log = """
! LaTeX Error: File `framed.sty' not found.

Type X to quit or <RETURN> to proceed,
or enter new name. (Default extension: sty)
"""
    resources = extract_missing_resources(log)
    assert [r.token for r in resources] == ["framed.sty"]
    assert resources[0].category == "file"
    assert resources[0].query == r"/framed\.sty"


def test_missing_language_definition() -> None:
    """Test detection of a missing babel language file."""
    log = (
        "! Package babel Error: Unknown option `ngerman'... "
        "the language definition file ngerman.ldf was not found.\n"
    )
    assert [r.token for r in extract_missing_resources(log)] == ["ngerman.ldf"]


def test_font_not_loadable_gets_font_suffix() -> None:
    log = "! Font U/psy/m/n/10=psyr at 10.0pt not loadable: Metric (TFM) file not found.\n"
    resources = extract_missing_resources(log)
    assert len(resources) == 1
    assert resources[0].token == "psyr"
    assert resources[0].category == "font"
    assert resources[0].expression == "psyr[.](tfm|afm|mf|otf)"


def test_font_by_quoted_name() -> None:
    log = '! The font "FandolSong-Regular" cannot be found.\n'
    resources = extract_missing_resources(log)
    assert [r.token for r in resources] == ["FandolSong-Regular"]
    assert resources[0].category == "font"
    assert re.search(resources[0].expression + "$", "FandolSong-Regular.otf")


def test_engine_error_with_file() -> None:
    log = "!pdfTeX error: /usr/local/bin/pdflatex (file tcrm0700): Font tcrm0700 at 600 not found\n"
    resources = extract_missing_resources(log)
    assert [(r.token, r.category) for r in resources] == [("tcrm0700", "font")]


def test_file_with_extension_is_used_verbatim() -> None:
    """The same file reported by two rules is only listed once."""
    log = "!pdfTeX error: pdflatex (file 8r.enc): cannot open encoding file for reading\n"
    resources = extract_missing_resources(log)
    assert [(r.token, r.expression) for r in resources] == [("8r.enc", r"8r\.enc")]


def test_install_hint_gets_sty_suffix() -> None:
    log = "Package widetext error: Install the flushend package which is a part of sttools\n"
    resources = extract_missing_resources(log)
    assert [(r.token, r.category) for r in resources] == [("flushend.sty", "style")]


def test_ctex_fontset_and_missing_command() -> None:
    log = (
        "! CTeX fontset `fandol' is unavailable in current mode\n"
        "/usr/local/bin/mktexpk: line 123: mf: command not found\n"
    )
    resources = extract_missing_resources(log)
    assert [(r.token, r.category) for r in resources] == [("fandol", "file"), ("mf", "binary")]


def test_resources_are_ordered_by_rule_and_deduplicated() -> None:
    log = (
        "! LaTeX Error: File `framed.sty' not found.\n"
        "/usr/local/bin/mktexpk: line 123: mf: command not found\n"
        "! Font U/psy/m/n/10=psyr at 10.0pt not loadable: Metric (TFM) file not found.\n"
        "! LaTeX Error: File `framed.sty' not found.\n"
    )
    assert [r.token for r in extract_missing_resources(log)] == ["psyr", "framed.sty", "mf"]


def test_custom_rule() -> None:
    analyzer = LogAnalyzer()
    analyzer.add_rule(
        re.compile(r"Missing (\S+) file"),
        lambda token: MissingResource(token=token, category="file", expression=re.escape(token)),
    )
    assert [r.token for r in analyzer.missing_resources("Missing foo.cfg file\n")] == ["foo.cfg"]


def test_empty_log() -> None:
    """Test that empty logs return no resources."""
    assert extract_missing_resources("") == []


def test_successful_compilation_log() -> None:
    """Test that successful compilation logs produce no signals."""
    log = r"""
This is pdfTeX, Version 3.14159265-2.6-1.40.21 (TeX Live 2020)
entering extended mode
(./test.tex
LaTeX2e <2020-02-02> patch level 5
Document Class: article 2019/12/20 v1.4l Standard LaTeX document class
(./test.aux)
No file test.aux.
)
Output written on test.pdf (1 page, 12345 bytes).
Transcript written on test.log.
"""
    assert extract_missing_resources(log) == []
    assert extract_error_blocks(log) == []
    assert not has_rerun_marker(log)


def test_rerun_markers() -> None:
    assert has_rerun_marker("LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.\n")
    assert has_rerun_marker("Package biblatex Warning: Please (re)run Biber on the file:\n(biblatex) paper\n")
    assert not has_rerun_marker("LaTeX Warning: There were undefined references.\n")
    assert not has_rerun_marker("Rerun")


def test_error_blocks() -> None:
    log = r"""(./paper.tex
! Undefined control sequence.
l.5 \foo
        {bar}

Here is how much of TeX's memory you used:
! Emergency stop.
<*> paper.tex
!  ==> Fatal error occurred, no output PDF file produced!
"""
    blocks = extract_error_blocks(log)
    assert blocks == [
        "! Undefined control sequence.\nl.5 \\foo\n        {bar}",
        "! Emergency stop.\n<*> paper.tex\n!  ==> Fatal error occurred, no output PDF file produced!",
    ]
    assert format_error_blocks(blocks).count("\n\n") == 1


def test_error_block_runs_to_end_of_log() -> None:
    log = "! LaTeX Error: File `framed.sty' not found.\nType X to quit"
    assert extract_error_blocks(log) == [log]


def test_fatal_marker_alone_is_not_an_error_block() -> None:
    assert extract_error_blocks("!  ==> Fatal error occurred, no output PDF file produced!\n") == []


def test_bibliography_log_signals() -> None:
    blg = (
        "The top-level auxiliary file: paper.aux\n"
        "I couldn't open style file IEEEtran.bst\n"
        "---line 3 of file paper.aux\n"
        "(There was 1 error message)\n"
    )
    assert has_bibliography_error(blg)
    assert [r.token for r in extract_style_files(blg)] == ["IEEEtran.bst"]
    assert not has_bibliography_error("Database file #1: refs.bib\n")
    assert extract_style_files("Database file #1: refs.bib\n") == []
