"""Signal extraction from LaTeX, makeindex and bibtex/biber logs."""

from __future__ import annotations

import re
from typing import Callable

from latexemu.models import MissingResource

# Type alias for a rule handler: captured token -> resource
RuleHandler = Callable[[str], MissingResource]

FONT_SUFFIX = "[.](tfm|afm|mf|otf)"

_RERUN_RE = re.compile(r"(Rerun to get|Please \(re\)run) ")
_STYLE_FILE_RE = re.compile(r" open style file ([^ ]+)")
_FATAL_MARKER = "==> Fatal error occurred"


def _font_resource(token: str) -> MissingResource:
    """Fonts are often reported without an extension; search all font formats."""
    if "." in token:
        return _file_resource(token)
    return MissingResource(token=token, category="font", expression=re.escape(token) + FONT_SUFFIX)


def _style_resource(token: str) -> MissingResource:
    name = f"{token}.sty"
    return MissingResource(token=name, category="style", expression=re.escape(name))


def _file_resource(token: str) -> MissingResource:
    return MissingResource(token=token, category="file", expression=re.escape(token))


def _binary_resource(token: str) -> MissingResource:
    return MissingResource(token=token, category="binary", expression=re.escape(token))


class LogAnalyzer:
    """Finds the names of missing files, fonts and programs in a LaTeX log."""

    def __init__(self) -> None:
        """Initialize the analyzer with default rules."""
        self.rules: list[tuple[re.Pattern[str], RuleHandler]] = []
        self._register_default_rules()

    def _register_default_rules(self) -> None:
        """Register the default extraction rules.

        Typical log lines these catch:

            ! Font U/psy/m/n/10=psyr at 10.0pt not loadable: Metric (TFM) file not found
            ! The font "FandolSong-Regular" cannot be found.
            !pdfTeX error: /usr/local/bin/pdflatex (file tcrm0700): Font tcrm0700 at 600 not found
            Package widetext error: Install the flushend package which is a part of sttools
            ! LaTeX Error: File `framed.sty' not found.
            (babel) or the language definition file ngerman.ldf was not found.
            !pdfTeX error: pdflatex (file 8r.enc): cannot open encoding file for reading
            ! CTeX fontset `fandol' is unavailable in current mode
            /usr/local/bin/mktexpk: line 123: mf: command not found
        """
        self.add_rule(re.compile(r"! Font [^=]+=([^ ]+).+ not loadable"), _font_resource)
        self.add_rule(re.compile(r'! The font "([^"]+)" cannot be found'), _font_resource)
        self.add_rule(re.compile(r"!.+ error:.+\(file ([^)]+)\): "), _font_resource)
        self.add_rule(re.compile(r"Package widetext error: Install the ([^ ]+) package"), _style_resource)
        self.add_rule(re.compile(r"! LaTeX Error: File `([^']+)' not found"), _file_resource)
        self.add_rule(re.compile(r"the language definition file ([^ ]+) "), _file_resource)
        self.add_rule(re.compile(r" \(file ([^)]+)\): cannot open "), _file_resource)
        self.add_rule(re.compile(r"! CTeX fontset `([^']+)' is unavailable"), _file_resource)
        self.add_rule(re.compile(r": ([^:]+): command not found"), _binary_resource)

    def add_rule(self, pattern: re.Pattern[str], handler: RuleHandler) -> None:
        """Add a new extraction rule.

        Args:
            pattern: Regex with exactly one capture group, matched against each log line
            handler: Function turning the captured token into a MissingResource
        """
        self.rules.append((pattern, handler))

    def missing_resources(self, log: str) -> list[MissingResource]:
        """Extract missing resources in rule order, then line order.

        Args:
            log: The full log text

        Returns:
            Resources de-duplicated by search expression, first occurrence kept
        """
        lines = log.splitlines()
        found: dict[str, MissingResource] = {}
        for pattern, handler in self.rules:
            for line in lines:
                match = pattern.search(line)
                if match is None:
                    continue
                resource = handler(match.group(1))
                found.setdefault(resource.expression, resource)
        return list(found.values())


# Global analyzer instance
_analyzer = LogAnalyzer()


def extract_missing_resources(log: str) -> list[MissingResource]:
    """Find the missing files, fonts and programs reported in a LaTeX log.

    This is the main entry point for package detection.

    Args:
        log: The full compilation log text

    Returns:
        An ordered list of MissingResource objects without duplicates
    """
    return _analyzer.missing_resources(log)


def extract_style_files(blg: str) -> list[MissingResource]:
    """Find the ``.bst`` files bibtex could not open."""
    found: dict[str, MissingResource] = {}
    for line in blg.splitlines():
        match = _STYLE_FILE_RE.search(line)
        if match:
            resource = _file_resource(match.group(1))
            found.setdefault(resource.expression, resource)
    return list(found.values())


def has_rerun_marker(log: str) -> bool:
    """Return True if the engine asks for another pass."""
    return any(_RERUN_RE.search(line) for line in log.splitlines())


def has_bibliography_error(blg: str) -> bool:
    """Return True if a bibtex or biber log reports errors."""
    return any("error message" in line for line in blg.splitlines())


def extract_error_blocks(log: str) -> list[str]:
    """Collect the ``! ...`` error messages of a LaTeX log.

    Each block runs from a line starting with ``! `` up to the next blank line
    (or the end of the log). The trailing ``==> Fatal error occurred`` line is
    skipped since it only repeats that compilation stopped.

    Args:
        log: The full compilation log text

    Returns:
        Error blocks in log order, each a newline-joined string
    """
    lines = log.splitlines()
    blocks: list[str] = []
    for i, line in enumerate(lines):
        if not line.startswith("! ") or _FATAL_MARKER in line:
            continue
        end = i + 1
        while end < len(lines) and lines[end].strip():
            end += 1
        blocks.append("\n".join(lines[i:end]))
    return blocks


def format_error_blocks(blocks: list[str]) -> str:
    """Join error blocks with a blank line between them."""
    return "\n\n".join(blocks)
