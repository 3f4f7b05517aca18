"""Bridge to the TeX Live package manager: search, resolve and install."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from typing import Iterable, Optional

from latexemu.errors import ToolNotFoundError
from latexemu.models import MissingResource, PackageCandidate
from latexemu.runner import run

logger = logging.getLogger(__name__)

# Resolved without asking tlmgr.
KNOWN_PACKAGES = frozenset({"fandol"})

# Leading lines of search output that never name a file.
_HEADER_LINES = 2


def _find_tlmgr() -> Optional[str]:
    return shutil.which("tlmgr")


def available() -> bool:
    """Check if tlmgr is on PATH."""
    return _find_tlmgr() is not None


def search(query: str) -> list[str]:
    """Search the package index for files matching ``query``.

    The output groups file paths under the package that contains them::

        tlmgr: package repository https://mirror.ctan.org/systems/texlive/tlnet (verified)
        metafont.x86_64-linux:
                bin/x86_64-linux/mf

    Returns:
        The output lines, empty if nothing matched
    """
    cmd = ["tlmgr", "search", "--file", "--global", query]
    logger.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ToolNotFoundError("tlmgr") from e
    return result.stdout.splitlines()


def install(packages: Iterable[str]) -> int:
    """Install packages and return tlmgr's exit status."""
    packages = list(packages)
    logger.info("Installing LaTeX packages: %s", " ".join(packages))
    return run(["tlmgr", "install", *packages])


def _owning_packages(lines: list[str], resource: MissingResource) -> list[str]:
    """Return the package of every line ending exactly in ``/<expression>``.

    A plain substring match is not enough: ``/mf`` also matches
    ``bin/x86_64-linux/mfplain``, which belongs to metapost, not metafont.
    """
    suffix = re.compile(f"/{resource.expression}$")
    owners: list[str] = []
    current: Optional[str] = None
    for i, line in enumerate(lines):
        line = line.rstrip()
        if line.endswith(":"):
            current = line[:-1].strip()
            continue
        if i < _HEADER_LINES or not suffix.search(line):
            continue
        if current is not None:
            owners.append(current)
    return owners


def resolve_candidates(resources: Iterable[MissingResource]) -> list[PackageCandidate]:
    """Map missing resources to the packages that provide them.

    Resources that cannot be resolved are logged and skipped.
    """
    resources = list(resources)
    if not resources:
        logger.info("I was unable to find any missing LaTeX packages from the error log.")
        return []

    candidates: list[PackageCandidate] = []
    for resource in resources:
        if resource.token in KNOWN_PACKAGES:
            candidates.append(PackageCandidate(name=resource.token, token=resource.token))
            continue
        lines = search(resource.query)
        owners = _owning_packages(lines, resource) if lines else []
        if not owners:
            logger.warning("Failed to find a package that contains %s", resource.token)
            continue
        for owner in owners:
            # e.g. metafont.x86_64-linux -> metafont
            name = owner.split(".", 1)[0]
            candidates.append(PackageCandidate(name=name, token=resource.token))
    return candidates


def resolve_packages(resources: Iterable[MissingResource]) -> list[str]:
    """Return the de-duplicated package names needed for ``resources``."""
    names = [candidate.name for candidate in resolve_candidates(resources)]
    return list(dict.fromkeys(names))
