"""
Package manifests — plain-text package lists with includes.

Format::

    # comment
    base-devel
    @packages-minimal.txt      # include, relative to this file
    docker

The effective list keeps first-seen order and drops duplicates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from agentvm.core.errors import ManifestError

logger = logging.getLogger(__name__)

INCLUDE_PREFIX = "@"
COMMENT_PREFIX = "#"


@dataclass
class ResolvedManifest:
    """Effective package list plus the files that contributed to it."""

    path: Path
    packages: list[str] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "manifest": str(self.path),
            "files": [str(f) for f in self.files],
            "count": len(self.packages),
            "packages": self.packages,
        }


def parse_line(line: str) -> str:
    """Strip comments and whitespace from one manifest line."""
    return line.split(COMMENT_PREFIX, 1)[0].strip()


def resolve_manifest(path: Path) -> ResolvedManifest:
    """Resolve a manifest and all its includes.

    Raises:
        ManifestError: On a missing/unreadable file, an empty include
            directive, or an include cycle.
    """
    resolved = ResolvedManifest(path=path)
    seen: set[str] = set()
    _resolve_into(path.resolve(), resolved, seen, stack=[])
    logger.debug(
        "Resolved manifest %s: %d packages from %d files",
        path,
        len(resolved.packages),
        len(resolved.files),
    )
    return resolved


def _resolve_into(
    path: Path,
    resolved: ResolvedManifest,
    seen: set[str],
    stack: list[Path],
) -> None:
    if path in stack:
        chain = " -> ".join(p.name for p in [*stack, path])
        raise ManifestError(f"Manifest include cycle: {chain}")

    if not path.is_file():
        if stack:
            raise ManifestError(f"Included manifest not found: {path} (from {stack[-1]})")
        raise ManifestError(f"Manifest not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e

    if path not in resolved.files:
        resolved.files.append(path)

    stack.append(path)
    for lineno, raw in enumerate(text.splitlines(), start=1):
        entry = parse_line(raw)
        if not entry:
            continue
        if entry.startswith(INCLUDE_PREFIX):
            name = entry[len(INCLUDE_PREFIX):].strip()
            if not name:
                raise ManifestError(f"{path}:{lineno}: empty include directive")
            _resolve_into((path.parent / name).resolve(), resolved, seen, stack)
            continue
        if entry not in seen:
            seen.add(entry)
            resolved.packages.append(entry)
    stack.pop()


def effective_packages(path: Path) -> list[str]:
    """Shorthand for ``resolve_manifest(path).packages``."""
    return resolve_manifest(path).packages


# ── Bundled manifests ───────────────────────────────────────────

BUNDLED_DIR = Path(__file__).resolve().parents[1] / "data" / "packages"


def bundled_names() -> list[str]:
    """Names of the manifests shipped with agentvm (minimal, standard, …)."""
    return sorted(
        p.stem.removeprefix("packages-") for p in BUNDLED_DIR.glob("packages-*.txt")
    )


def bundled_path(name: str) -> Path:
    return BUNDLED_DIR / f"packages-{name}.txt"


def locate_manifest(spec: str, base_dir: Path) -> Path:
    """Map a manifest reference to a file.

    ``spec`` is either a bundled name (``standard``) or a path, relative
    paths resolving against ``base_dir``.
    """
    if spec in bundled_names():
        return bundled_path(spec)
    path = Path(spec).expanduser()
    return path if path.is_absolute() else base_dir / path
