"""Copy and clean collaborators for Gem Check.

These are the file operations behind the `copy:*` and `clean` tasks. Files
are copied verbatim; each matched file keeps its path below the literal
base directory of the glob that matched it.

Key functions:
- copy_files: Copy files matching glob patterns into a destination directory.
- clean_output: Empty the build directory.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from .utils import clear_dir, expand_braces, glob_base

logger = logging.getLogger(__name__)


def iter_matches(patterns: Iterable[str], root: Path) -> list[tuple[Path, Path]]:
    """Resolve glob patterns to files.

    Args:
        patterns: Glob patterns relative to root, braces allowed.
        root: Directory the patterns are relative to.

    Returns:
        Sorted list of (source path, path relative to the glob base) pairs.
    """
    matches: dict[Path, Path] = {}
    for pattern in patterns:
        for expanded in expand_braces(pattern):
            base = root / glob_base(expanded)
            for source in root.glob(expanded):
                if not source.is_file():
                    continue
                matches.setdefault(source, source.relative_to(base))
    return sorted(matches.items())


def copy_files(patterns: Iterable[str], dest_dir: Path, root: Path) -> list[Path]:
    """Copy files matching the patterns into dest_dir.

    Args:
        patterns: Glob patterns relative to root.
        dest_dir: Destination directory.
        root: Project root the patterns are relative to.

    Returns:
        List of written destination paths.

    Raises:
        OSError: If a file cannot be read or written.
    """
    written = []
    for source, rel in iter_matches(patterns, root):
        dest = dest_dir / rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest)
        written.append(dest)
    logger.debug("Copied %d file(s) into %s", len(written), dest_dir)
    return written


def clean_output(build_dir: Path) -> None:
    """Remove the contents of the build directory, keeping hidden entries."""
    clear_dir(build_dir)
