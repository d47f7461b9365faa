"""Executable discovery utilities for Gem Check.

Node tools used by the build (currently the PostCSS CLI) may be installed
globally or as a project dependency under `node_modules/.bin`.

Functions:
    find_executable: Locate an executable in PATH or node_modules.
"""

from __future__ import annotations

import shutil
from pathlib import Path


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in the project's node_modules or on PATH.

    The project-local binary wins, so the version pinned in package.json is
    used when both exist.

    Args:
        name: Name of the executable to find (e.g., 'postcss').
        project_root: Optional project root directory to search for
            local node_modules installations.

    Returns:
        Full path to the executable if found, None otherwise.

    Examples:
        >>> find_executable('postcss', Path('/my/project'))
        '/my/project/node_modules/.bin/postcss'
    """
    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)

    return shutil.which(name)
