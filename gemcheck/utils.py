"""Utility functions for Gem Check.

Path and glob helpers shared by the copy collaborator, the page renderer
and the watch coordinator.

Key functions:
    expand_braces: Expand `{a,b}` alternatives in a glob pattern.
    glob_base: Return the literal directory prefix of a glob.
    glob_to_regex: Compile a `**`-aware glob into a regular expression.
    match_glob: Check a relative path against a glob pattern.
    clear_dir: Empty a directory while keeping hidden entries.
    is_internal_path: Check for `_`-prefixed path components.
"""

from __future__ import annotations

import functools
import re
import shutil
from pathlib import Path, PurePosixPath

_BRACE_RE = re.compile(r"\{([^{}]*)\}")
_GLOB_CHARS = set("*?[{")


def expand_braces(pattern: str) -> list[str]:
    """Expand brace alternatives in a glob pattern.

    Args:
        pattern: Glob pattern, possibly containing `{a,b}` groups.

    Returns:
        List of patterns with every brace group expanded.

    Examples:
        >>> expand_braces("src/*.{xml,png}")
        ['src/*.xml', 'src/*.png']
    """
    match = _BRACE_RE.search(pattern)
    if not match:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(f"{head}{option}{tail}"))
    return expanded


def glob_base(pattern: str) -> str:
    """Return the leading path of a glob that contains no wildcards.

    Files matched by the glob are copied relative to this base, the same way
    gulp.src computes its base.

    Args:
        pattern: Posix-style glob pattern.

    Returns:
        Literal directory prefix (may be an empty string).

    Examples:
        >>> glob_base("src/images/**/*")
        'src/images'
        >>> glob_base("src/CNAME")
        'src'
    """
    parts = PurePosixPath(pattern).parts
    literal: list[str] = []
    for part in parts[:-1]:
        if _GLOB_CHARS & set(part):
            break
        literal.append(part)
    return "/".join(literal)


@functools.lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a posix glob into a compiled regular expression.

    Supports `**` (any number of directories), `*`, `?`, character classes
    and brace alternatives.
    """
    alternatives = []
    for expanded in expand_braces(pattern):
        out = []
        i = 0
        while i < len(expanded):
            char = expanded[i]
            if expanded.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
                continue
            if expanded.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            if char == "*":
                out.append("[^/]*")
            elif char == "?":
                out.append("[^/]")
            elif char == "[":
                end = expanded.find("]", i + 1)
                if end == -1:
                    out.append(re.escape(char))
                else:
                    body = expanded[i + 1 : end].replace("\\", "\\\\")
                    if body.startswith("!"):
                        body = "^" + body[1:]
                    out.append(f"[{body}]")
                    i = end
            else:
                out.append(re.escape(char))
            i += 1
        alternatives.append("".join(out))
    return re.compile("(?:" + "|".join(alternatives) + r")\Z")


def match_glob(path: str | PurePosixPath, pattern: str) -> bool:
    """Check whether a relative posix path matches a glob pattern.

    Args:
        path: Path relative to the project root.
        pattern: Glob pattern relative to the project root.

    Returns:
        True if the whole path matches.
    """
    return glob_to_regex(pattern).match(str(path)) is not None


def clear_dir(path: Path) -> None:
    """Remove every visible entry of a directory.

    Entries whose name starts with a dot (such as a `.git` checkout of the
    deployed site) are kept. The directory is created if missing.

    Args:
        path: Directory to clear.
    """
    path.mkdir(parents=True, exist_ok=True)
    for item in sorted(path.iterdir()):
        if item.name.startswith("."):
            continue
        if item.is_dir() and not item.is_symlink():
            shutil.rmtree(item)
        else:
            item.unlink()


def is_internal_path(path: Path) -> bool:
    """Check if a path is internal (contains components starting with _).

    Internal paths hold layouts and partials that are only included by
    other templates.

    Args:
        path: Path to check.

    Returns:
        True if any path component starts with underscore.
    """
    return any(part.startswith("_") for part in path.parts)
