"""Stylesheet processing for Gem Check.

The `styles` task turns `src/styles/main.css` into `build/main.css` plus a
`main.css.map` source map. When a PostCSS CLI is installed (globally or in
`node_modules/.bin`) it does the work; otherwise local `@import` rules are
inlined in-process and a line-level source map is generated.

Key classes:
- StyleRenderer: Renders a stylesheet into the build directory.
- SourceMapBuilder: Collects line mappings and serializes a v3 source map.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .executable_utils import find_executable
from .renderers import RenderError

logger = logging.getLogger(__name__)

_IMPORT_RE = re.compile(
    r"""^\s*@import\s+(?:url\(\s*)?["']?(?P<url>[^"')\s]+)["']?\s*\)?\s*(?P<media>[^;]*);\s*$"""
)
_VLQ_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"


def encode_vlq(value: int) -> str:
    """Encode an integer as a base64 VLQ segment field.

    Examples:
        >>> encode_vlq(0)
        'A'
        >>> encode_vlq(-1)
        'D'
        >>> encode_vlq(16)
        'gB'
    """
    vlq = (-value << 1) | 1 if value < 0 else value << 1
    encoded = ""
    while True:
        digit = vlq & 0b11111
        vlq >>= 5
        if vlq:
            digit |= 0b100000
        encoded += _VLQ_CHARS[digit]
        if not vlq:
            return encoded


class SourceMapBuilder:
    """Builds a v3 source map with one mapping per generated line."""

    def __init__(self, file: str):
        self.file = file
        self.sources: list[str] = []
        self._lines: list[tuple[int, int] | None] = []

    def add_line(self, source: str | None, line: int) -> None:
        """Record the origin of the next generated line.

        Args:
            source: Source name, or None for generated text.
            line: Zero-based line in the source.
        """
        if source is None:
            self._lines.append(None)
            return
        if source not in self.sources:
            self.sources.append(source)
        self._lines.append((self.sources.index(source), line))

    def to_json(self) -> str:
        segments = []
        prev_source = 0
        prev_line = 0
        for entry in self._lines:
            if entry is None:
                segments.append("")
                continue
            source, line = entry
            segments.append(
                encode_vlq(0)
                + encode_vlq(source - prev_source)
                + encode_vlq(line - prev_line)
                + encode_vlq(0)
            )
            prev_source, prev_line = source, line
        payload = {
            "version": 3,
            "file": self.file,
            "sources": self.sources,
            "names": [],
            "mappings": ";".join(segments),
        }
        return json.dumps(payload, separators=(",", ":"))


@dataclass
class StyleResult:
    """Written stylesheet and optional source map."""

    css_path: Path
    map_path: Path | None


class StyleRenderer:
    """Renders a stylesheet into the build directory.

    Attributes:
        project_root: Project root; source map paths are relative to it.
        use_postcss: Whether to prefer an installed PostCSS CLI.
    """

    def __init__(self, project_root: Path, use_postcss: bool = True):
        self.project_root = project_root
        self.use_postcss = use_postcss

    def render(self, source: Path, dest: Path) -> StyleResult:
        """Render `source` into `dest`, writing `dest.map` alongside.

        Args:
            source: Entry stylesheet.
            dest: Output stylesheet path.

        Returns:
            StyleResult with the written paths.

        Raises:
            RenderError: If the stylesheet cannot be processed.
        """
        if not source.is_file():
            raise RenderError(source, "Stylesheet not found")
        dest.parent.mkdir(parents=True, exist_ok=True)

        postcss = find_executable("postcss", self.project_root) if self.use_postcss else None
        if postcss:
            return self._run_postcss(postcss, source, dest)

        map_path = dest.with_name(f"{dest.name}.map")
        source_map = SourceMapBuilder(dest.name)
        lines = []
        for text, origin, number in self._inline(source, stack=()):
            lines.append(text)
            source_map.add_line(origin, number)
        lines.append(f"/*# sourceMappingURL={map_path.name} */")
        source_map.add_line(None, 0)
        dest.write_text("\n".join(lines) + "\n", encoding="utf-8")
        map_path.write_text(source_map.to_json(), encoding="utf-8")
        return StyleResult(css_path=dest, map_path=map_path)

    def _run_postcss(self, postcss: str, source: Path, dest: Path) -> StyleResult:
        cmd = [postcss, str(source), "-o", str(dest), "--map"]
        logger.debug("Running %s", " ".join(cmd))
        result = subprocess.run(cmd, capture_output=True, text=True, cwd=self.project_root)
        if result.returncode != 0:
            raise RenderError(source, f"PostCSS failed: {result.stderr.strip()}")
        map_path = dest.with_name(f"{dest.name}.map")
        return StyleResult(css_path=dest, map_path=map_path if map_path.exists() else None)

    def _source_name(self, path: Path) -> str:
        try:
            return path.relative_to(self.project_root).as_posix()
        except ValueError:
            return path.as_posix()

    def _inline(
        self, path: Path, stack: tuple[Path, ...]
    ) -> list[tuple[str, str, int]]:
        """Return (text, source name, source line) for `path` with local imports inlined."""
        resolved = path.resolve()
        if resolved in stack:
            chain = " -> ".join(self._source_name(p) for p in (*stack, resolved))
            raise RenderError(path, f"Circular @import: {chain}")
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RenderError(path, f"Cannot read stylesheet: {exc}", exc) from exc

        name = self._source_name(path)
        out: list[tuple[str, str, int]] = []
        for number, line in enumerate(text.splitlines()):
            match = _IMPORT_RE.match(line)
            if match and not match.group("url").startswith(("http:", "https:", "//")):
                target = path.parent / match.group("url")
                if not target.is_file():
                    raise RenderError(path, f"@import not found on line {number + 1}: {match.group('url')}")
                media = match.group("media").strip()
                nested = self._inline(target, (*stack, resolved))
                if media:
                    out.append((f"@media {media} {{", name, number))
                    out.extend(nested)
                    out.append(("}", name, number))
                else:
                    out.extend(nested)
                continue
            out.append((line, name, number))
        return out
