"""HTML post-processing for Gem Check.

Rendered pages may group their scripts and stylesheets in build blocks:

    <!-- build:js vendor.js -->
    <script src="node_modules/a/a.js"></script>
    <script src="src/js/b.js"></script>
    <!-- endbuild -->

Each block's referenced files are concatenated into one file inside the
build directory and the block is replaced by a single tag pointing at it.

Functions:
    process_build_blocks: Concatenate build blocks and rewrite the HTML.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from rjsmin import jsmin

from .renderers import RenderError

_BLOCK_RE = re.compile(
    r"(?P<indent>[ \t]*)<!--\s*build:(?P<kind>js|css)\s+(?P<target>\S+)\s*-->"
    r"(?P<body>.*?)"
    r"<!--\s*endbuild\s*-->",
    re.DOTALL,
)
_SCRIPT_SRC_RE = re.compile(r"<script\b[^>]*\bsrc=[\"']([^\"']+)[\"']", re.IGNORECASE)
_LINK_HREF_RE = re.compile(r"<link\b[^>]*\bhref=[\"']([^\"']+)[\"']", re.IGNORECASE)


@dataclass
class BuildBlock:
    """A build block found in a page.

    Attributes:
        kind: "js" or "css".
        target: Output path of the concatenated file, relative to the build dir.
        sources: Referenced file URLs, in document order.
    """

    kind: str
    target: str
    sources: list[str]

    def tag(self) -> str:
        if self.kind == "js":
            return f'<script src="{self.target}"></script>'
        return f'<link rel="stylesheet" href="{self.target}">'


def find_build_blocks(html: str) -> list[BuildBlock]:
    """Return the build blocks in a document, in order."""
    blocks = []
    for match in _BLOCK_RE.finditer(html):
        pattern = _SCRIPT_SRC_RE if match.group("kind") == "js" else _LINK_HREF_RE
        blocks.append(
            BuildBlock(
                kind=match.group("kind"),
                target=match.group("target"),
                sources=pattern.findall(match.group("body")),
            )
        )
    return blocks


def _resolve_source(url: str, search_paths: Sequence[Path]) -> Path | None:
    rel = url.split("?", 1)[0].split("#", 1)[0].lstrip("/")
    for base in search_paths:
        candidate = base / rel
        if candidate.is_file():
            return candidate
    return None


def process_build_blocks(
    html: str,
    page_path: Path,
    build_dir: Path,
    search_paths: Sequence[Path],
    minify: bool = False,
    output_dir: Path | None = None,
) -> str:
    """Concatenate build blocks into files and rewrite the page.

    Args:
        html: Rendered page HTML.
        page_path: Source path of the page (used in error messages).
        build_dir: Build directory the concatenated files are written to.
        search_paths: Directories referenced files are looked up in, in order.
        minify: Whether to minify concatenated JavaScript.
        output_dir: Directory the rendered page is written to. Relative
            targets are resolved against it, targets starting with `/`
            against build_dir. Defaults to build_dir.

    Returns:
        HTML with every build block replaced by a single tag.

    Raises:
        RenderError: If a referenced file does not exist.
    """

    def repl(match: re.Match) -> str:
        block = find_build_blocks(match.group(0))[0]
        chunks = []
        for url in block.sources:
            source = _resolve_source(url, search_paths)
            if source is None:
                raise RenderError(
                    page_path, f"Build block '{block.target}' references missing file: {url}"
                )
            chunks.append(source.read_text(encoding="utf-8").rstrip("\n"))
        joined = "\n".join(chunks) + "\n" if chunks else ""
        if minify and block.kind == "js":
            joined = jsmin(joined)
        if block.target.startswith("/"):
            dest = build_dir / block.target.lstrip("/")
        else:
            dest = (output_dir or build_dir) / block.target
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(joined, encoding="utf-8")
        return f"{match.group('indent')}{block.tag()}"

    return _BLOCK_RE.sub(repl, html)
