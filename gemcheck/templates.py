"""Template rendering engine for Gem Check.

This module uses Jinja2 to render the site's pages. Every `*.jinja` file
under the source directory that is not internal (no `_`-prefixed path
component) becomes one HTML file in the build directory. Markdown content
is pulled into templates with the `markdown` filter:

    {% filter markdown %}{% include "pages/intro.md" %}{% endfilter %}

Key class:
- TemplateEngine: Discovers, renders and writes pages.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
)
from markupsafe import Markup

from .html_utils import process_build_blocks
from .renderers import MarkdownRenderer, RenderError
from .utils import is_internal_path

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("development", "production")


def output_name(rel: Path) -> Path:
    """Map a template path to its output path.

    Examples:
        >>> output_name(Path("index.jinja"))
        PosixPath('index.html')
        >>> output_name(Path("about.html.jinja"))
        PosixPath('about.html')
    """
    stem = rel.name[: -len(".jinja")]
    if not stem.endswith(".html"):
        stem = f"{stem}.html"
    return rel.with_name(stem)


class TemplateEngine:
    """Page rendering engine using Jinja2.

    Attributes:
        project_root: Project root, also the first search path for build blocks.
        src_dir: Directory holding templates and Markdown content.
        build_dir: Directory pages are written to.
        environment: "development" or "production".
        env: Jinja2 environment.
    """

    def __init__(
        self,
        project_root: Path,
        src_dir: Path,
        build_dir: Path,
        environment: str = "development",
        markdown: MarkdownRenderer | None = None,
    ):
        if environment not in ENVIRONMENTS:
            raise ValueError(f"Unknown environment '{environment}'")
        self.project_root = project_root
        self.src_dir = src_dir
        self.build_dir = build_dir
        self.environment = environment
        self.markdown = markdown or MarkdownRenderer()
        self.env = Environment(
            loader=FileSystemLoader(str(src_dir)),
            autoescape=True,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        self._install_globals()

    def _install_globals(self) -> None:
        """Install global variables, functions and filters in the Jinja environment."""
        self.env.globals["environment"] = self.environment
        self.env.globals["production"] = self.environment == "production"
        self.env.globals["markdown_file"] = self._markdown_file
        self.env.filters["markdown"] = self._markdown_filter

    def _markdown_filter(self, text: str) -> Markup:
        return Markup(self.markdown.render(str(text)))

    def _markdown_file(self, name: str) -> Markup:
        """Render a Markdown file below the source directory.

        Args:
            name: Path relative to the source directory.

        Returns:
            Markup-safe rendered HTML.
        """
        return Markup(self.markdown.render_file(self.src_dir / name))

    def iter_pages(self) -> list[Path]:
        """Return page templates relative to the source directory, sorted."""
        if not self.src_dir.exists():
            return []
        pages = []
        for path in self.src_dir.rglob("*.jinja"):
            rel = path.relative_to(self.src_dir)
            if is_internal_path(rel) or not path.is_file():
                continue
            pages.append(rel)
        return sorted(pages)

    def render_page(self, rel: Path, context: dict[str, Any] | None = None) -> str:
        """Render one page template.

        Args:
            rel: Template path relative to the source directory.
            context: Extra template variables.

        Returns:
            Rendered HTML.

        Raises:
            RenderError: If the template cannot be loaded or rendered.
        """
        source_path = self.src_dir / rel
        try:
            template = self.env.get_template(rel.as_posix())
            return template.render(**(context or {}))
        except TemplateSyntaxError as exc:
            raise RenderError(
                Path(exc.filename) if exc.filename else source_path,
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except TemplateNotFound as exc:
            raise RenderError(source_path, f"Template not found: {exc.name}", exc) from exc
        except TemplateError as exc:
            raise RenderError(source_path, f"{type(exc).__name__}: {exc}", exc) from exc

    def render_all(self) -> list[Path]:
        """Render every page into the build directory.

        Build blocks in rendered pages are concatenated into the build
        directory; JavaScript is minified in production.

        Returns:
            List of written HTML files.
        """
        written = []
        search_paths = [self.project_root, self.src_dir]
        for rel in self.iter_pages():
            html = self.render_page(rel)
            dest = self.build_dir / output_name(rel)
            html = process_build_blocks(
                html,
                page_path=self.src_dir / rel,
                build_dir=self.build_dir,
                search_paths=search_paths,
                minify=self.environment == "production",
                output_dir=dest.parent,
            )
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(html, encoding="utf-8")
            written.append(dest)
        logger.debug("Rendered %d page(s)", len(written))
        return written
