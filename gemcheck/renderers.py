"""Markdown rendering for Gem Check.

Checklist content is authored in Markdown and embedded into page templates
through the `markdown` filter. Rendering supports raw HTML, autolinks,
tables, footnotes, strikethrough, task-list checkboxes, `::: caption`
containers and Pygments highlighting of fenced code.

Key classes:
- RenderError: Error raised by content and style transforms.
- MarkdownRenderer: Renders Markdown documents to HTML.
"""

from __future__ import annotations

import re
from pathlib import Path

import mistune
from markupsafe import escape


class RenderError(Exception):
    """Error while transforming a source file.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


_CONTAINERS = ("caption",)
_CONTAINER_PATTERN = (
    r"^ {0,3}(?P<container_mark>:{3,})[ \t]*"
    r"(?P<container_name>" + "|".join(_CONTAINERS) + r")\b[^\n]*$"
)


def _parse_container(block, m, state) -> int:
    """Parse a `::: name` ... `:::` block into a container token.

    The body is parsed as block content of the same document, so reference
    links and footnotes resolve across the container boundary. A container
    without a closing marker runs to the end of the document.
    """
    mark = m.group("container_mark")
    start = m.end() + 1
    end_re = re.compile(r"^ {0,3}:{%d,}[ \t]*(?:\n|$)" % len(mark), re.M)
    end_m = end_re.search(state.src, start)
    if end_m:
        text = state.src[start : end_m.start()]
        end_pos = end_m.end()
    else:
        text = state.src[start:]
        end_pos = state.cursor_max

    child = state.child_state(text)
    block.parse(child)
    state.append_token(
        {
            "type": "container",
            "attrs": {"name": m.group("container_name")},
            "children": child.tokens,
        }
    )
    return end_pos


def containers(md) -> None:
    """mistune plugin adding `::: caption` containers."""
    md.block.register("container", _CONTAINER_PATTERN, _parse_container)


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text.

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _ChecklistRenderer(mistune.HTMLRenderer):
    """HTML renderer with heading ids, checkboxes and code highlighting.

    Attributes:
        headings: (id, text, level) tuples in document order.
    """

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[tuple[str, str, int]] = []
        self._heading_id_counts: dict[str, int] = {}
        self._checkbox_count = 0

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text)

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        self.headings.append((heading_id, text, level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def task_list_item(self, text: str, checked: bool = False, **attrs) -> str:
        """Render a `- [ ]` item as a labelled checkbox."""
        checkbox_id = f"checkbox{self._checkbox_count}"
        self._checkbox_count += 1
        state = " checked" if checked else ""
        # Loose list items wrap their text in a paragraph; keep the label inline.
        body = text.strip()
        if body.startswith("<p>") and body.endswith("</p>") and body.count("<p>") == 1:
            body = body[3:-4]
        return (
            f'<li><input type="checkbox" id="{checkbox_id}"{state}>'
            f'<label for="{checkbox_id}">{body}</label></li>\n'
        )

    def container(self, text: str, name: str) -> str:
        return f'<div class="{name}">\n{text}</div>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block with Pygments syntax highlighting.

        Args:
            code: The code content.
            info: Language identifier (e.g., 'ruby', 'python').

        Returns:
            HTML string with highlighted code.
        """
        lang = info.split()[0] if info else None
        if lang:
            try:
                from pygments import highlight
                from pygments.formatters import HtmlFormatter
                from pygments.lexers import get_lexer_by_name
                from pygments.util import ClassNotFound

                try:
                    lexer = get_lexer_by_name(lang, stripall=True)
                except ClassNotFound:
                    lexer = None
                if lexer is not None:
                    formatter = HtmlFormatter(nowrap=True)
                    highlighted = highlight(code, lexer, formatter)
                    return (
                        f'<pre><code class="hljs language-{escape(lang)}">'
                        f"{highlighted}</code></pre>\n"
                    )
            except ImportError:  # pragma: no cover
                pass
        lang_class = f' class="language-{escape(lang)}"' if lang else ""
        return f"<pre><code{lang_class}>{escape(code)}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown documents to HTML.

    A fresh renderer state is used for every document so heading ids and
    checkbox ids are stable across builds.
    """

    plugins = ["strikethrough", "footnotes", "table", "url", "task_lists"]

    def render(self, content: str) -> str:
        """Render a Markdown document to HTML.

        `::: caption` ... `:::` containers are rendered into
        `<div class="caption">` wrappers.

        Args:
            content: Markdown source.

        Returns:
            Rendered HTML.
        """
        renderer = _ChecklistRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=self.plugins)
        containers(markdown)
        return markdown(content)

    def render_file(self, path: Path) -> str:
        """Render a Markdown file, wrapping failures in RenderError."""
        try:
            source = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RenderError(path, f"Cannot read Markdown file: {exc}", exc) from exc
        return self.render(source)
