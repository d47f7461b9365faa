from pathlib import Path

import pytest

INDEX_TEMPLATE = """<!doctype html>
<html>
<head>
  <!-- build:css vendor.css -->
  <link rel="stylesheet" href="src/vendor/a.css">
  <!-- endbuild -->
</head>
<body>
{% filter markdown %}{% include "pages/intro.md" %}{% endfilter %}
{{ markdown_file("pages/checks.md") }}
{% include "_partials/footer.jinja" %}
  <!-- build:js app.js -->
  <script src="src/js/app.js"></script>
  <script src="/src/js/extra.js"></script>
  <!-- endbuild -->
</body>
</html>
"""


def write(path: Path, content: str | bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


def create_project(root: Path) -> Path:
    src = root / "src"
    write(root / "gemcheck.yaml", "use_postcss: false\nport: 4242\n")
    write(src / "index.jinja", INDEX_TEMPLATE)
    write(src / "_partials" / "footer.jinja", '<footer class="env">{{ environment }}</footer>\n')
    write(
        src / "pages" / "intro.md",
        "# Gem Check\n\n- [ ] Use frozen strings\n- [x] Avoid N+1 queries\n",
    )
    write(
        src / "pages" / "checks.md",
        "## Performance\n\n::: caption\nA *caption*\n:::\n\n```ruby\nputs :ok\n```\n",
    )
    write(src / "styles" / "main.css", '@import "base.css";\nbody { color: red; }\n')
    write(src / "styles" / "base.css", "html { margin: 0; }\n")
    write(src / "js" / "app.js", "function add(a, b) {\n  // sum\n  return a + b;\n}\n")
    write(src / "js" / "extra.js", "var answer = add(40, 2);\n")
    write(src / "images" / "logo.svg", "<svg></svg>\n")
    write(src / "images" / "icons" / "check.svg", "<svg><path/></svg>\n")
    write(src / "favicon.ico", b"\x00\x00\x01\x00")
    write(src / "manifest.json", "{}\n")
    write(src / "CNAME", "gemcheck.example.com\n")
    write(src / "notes.txt", "not copied\n")
    write(src / "vendor" / "a.css", ".vendor { color: blue; }\n")
    write(src / "vendor" / "b.js", "window.vendor = true;\n")
    write(src / "vendor" / "readme.md", "not copied\n")
    write(src / "fonts" / "font.woff2", b"wOF2")
    return root


def snapshot(directory: Path) -> dict[str, bytes]:
    return {
        path.relative_to(directory).as_posix(): path.read_bytes()
        for path in sorted(directory.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def project(tmp_path: Path) -> Path:
    return create_project(tmp_path)
