import json
import subprocess

import pytest

import gemcheck.styles as styles_mod
from conftest import write
from gemcheck.renderers import RenderError
from gemcheck.styles import SourceMapBuilder, StyleRenderer, encode_vlq


def render(tmp_path):
    renderer = StyleRenderer(tmp_path, use_postcss=False)
    return renderer.render(tmp_path / "src" / "styles" / "main.css", tmp_path / "build" / "main.css")


def test_encode_vlq():
    assert encode_vlq(0) == "A"
    assert encode_vlq(1) == "C"
    assert encode_vlq(-1) == "D"
    assert encode_vlq(15) == "e"
    assert encode_vlq(16) == "gB"


def test_source_map_builder_serializes_v3():
    builder = SourceMapBuilder("out.css")
    builder.add_line("a.css", 0)
    builder.add_line("a.css", 1)
    builder.add_line(None, 0)
    builder.add_line("b.css", 0)
    data = json.loads(builder.to_json())
    assert data == {
        "version": 3,
        "file": "out.css",
        "sources": ["a.css", "b.css"],
        "names": [],
        "mappings": "AAAA;AACA;;ACDA",
    }


def test_imports_are_inlined_with_source_map(tmp_path):
    write(tmp_path / "src" / "styles" / "main.css", '@import "base.css";\nbody { color: red; }\n')
    write(tmp_path / "src" / "styles" / "base.css", "html { margin: 0; }\n")

    result = render(tmp_path)

    css = result.css_path.read_text(encoding="utf-8")
    assert css == (
        "html { margin: 0; }\nbody { color: red; }\n/*# sourceMappingURL=main.css.map */\n"
    )
    assert result.map_path == tmp_path / "build" / "main.css.map"
    data = json.loads(result.map_path.read_text(encoding="utf-8"))
    assert data["file"] == "main.css"
    assert data["sources"] == ["src/styles/base.css", "src/styles/main.css"]
    assert data["mappings"] == "AAAA;ACCA;"


def test_media_imports_are_wrapped(tmp_path):
    write(
        tmp_path / "src" / "styles" / "main.css",
        "a { color: blue; }\n@import url('print.css') print;\n",
    )
    write(tmp_path / "src" / "styles" / "print.css", "nav { display: none; }\n")
    css = render(tmp_path).css_path.read_text(encoding="utf-8")
    assert css.splitlines()[:4] == [
        "a { color: blue; }",
        "@media print {",
        "nav { display: none; }",
        "}",
    ]


def test_remote_imports_are_kept(tmp_path):
    line = '@import url("https://fonts.example.com/css?family=Lato");'
    write(tmp_path / "src" / "styles" / "main.css", line + "\n")
    css = render(tmp_path).css_path.read_text(encoding="utf-8")
    assert css.startswith(line + "\n")


def test_missing_import_raises(tmp_path):
    write(tmp_path / "src" / "styles" / "main.css", "a {}\n@import 'nope.css';\n")
    with pytest.raises(RenderError) as excinfo:
        render(tmp_path)
    assert "line 2" in excinfo.value.message
    assert "nope.css" in excinfo.value.message


def test_circular_import_raises(tmp_path):
    write(tmp_path / "src" / "styles" / "main.css", '@import "a.css";\n')
    write(tmp_path / "src" / "styles" / "a.css", '@import "main.css";\n')
    with pytest.raises(RenderError) as excinfo:
        render(tmp_path)
    assert "Circular" in excinfo.value.message


def test_missing_entry_stylesheet(tmp_path):
    with pytest.raises(RenderError):
        render(tmp_path)


def test_postcss_is_used_when_installed(tmp_path, monkeypatch):
    write(tmp_path / "src" / "styles" / "main.css", "a {}\n")
    calls = []

    def fake_run(cmd, capture_output, text, cwd):
        calls.append(cmd)
        write(tmp_path / "build" / "main.css", "a{}")
        write(tmp_path / "build" / "main.css.map", "{}")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(styles_mod, "find_executable", lambda name, root: "/usr/bin/postcss")
    monkeypatch.setattr(styles_mod.subprocess, "run", fake_run)

    result = StyleRenderer(tmp_path).render(
        tmp_path / "src" / "styles" / "main.css", tmp_path / "build" / "main.css"
    )
    assert calls[0][0] == "/usr/bin/postcss"
    assert calls[0][-1] == "--map"
    assert result.map_path == tmp_path / "build" / "main.css.map"


def test_postcss_failure_raises(tmp_path, monkeypatch):
    write(tmp_path / "src" / "styles" / "main.css", "a {")

    def fake_run(cmd, capture_output, text, cwd):
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="CssSyntaxError: Unclosed block\n")

    monkeypatch.setattr(styles_mod, "find_executable", lambda name, root: "/usr/bin/postcss")
    monkeypatch.setattr(styles_mod.subprocess, "run", fake_run)

    with pytest.raises(RenderError) as excinfo:
        StyleRenderer(tmp_path).render(
            tmp_path / "src" / "styles" / "main.css", tmp_path / "build" / "main.css"
        )
    assert "Unclosed block" in excinfo.value.message
